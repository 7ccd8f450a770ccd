"""Combine fold fragments into a point estimate and its uncertainty.

All computations run on the [0, 1] estimation scale; theta, the standard
error, the interval and the influence function are mapped back to the
outcome scale at the end.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Sequence
from typing import Any, Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats
from scipy.special import expit, logit

from ..core.base import EstimatorType, NumericWarning, ShiftEffect
from ..core.config import EstimationConfig
from ..core.preparation import PreparedData
from ..ml.cross_fitting import CrossFitCoordinator, FoldResult

__all__ = [
    "influence_function",
    "standard_error",
    "confidence_interval",
    "assemble",
]

logger = logging.getLogger(__name__)


def influence_function(
    natural: NDArray[Any], shifted: NDArray[Any], cumulative: NDArray[Any]
) -> NDArray[Any]:
    """Uncentered efficient influence function.

    ``m^d_1 + sum_t R_t (m^d_{t+1} - m_t)`` where the last column of
    ``natural`` and ``shifted`` is the observed outcome. Terms that are
    undefined (censored rows carry zero weight) contribute 0.

    Args:
        natural: Outcome regressions under the natural treatment, n x (tau + 1)
        shifted: Outcome regressions under the shift, n x (tau + 1)
        cumulative: Trimmed cumulative density ratios, n x tau

    Returns:
        Influence function value per row
    """
    tau = cumulative.shape[1]
    eif = shifted[:, 0].copy()
    for t in range(tau):
        term = cumulative[:, t] * (shifted[:, t + 1] - natural[:, t])
        eif += np.where(np.isfinite(term), term, 0.0)
    return eif


def standard_error(
    eif: NDArray[Any],
    theta: float,
    weights: Optional[NDArray[Any]] = None,
    groups: Optional[NDArray[Any]] = None,
) -> float:
    """Influence function based standard error.

    With cluster identifiers the centred contributions are summed within
    clusters; singleton clusters reproduce the unclustered result.
    """
    n = len(eif)
    if weights is None:
        weights = np.ones(n)
    contributions = weights * (eif - theta) / np.mean(weights)

    if groups is None:
        return float(np.std(contributions, ddof=1) / np.sqrt(n))

    sums = pd.Series(contributions).groupby(np.asarray(groups)).sum().to_numpy()
    n_clusters = len(sums)
    scaled = sums * n_clusters / n
    return float(np.sqrt(np.var(scaled, ddof=1) / n_clusters))


def confidence_interval(
    theta: float,
    se: float,
    confidence_level: float = 0.95,
    scale: str = "identity",
    bound: float = 1e-5,
) -> tuple[float, float]:
    """Wald interval on the identity or logit scale of a [0, 1] estimate.

    Args:
        theta: Estimate on the [0, 1] scale
        se: Standard error on the [0, 1] scale
        confidence_level: Coverage of the interval
        scale: 'identity' or 'logit' (delta method, back-transformed)
        bound: Estimates are bounded away from 0 and 1 before the logit

    Returns:
        Tuple of (lower, upper)
    """
    z = stats.norm.ppf(1 - (1 - confidence_level) / 2)
    if scale == "logit":
        p = float(np.clip(theta, bound, 1 - bound))
        se_logit = se / (p * (1 - p))
        return float(expit(logit(p) - z * se_logit)), float(expit(logit(p) + z * se_logit))
    return theta - z * se, theta + z * se


def _weighted_mean(values: NDArray[Any], weights: NDArray[Any]) -> float:
    return float(np.average(values, weights=weights))


def assemble(
    estimator_type: EstimatorType,
    prepared: PreparedData,
    results: Sequence[FoldResult],
    config: EstimationConfig,
) -> ShiftEffect:
    """Build the immutable result from the fold fragments.

    Args:
        estimator_type: Which estimator produced the fragments
        prepared: Prepared data
        results: Fold fragments covering every row once
        config: Estimation policy (interval scale, confidence level)

    Returns:
        ShiftEffect on the outcome scale
    """
    n = prepared.n
    w = prepared.weights
    natural = CrossFitCoordinator.stitch(results, "outcome_natural", n)
    shifted = CrossFitCoordinator.stitch(results, "outcome_shifted", n)
    ratios = CrossFitCoordinator.stitch(results, "ratios", n)
    cumulative = CrossFitCoordinator.stitch(results, "cumulative_ratios", n)

    eif: Optional[NDArray[Any]] = None
    se: Optional[float] = None
    low: Optional[float] = None
    high: Optional[float] = None

    if estimator_type == EstimatorType.IPW:
        y = np.where(np.isfinite(prepared.y), prepared.y, 0.0)
        theta = _weighted_mean(cumulative[:, -1] * y, w)
    elif estimator_type == EstimatorType.SUBSTITUTION:
        theta = _weighted_mean(shifted[:, 0], w)
    else:
        eif = influence_function(natural, shifted, cumulative)
        if estimator_type == EstimatorType.TMLE:
            theta = _weighted_mean(shifted[:, 0], w)
        else:
            theta = _weighted_mean(eif, w)
        se = standard_error(eif, theta, w, prepared.groups)
        low, high = confidence_interval(
            theta, se, config.confidence_level, config.ci_scale, config.bound
        )

    diagnostics = _diagnostics(results)
    clipped = diagnostics["clipped_probabilities"] + diagnostics["clipped_predictions"]
    if clipped > 0:
        message = (
            f"{clipped} predicted probabilities or regressions were bounded to "
            f"[{config.bound}, {1 - config.bound}]"
        )
        logger.warning(message)
        warnings.warn(message, NumericWarning, stacklevel=3)

    lower = prepared.bounds[0] if prepared.bounds is not None else 0.0
    scale = prepared.scale

    def rescale(values: Optional[NDArray[Any]]) -> Optional[NDArray[Any]]:
        return None if values is None else values * scale + lower

    n_clusters = len(np.unique(prepared.groups)) if prepared.groups is not None else None

    logger.info(
        "%s estimate %.4f (se=%s) from %d observations",
        estimator_type.value,
        prepared.rescale(theta),
        "n/a" if se is None else f"{se * scale:.4f}",
        n,
    )

    return ShiftEffect(
        estimator=estimator_type.value,
        theta=prepared.rescale(theta),
        standard_error=None if se is None else se * scale,
        low=None if low is None else prepared.rescale(low),
        high=None if high is None else prepared.rescale(high),
        eif=rescale(eif),
        shift=prepared.shift_description,
        outcome_reg=rescale(shifted),
        density_ratios=ratios,
        weights_m=tuple(r.weights_m for r in results),
        weights_r=tuple(r.weights_r for r in results),
        outcome_type=None if prepared.outcome_type is None else prepared.outcome_type.value,
        n_observations=n,
        n_clusters=n_clusters,
        confidence_level=config.confidence_level,
        diagnostics=diagnostics,
    )


def _diagnostics(results: Sequence[FoldResult]) -> dict[str, Any]:
    totals: dict[str, Any] = {
        "clipped_probabilities": 0,
        "clipped_predictions": 0,
        "trimmed_ratios": 0,
    }
    for result in results:
        for key in totals:
            totals[key] += int(result.diagnostics.get(key, 0))
    totals["fold_timings"] = [r.elapsed for r in results]
    return totals
