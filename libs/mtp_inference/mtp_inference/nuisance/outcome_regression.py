"""Sequential outcome regressions under the natural and shifted treatment.

The regressions run backwards in time. At the last time point the target is
the observed (scaled) outcome; earlier targets depend on the update rule:

- ``substitution``: the prediction under the shift from the next time point
- ``tmle``: the same, after a logistic fluctuation fit on the held-out rows
- ``sdr``: the doubly robust pseudo-outcome built from training-side ratios
"""
# ruff: noqa: N806

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import numpy as np
import pandas as pd
import statsmodels.api as sm
from numpy.typing import NDArray
from scipy.special import expit, logit

from ..core.base import EstimationError
from ..core.config import EstimationConfig
from ..core.preparation import PreparedData
from ..ml.cross_fitting import seed_to_int
from ..ml.learners import fit_nuisance
from .density_ratio import DensityRatioFit, cumulative_ratios, trim_ratios

__all__ = [
    "UpdateRule",
    "OutcomeFit",
    "estimate_outcome_regressions",
    "fluctuate",
    "sdr_pseudo_outcome",
]

logger = logging.getLogger(__name__)


class UpdateRule(str, Enum):
    """Per-time-point update applied after each regression."""

    SUBSTITUTION = "substitution"
    TMLE = "tmle"
    SDR = "sdr"


@dataclass(frozen=True)
class OutcomeFit:
    """Outcome regressions for the held-out rows of one fold.

    Attributes:
        natural: Predictions under the natural treatment, n_valid x (tau + 1)
        shifted: Predictions under the shift, n_valid x (tau + 1)
        weights: Learner weights per time point
        clipped: Number of predictions bounded away from 0 and 1
        fluctuations: Targeting coefficients per time point (TMLE only)
    """

    natural: NDArray[Any]
    shifted: NDArray[Any]
    weights: tuple[Any, ...]
    clipped: int
    fluctuations: tuple[float, ...] = ()


def fluctuate(
    target: NDArray[Any], initial: NDArray[Any], weights: NDArray[Any]
) -> float:
    """Fit the intercept of a logistic fluctuation with offset ``logit(initial)``.

    Args:
        target: Outcome on the [0, 1] scale
        initial: Initial predictions, bounded away from 0 and 1
        weights: Non-negative weights (cumulative ratio times row weight)

    Returns:
        Fluctuation coefficient (0 when there is nothing to fit)

    Raises:
        EstimationError: If the fluctuation model fails to converge
    """
    keep = np.isfinite(target) & np.isfinite(initial) & (weights > 0)
    if not keep.any():
        return 0.0
    try:
        model = sm.GLM(
            np.clip(target[keep], 0.0, 1.0),
            np.ones((int(keep.sum()), 1)),
            family=sm.families.Binomial(),
            offset=logit(initial[keep]),
            var_weights=weights[keep],
        )
        epsilon = float(model.fit().params[0])
    except Exception as e:
        raise EstimationError(f"Targeting step failed: {str(e)}") from e
    if not np.isfinite(epsilon):
        raise EstimationError("Targeting step produced a non-finite fluctuation")
    return epsilon


def sdr_pseudo_outcome(
    t: int,
    natural: NDArray[Any],
    shifted: NDArray[Any],
    ratios: NDArray[Any],
    trim: Any,
) -> NDArray[Any]:
    """Doubly robust transformed outcome used as the regression target at ``t``.

    ``natural`` and ``shifted`` hold tau + 1 columns whose last column is the
    observed outcome; ``ratios`` holds the raw per-time-point ratios.
    """
    tau = ratios.shape[1]
    pseudo = shifted[:, t + 1].copy()
    if t + 1 >= tau:
        return pseudo
    weights, _ = trim_ratios(cumulative_ratios(ratios[:, t + 1:]), trim)
    for j, s in enumerate(range(t + 1, tau)):
        diff = shifted[:, s + 1] - natural[:, s]
        pseudo += np.where(weights[:, j] == 0, 0.0, weights[:, j] * diff)
    return pseudo


def _hold_last(values: NDArray[Any]) -> NDArray[Any]:
    return pd.DataFrame(values).ffill(axis=1).to_numpy()


def estimate_outcome_regressions(
    prepared: PreparedData,
    train_idx: NDArray[Any],
    valid_idx: NDArray[Any],
    learner: Any,
    config: EstimationConfig,
    rule: UpdateRule,
    seeds: Sequence[np.random.SeedSequence],
    ratios: Optional[DensityRatioFit] = None,
    valid_cumulative: Optional[NDArray[Any]] = None,
    progress: Optional[Callable[[int], None]] = None,
) -> OutcomeFit:
    """Run the backward recursion of outcome regressions within one fold.

    Args:
        prepared: Prepared data shared by all folds
        train_idx: Rows used to fit the regressions
        valid_idx: Held-out rows
        learner: Regressor implementing the learner protocol
        config: Estimation policy (bound, trimming)
        rule: Update rule applied after each regression
        seeds: One SeedSequence per time point
        ratios: Raw density ratios of the fold (required for SDR)
        valid_cumulative: Trimmed cumulative ratios of held-out rows (required for TMLE)
        progress: Optional thread-safe progress callback

    Returns:
        OutcomeFit with held-out predictions
    """
    if rule == UpdateRule.SDR and ratios is None:
        raise ValueError("SDR updates require density ratios")
    if rule == UpdateRule.TMLE and valid_cumulative is None:
        raise ValueError("TMLE updates require cumulative density ratios")

    tau = prepared.tau
    bound = config.bound
    sides: dict[str, dict[str, Any]] = {}
    for name, idx in (("train", train_idx), ("valid", valid_idx)):
        natural = np.full((len(idx), tau + 1), np.nan)
        natural[:, tau] = prepared.y[idx]
        sides[name] = {
            "idx": idx,
            "natural_data": prepared.natural.iloc[idx].reset_index(drop=True),
            "shifted_data": prepared.shifted.iloc[idx].reset_index(drop=True),
            "natural": natural,
            "shifted": natural.copy(),
        }

    train = sides["train"]
    valid = sides["valid"]
    weights: list[Any] = [None] * tau
    fluctuations: list[float] = [0.0] * tau
    clipped = 0

    for t in reversed(range(tau)):
        nodes = list(prepared.node_list.outcome[t])

        if rule == UpdateRule.SDR:
            target = sdr_pseudo_outcome(
                t, _hold_last(train["natural"]), _hold_last(train["shifted"]),
                ratios.train, config.trim,
            )
        else:
            target = train["shifted"][:, t + 1]

        fit_rows = np.flatnonzero(
            prepared.uncensored[train_idx, t]
            & prepared.at_risk[train_idx, t]
            & np.isfinite(target)
        )
        if len(fit_rows) == 0:
            raise EstimationError(
                f"No uncensored observations to fit the outcome regression at time point {t + 1}"
            )
        fit = fit_nuisance(
            learner,
            train["natural_data"].iloc[fit_rows],
            nodes,
            target[fit_rows],
            "regression",
            sample_weight=prepared.weights[train_idx][fit_rows],
            random_state=seed_to_int(seeds[t]),
        )
        weights[t] = fit.weights
        if progress is not None:
            progress(1)

        for side in sides.values():
            idx = side["idx"]
            active = np.flatnonzero(prepared.observed[idx, t] & prepared.at_risk[idx, t])
            for key in ("natural", "shifted"):
                if len(active) > 0:
                    raw = fit.predict(side[f"{key}_data"].iloc[active], nodes)
                    bounded = np.clip(raw, bound, 1.0 - bound)
                    clipped += int(np.sum(bounded != raw))
                    side[key][active, t] = bounded
                side[key][~prepared.at_risk[idx, t], t] = 1.0

        if rule == UpdateRule.TMLE:
            idx = valid["idx"]
            active = prepared.observed[idx, t] & prepared.at_risk[idx, t]
            epsilon = fluctuate(
                valid["shifted"][:, t + 1],
                valid["natural"][:, t],
                np.where(active, valid_cumulative[:, t] * prepared.weights[idx], 0.0),
            )
            fluctuations[t] = epsilon
            for side in sides.values():
                side_active = np.flatnonzero(
                    prepared.observed[side["idx"], t] & prepared.at_risk[side["idx"], t]
                )
                for key in ("natural", "shifted"):
                    side[key][side_active, t] = expit(
                        logit(side[key][side_active, t]) + epsilon
                    )
            logger.debug("Time point %d: fluctuation epsilon=%.5f", t + 1, epsilon)

    return OutcomeFit(
        natural=_hold_last(valid["natural"]),
        shifted=_hold_last(valid["shifted"]),
        weights=tuple(weights),
        clipped=clipped,
        fluctuations=tuple(fluctuations) if rule == UpdateRule.TMLE else (),
    )
