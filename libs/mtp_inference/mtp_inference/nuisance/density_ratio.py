"""Density ratio estimation by classification.

At each time point the ratio of the shifted to the natural treatment
density, given the history, is recovered from a classifier that tells
natural rows (label 0) apart from copies whose treatment at t was replaced
by its shifted value (label 1). The odds ``p / (1 - p)`` evaluated at the
natural data is the ratio. Censoring contributes a separate inverse
probability of remaining observed.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from ..core.config import EstimationConfig, TrimmingConfig
from ..core.preparation import PreparedData
from ..ml.cross_fitting import seed_to_int
from ..ml.learners import fit_nuisance

__all__ = [
    "DensityRatioFit",
    "clip_probabilities",
    "cumulative_ratios",
    "estimate_density_ratios",
    "trim_ratios",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DensityRatioFit:
    """Raw density ratios for the training and held-out rows of one fold.

    Attributes:
        train: Ratios for training rows, n_train x tau
        valid: Ratios for held-out rows, n_valid x tau
        weights: Learner weights per time point ('trt' and 'cens' entries)
        clipped: Number of clipped classifier probabilities
    """

    train: NDArray[Any]
    valid: NDArray[Any]
    weights: tuple[dict[str, Any], ...]
    clipped: int


def clip_probabilities(p: NDArray[Any], bound: float) -> tuple[NDArray[Any], int]:
    """Bound probabilities to [bound, 1 - bound] and count how many moved."""
    clipped = np.clip(p, bound, 1.0 - bound)
    return clipped, int(np.sum(clipped != p))


def cumulative_ratios(ratios: NDArray[Any]) -> NDArray[Any]:
    """Running product of the per-time-point ratios along time."""
    return np.cumprod(ratios, axis=1)


def trim_ratios(
    cumulative: NDArray[Any], trim: TrimmingConfig
) -> tuple[NDArray[Any], int]:
    """Cap cumulative ratios according to the trimming policy.

    Args:
        cumulative: Cumulative ratios to trim
        trim: Trimming policy; quantiles are taken over the values being trimmed

    Returns:
        Tuple of (trimmed ratios, number of capped values)
    """
    cumulative = np.asarray(cumulative, dtype=float)
    if trim.method is None or cumulative.size == 0:
        return cumulative.copy(), 0

    if trim.method == "quantile":
        finite = cumulative[np.isfinite(cumulative)]
        if finite.size == 0:
            return cumulative.copy(), 0
        cap = float(np.quantile(finite, trim.level))
    else:
        cap = trim.level

    exceeded = cumulative > cap
    trimmed = np.where(exceeded, cap, cumulative)
    return trimmed, int(exceeded.sum())


def _shift_treatment(
    natural: pd.DataFrame, shifted: pd.DataFrame, column: str
) -> pd.DataFrame:
    counterfactual = natural.copy()
    counterfactual[column] = shifted[column].to_numpy()
    return counterfactual


def estimate_density_ratios(
    prepared: PreparedData,
    train_idx: NDArray[Any],
    valid_idx: NDArray[Any],
    learner: Any,
    config: EstimationConfig,
    seeds: Sequence[np.random.SeedSequence],
    progress: Optional[Callable[[int], None]] = None,
) -> DensityRatioFit:
    """Estimate per-time-point density ratios within one fold.

    Args:
        prepared: Prepared data shared by all folds
        train_idx: Rows used to fit the classifiers
        valid_idx: Held-out rows
        learner: Classifier implementing the learner protocol
        config: Estimation policy (prediction bound)
        seeds: One SeedSequence per time point
        progress: Optional thread-safe progress callback

    Returns:
        DensityRatioFit with raw (untrimmed, non-cumulative) ratios
    """
    spec = prepared.spec
    tau = prepared.tau
    sides = {
        "train": (
            train_idx,
            prepared.natural.iloc[train_idx].reset_index(drop=True),
            prepared.shifted.iloc[train_idx].reset_index(drop=True),
        ),
        "valid": (
            valid_idx,
            prepared.natural.iloc[valid_idx].reset_index(drop=True),
            prepared.shifted.iloc[valid_idx].reset_index(drop=True),
        ),
    }
    ratios = {name: np.ones((len(idx), tau)) for name, (idx, _, _) in sides.items()}
    weights: list[dict[str, Any]] = []
    clipped = 0

    for t in range(tau):
        nodes = list(prepared.node_list.trt[t])
        column = spec.treatment_at(t)
        trt_state, cens_state = seed_to_int(seeds[t], 0), seed_to_int(seeds[t], 1)
        entry: dict[str, Any] = {"trt": None, "cens": None}

        def eligible(idx: NDArray[Any]) -> NDArray[np.bool_]:
            rows = prepared.observed[idx, t] & prepared.at_risk[idx, t]
            if prepared.unshifted_ratio == "fixed":
                rows = rows & ~prepared.unshifted[idx, t]
            return rows

        if column is not None:
            idx, natural, shifted = sides["train"]
            rows = np.flatnonzero(eligible(idx))
            if len(rows) > 0:
                natural_rows = natural.iloc[rows]
                stacked = pd.concat(
                    [natural_rows, _shift_treatment(natural_rows, shifted.iloc[rows], column)],
                    ignore_index=True,
                )
                label = np.concatenate([np.zeros(len(rows)), np.ones(len(rows))])
                row_weights = np.tile(prepared.weights[idx][rows], 2)
                fit = fit_nuisance(
                    learner, stacked, nodes, label, "classification",
                    sample_weight=row_weights, random_state=trt_state,
                )
                entry["trt"] = fit.weights
                if progress is not None:
                    progress(1)

                for name, (side_idx, side_natural, _) in sides.items():
                    predict_rows = np.flatnonzero(eligible(side_idx))
                    if len(predict_rows) == 0:
                        continue
                    p = fit.predict(side_natural.iloc[predict_rows], nodes)
                    p, n_clipped = clip_probabilities(p, config.bound)
                    clipped += n_clipped
                    ratios[name][predict_rows, t] = p / (1.0 - p)
                logger.debug(
                    "Time point %d: treatment classifier fit on %d eligible rows", t + 1, len(rows)
                )
            else:
                logger.debug("Time point %d: no eligible rows, treatment ratio fixed at 1", t + 1)

        if spec.cens is not None:
            idx, natural, _ = sides["train"]
            rows = np.flatnonzero(prepared.observed[idx, t] & prepared.at_risk[idx, t])
            remained = prepared.uncensored[idx, t][rows]
            if len(rows) > 0 and not remained.all():
                fit = fit_nuisance(
                    learner,
                    natural.iloc[rows],
                    nodes,
                    remained.astype(float),
                    "classification",
                    sample_weight=prepared.weights[idx][rows],
                    random_state=cens_state,
                )
                entry["cens"] = fit.weights
                if progress is not None:
                    progress(1)

                for name, (side_idx, side_natural, _) in sides.items():
                    active = np.flatnonzero(
                        prepared.observed[side_idx, t]
                        & prepared.at_risk[side_idx, t]
                        & prepared.uncensored[side_idx, t]
                    )
                    if len(active) > 0:
                        p = fit.predict(side_natural.iloc[active], nodes)
                        p, n_clipped = clip_probabilities(p, config.bound)
                        clipped += n_clipped
                        ratios[name][active, t] /= p
            for name, (side_idx, _, _) in sides.items():
                ratios[name][~prepared.uncensored[side_idx, t], t] = 0.0

        weights.append(entry)

    return DensityRatioFit(
        train=ratios["train"],
        valid=ratios["valid"],
        weights=tuple(weights),
        clipped=clipped,
    )
