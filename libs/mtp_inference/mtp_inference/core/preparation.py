"""Validation and preparation of wide-format data before any fold work.

Everything that can fail because of static inputs or the observation table
itself is checked here, so that estimation is all-or-nothing: either the
prepared data is complete, or a ConfigurationError / DataError is raised
before the first learner is fit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from .base import ConfigurationError, DataError, OutcomeType
from .config import EstimationConfig
from .longitudinal import LongitudinalSpec
from .node_list import NodeList
from .shift import ShiftPolicy, apply_shift, describe_policy, policy_unshifted_ratio

__all__ = ["PreparedData", "prepare_data"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedData:
    """Immutable inputs shared by every fold worker.

    Masks are n x tau boolean arrays indexed by 0-based time point:

    - ``observed``: the row is still under observation at the start of t
    - ``uncensored``: the row remains observed after t (``cens[t] == 1``)
    - ``at_risk``: no event has occurred before t (always true unless survival)
    - ``unshifted``: the policy left the treatment at t unchanged

    ``unshifted_ratio`` is the resolved rule for unshifted rows: 'fixed'
    rows are deterministic with ratio 1, 'estimated' rows go to the classifier.
    """

    spec: LongitudinalSpec
    natural: pd.DataFrame
    shifted: pd.DataFrame
    y: NDArray[Any]
    observed: NDArray[np.bool_]
    uncensored: NDArray[np.bool_]
    at_risk: NDArray[np.bool_]
    unshifted: NDArray[np.bool_]
    node_list: NodeList
    weights: NDArray[Any]
    groups: NDArray[Any] | None
    bounds: tuple[float, float] | None
    outcome_type: OutcomeType | None
    shift_description: str
    unshifted_ratio: str = "fixed"

    @property
    def n(self) -> int:
        """Number of observations."""
        return len(self.natural)

    @property
    def tau(self) -> int:
        """Number of time points."""
        return self.node_list.tau

    @property
    def deterministic(self) -> NDArray[np.bool_]:
        """Rows whose density ratio at t is fixed rather than estimated."""
        fixed = self.unshifted if self.unshifted_ratio == "fixed" else False
        return fixed | ~self.observed | ~self.at_risk

    def rescale(self, value: float) -> float:
        """Map a value on the [0, 1] estimation scale back to the outcome scale."""
        if self.bounds is None:
            return value
        lower, upper = self.bounds
        return value * (upper - lower) + lower

    @property
    def scale(self) -> float:
        """Width of the outcome scale (1 unless the outcome was rescaled)."""
        if self.bounds is None:
            return 1.0
        return self.bounds[1] - self.bounds[0]


def _censoring_masks(
    data: pd.DataFrame, spec: LongitudinalSpec, at_risk: NDArray[np.bool_]
) -> tuple[NDArray[np.bool_], NDArray[np.bool_]]:
    """Monotone censoring masks; rows past the event are no longer censorable."""
    n, tau = len(data), spec.tau
    uncensored = np.ones((n, tau), dtype=bool)
    if spec.cens is not None:
        still_observed = np.ones(n, dtype=bool)
        for t, column in enumerate(spec.cens):
            values = pd.to_numeric(data[column], errors="coerce").to_numpy(dtype=float)
            active = still_observed & at_risk[:, t]
            ambiguous = active & np.isnan(values)
            if ambiguous.any():
                raise DataError(
                    f"Censoring indicator '{column}' is missing for {int(ambiguous.sum())} "
                    "rows that were still under observation"
                )
            invalid = active & ~np.isnan(values) & ~np.isin(values, [0, 1])
            if invalid.any():
                raise DataError(f"Censoring indicator '{column}' must be coded 0/1")
            still_observed = still_observed & (~at_risk[:, t] | (values == 1))
            uncensored[:, t] = still_observed
    observed = np.ones((n, tau), dtype=bool)
    observed[:, 1:] = uncensored[:, :-1]
    return observed, uncensored


def _survival_outcomes(
    data: pd.DataFrame, spec: LongitudinalSpec
) -> tuple[pd.DataFrame, NDArray[np.bool_]]:
    """Carry events forward in time and derive the at-risk mask."""
    outcomes = data[spec.outcome].apply(pd.to_numeric).to_numpy(dtype=float)
    n, tau = outcomes.shape
    event = np.zeros(n, dtype=bool)
    at_risk = np.ones((n, tau), dtype=bool)
    for t in range(tau):
        at_risk[:, t] = ~event
        outcomes[event, t] = 1.0
        event = event | (outcomes[:, t] == 1)
    return pd.DataFrame(outcomes, columns=spec.outcome, index=data.index), at_risk


def _check_outcome(data: pd.DataFrame, spec: LongitudinalSpec) -> None:
    for column in spec.outcome:
        if not pd.api.types.is_numeric_dtype(data[column]) and not pd.api.types.is_bool_dtype(
            data[column]
        ):
            raise DataError(f"Outcome column '{column}' must be numeric")


def _infer_outcome_type(values: pd.Series) -> OutcomeType:
    """Binomial when every observed value is 0 or 1, continuous otherwise."""
    observed = pd.to_numeric(values).dropna().to_numpy(dtype=float)
    if observed.size > 0 and np.all(np.isin(observed, [0, 1])):
        return OutcomeType.BINOMIAL
    return OutcomeType.CONTINUOUS


def _check_missing(
    data: pd.DataFrame,
    spec: LongitudinalSpec,
    observed: NDArray[np.bool_],
    at_risk: NDArray[np.bool_],
) -> None:
    """Missing covariates are only acceptable once a row is censored or has had the event."""
    if spec.baseline:
        missing = data[spec.baseline].isna().any(axis=0)
        if missing.any():
            raise DataError(
                f"Baseline covariates contain missing values: {list(missing[missing].index)}"
            )
    for t in range(spec.tau):
        columns = list(spec.time_vary[t]) if spec.time_vary is not None else []
        trt = spec.treatment_at(t)
        if trt is not None:
            columns.append(trt)
        if not columns:
            continue
        active = observed[:, t] & at_risk[:, t]
        missing = data.loc[active, columns].isna().any(axis=0)
        if missing.any():
            raise DataError(
                f"Missing values at time point {t + 1} in {list(missing[missing].index)} "
                "for rows that are neither censored nor past the event; "
                "supply censoring indicators if these rows are lost to follow-up"
            )


def _fill_covariates(
    data: pd.DataFrame, spec: LongitudinalSpec, policy: str
) -> pd.DataFrame:
    filled = data.copy()
    if policy == "carry_forward":
        previous: list[str] = []
        for t in range(spec.tau):
            current = list(spec.time_vary[t]) if spec.time_vary is not None else []
            if len(current) == len(previous):
                for column, source in zip(current, previous):
                    filled[column] = filled[column].fillna(filled[source])
            previous = current
        if len(spec.trt) > 1:
            for column, source in zip(spec.trt[1:], spec.trt[:-1]):
                filled[column] = filled[column].fillna(filled[source])

    covariates = [c for group in (spec.time_vary or []) for c in group] + list(spec.trt)
    for column in dict.fromkeys(covariates):
        if filled[column].isna().any():
            if pd.api.types.is_numeric_dtype(filled[column]):
                filled[column] = filled[column].fillna(0)
            else:
                mode = filled[column].mode()
                filled[column] = filled[column].fillna(mode.iloc[0] if len(mode) else 0)
    return filled


def _scaled_outcome(
    y: NDArray[Any], spec: LongitudinalSpec
) -> tuple[NDArray[Any], tuple[float, float] | None]:
    if spec.outcome_type == OutcomeType.CONTINUOUS:
        if spec.bounds is not None:
            lower, upper = spec.bounds
        else:
            lower, upper = float(np.nanmin(y)), float(np.nanmax(y))
        if not upper > lower:
            raise DataError("Continuous outcome has no variation; cannot rescale")
        finite = y[~np.isnan(y)]
        if np.any(finite < lower) or np.any(finite > upper):
            raise DataError(f"Observed outcome values fall outside bounds {spec.bounds}")
        return (y - lower) / (upper - lower), (lower, upper)

    if spec.outcome_type in (OutcomeType.BINOMIAL, OutcomeType.SURVIVAL):
        finite = y[~np.isnan(y)]
        if not np.all(np.isin(finite, [0, 1])):
            raise DataError("Binomial outcomes must be coded as 0 and 1")
    return y, None


def prepare_data(
    data: pd.DataFrame,
    spec: LongitudinalSpec,
    policy: ShiftPolicy,
    config: EstimationConfig,
) -> PreparedData:
    """Validate the observation table and build everything the folds need.

    Args:
        data: Wide-format observation table, one row per unit
        spec: Column layout
        policy: Modified treatment policy
        config: Estimation policy (covariate fill rule)

    Returns:
        PreparedData shared read-only by every fold worker

    Raises:
        ConfigurationError: If columns are missing or the folds cannot be formed
        DataError: If the observation table is unusable
    """
    if not isinstance(data, pd.DataFrame):
        raise ConfigurationError("data must be a pandas DataFrame")
    if len(data) == 0:
        raise DataError("data has no rows")
    spec.validate_columns(data)
    _check_outcome(data, spec)
    if spec.outcome_type is None:
        spec = spec.model_copy(
            update={"outcome_type": _infer_outcome_type(data[spec.final_outcome])}
        )

    data = data.reset_index(drop=True)
    tau = spec.tau

    if spec.is_survival:
        outcomes, at_risk = _survival_outcomes(data, spec)
        data = data.copy()
        data[spec.outcome] = outcomes
    else:
        at_risk = np.ones((len(data), tau), dtype=bool)

    observed, uncensored = _censoring_masks(data, spec, at_risk)

    if spec.is_survival:
        for t, column in enumerate(spec.outcome):
            unexplained = data[column].isna().to_numpy() & uncensored[:, t] & at_risk[:, t]
            if unexplained.any():
                raise DataError(
                    f"Outcome '{column}' is missing for {int(unexplained.sum())} rows "
                    "that are neither censored nor past the event"
                )

    _check_missing(data, spec, observed, at_risk)

    y = pd.to_numeric(data[spec.final_outcome]).to_numpy(dtype=float)
    unexplained = np.isnan(y) & uncensored[:, -1]
    if unexplained.any():
        raise DataError(
            f"Outcome '{spec.final_outcome}' is missing for {int(unexplained.sum())} "
            "rows without a censoring indicator"
        )
    y = np.where(uncensored[:, -1], y, np.nan)
    y, bounds = _scaled_outcome(y, spec)

    weights = np.ones(len(data))
    if spec.weights is not None:
        weights = pd.to_numeric(data[spec.weights], errors="coerce").to_numpy(dtype=float)
        if np.any(np.isnan(weights)) or np.any(weights < 0) or weights.sum() <= 0:
            raise DataError(f"Weights in '{spec.weights}' must be non-negative and non-missing")

    groups = None
    if spec.id is not None:
        if data[spec.id].isna().any():
            raise DataError(f"Cluster identifiers in '{spec.id}' cannot be missing")
        groups = data[spec.id].to_numpy()

    unshifted_ratio = policy_unshifted_ratio(policy, config.unshifted_ratio)
    natural = _fill_covariates(data, spec, config.covariate_fill)
    shifted = apply_shift(natural, policy, spec.trt, spec.cens)

    unshifted = np.ones((len(data), tau), dtype=bool)
    for t in range(tau):
        column = spec.treatment_at(t)
        if column is not None:
            unshifted[:, t] = shifted.unshifted[:, spec.trt.index(column)]

    logger.info(
        "Prepared %d observations over %d time points "
        "(%d censored, %d unshifted rows at t=1, %s ratio)",
        len(data),
        tau,
        int((~uncensored[:, -1]).sum()),
        int(unshifted[:, 0].sum()),
        unshifted_ratio,
    )

    return PreparedData(
        spec=spec,
        natural=natural,
        shifted=shifted.data,
        y=y,
        observed=observed,
        uncensored=uncensored,
        at_risk=at_risk,
        unshifted=unshifted,
        node_list=spec.node_list(),
        weights=weights,
        groups=groups,
        bounds=bounds,
        outcome_type=spec.outcome_type,
        shift_description=describe_policy(policy),
        unshifted_ratio=unshifted_ratio,
    )
