"""Application of modified treatment policies to the observed treatment.

A policy is a callable ``policy(data, trt_column)`` returning the shifted
values for one treatment column. Policies are evaluated one time point at a
time, in time order, on a table that already contains the shifted values of
earlier treatment columns, so dynamic regimes can react to earlier shifts.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from .base import ConfigurationError

__all__ = [
    "ShiftPolicy",
    "ShiftedData",
    "apply_shift",
    "describe_policy",
    "policy_unshifted_ratio",
    "static_binary_on",
    "static_binary_off",
    "additive_shift",
    "multiplicative_shift",
]

ShiftPolicy = Callable[[pd.DataFrame, str], Any]


@dataclass(frozen=True)
class ShiftedData:
    """Counterfactual table plus the rows the policy left unchanged.

    Attributes:
        data: Copy of the input with treatment columns replaced by shifted values
            and censoring indicators set to 1
        unshifted: Boolean matrix (n x number of treatment columns) marking rows
            whose shifted treatment equals the natural treatment
    """

    data: pd.DataFrame
    unshifted: NDArray[np.bool_]


def _same_value(natural: pd.Series, shifted: pd.Series) -> NDArray[np.bool_]:
    both_missing = natural.isna().to_numpy() & shifted.isna().to_numpy()
    equal = (natural.to_numpy() == shifted.to_numpy())
    return np.asarray(equal | both_missing, dtype=bool)


def apply_shift(
    data: pd.DataFrame,
    policy: ShiftPolicy,
    trt: Sequence[str],
    cens: Sequence[str] | None = None,
) -> ShiftedData:
    """Apply ``policy`` to every treatment column, sequentially in time order.

    Args:
        data: Observation table; never mutated
        policy: Shift function ``policy(data, trt_column) -> values``
        trt: Treatment columns ordered by time
        cens: Optional censoring indicators, set to 1 in the shifted table

    Returns:
        ShiftedData with the shifted table and the unshifted mask

    Raises:
        ConfigurationError: If the policy output does not match the table length
    """
    if not callable(policy):
        raise ConfigurationError("shift must be a callable policy(data, trt_column)")

    shifted = data.copy(deep=True)
    unshifted = np.zeros((len(data), len(trt)), dtype=bool)

    for j, column in enumerate(trt):
        values = policy(shifted, column)
        values = np.asarray(values)
        if values.ndim == 0:
            values = np.repeat(values, len(data))
        if values.shape != (len(data),):
            raise ConfigurationError(
                f"Policy returned {values.shape[0] if values.ndim else 1} values "
                f"for '{column}', expected {len(data)}"
            )
        shifted[column] = pd.Series(values, index=data.index)
        unshifted[:, j] = _same_value(data[column], shifted[column])

    for column in cens or []:
        shifted[column] = 1

    return ShiftedData(data=shifted, unshifted=unshifted)


def describe_policy(policy: ShiftPolicy) -> str:
    """Short human readable description of a policy."""
    description = getattr(policy, "description", None)
    if description:
        return str(description)
    return getattr(policy, "__name__", repr(policy))


def static_binary_on(data: pd.DataFrame, trt: str) -> NDArray[Any]:
    """Set a binary treatment to 1 for everyone."""
    return np.ones(len(data), dtype=int)


def static_binary_off(data: pd.DataFrame, trt: str) -> NDArray[Any]:
    """Set a binary treatment to 0 for everyone."""
    return np.zeros(len(data), dtype=int)


# Unshifted rows of a static policy lie inside the support of the shifted
# treatment, so their ratio is 1 / g and has to be estimated.
static_binary_on.unshifted_ratio = "estimated"  # type: ignore[attr-defined]
static_binary_off.unshifted_ratio = "estimated"  # type: ignore[attr-defined]


def policy_unshifted_ratio(policy: ShiftPolicy, configured: str | None = None) -> str:
    """Density ratio rule for unshifted rows under ``policy``.

    An explicitly configured rule wins; otherwise the policy's
    ``unshifted_ratio`` attribute is used, and 'fixed' when it has none.

    Raises:
        ConfigurationError: If the policy declares an unknown rule
    """
    if configured is not None:
        return configured
    declared = getattr(policy, "unshifted_ratio", None)
    if declared is None:
        return "fixed"
    if declared not in ("fixed", "estimated"):
        raise ConfigurationError(
            f"Policy declares unknown unshifted_ratio {declared!r}; "
            "expected 'fixed' or 'estimated'"
        )
    return str(declared)


def _bounded(
    shift: Callable[[NDArray[Any]], NDArray[Any]],
    lower: float | None,
    upper: float | None,
    description: str,
) -> ShiftPolicy:
    def policy(data: pd.DataFrame, trt: str) -> NDArray[Any]:
        natural = data[trt].to_numpy(dtype=float)
        candidate = shift(natural)
        feasible = np.ones(len(natural), dtype=bool)
        if lower is not None:
            feasible &= candidate >= lower
        if upper is not None:
            feasible &= candidate <= upper
        return np.where(feasible, candidate, natural)

    policy.description = description  # type: ignore[attr-defined]
    policy.__name__ = description
    return policy


def additive_shift(
    delta: float, lower: float | None = None, upper: float | None = None
) -> ShiftPolicy:
    """Add ``delta`` to the treatment unless the result leaves ``[lower, upper]``.

    Rows where the shift would be infeasible keep their natural value, which
    makes them unshifted (deterministic) rows.
    """
    return _bounded(lambda a: a + delta, lower, upper, f"additive_shift({delta:+g})")


def multiplicative_shift(
    factor: float, lower: float | None = None, upper: float | None = None
) -> ShiftPolicy:
    """Multiply the treatment by ``factor`` unless the result leaves ``[lower, upper]``."""
    return _bounded(
        lambda a: a * factor, lower, upper, f"multiplicative_shift({factor:g})"
    )
