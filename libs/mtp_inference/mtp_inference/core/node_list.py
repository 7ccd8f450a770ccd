"""Per-time-point predictor sets ("node lists") for longitudinal estimation.

A node list records, for every time point t, which columns are known when
the treatment at t is assigned (treatment side) and which columns the
outcome regression at t conditions on (outcome side). A Markov order ``k``
restricts both sides to the contributions of the last ``k`` time points.

Example:
    >>> nodes = build_node_list(
    ...     trt=["A_1", "A_2"],
    ...     tau=2,
    ...     time_vary=[["L_1"], ["L_2"]],
    ...     baseline=["W"],
    ...     k=0,
    ... )
    >>> nodes.trt[1]
    ('W', 'L_2', 'A_1', 'A_2')
    >>> nodes.outcome[1]
    ('W', 'L_2', 'A_2')
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .base import ConfigurationError

__all__ = ["NodeList", "build_node_list", "window_bounds"]


@dataclass(frozen=True)
class NodeList:
    """Ordered predictor sets per time point (index 0 is the first time point)."""

    trt: tuple[tuple[str, ...], ...]
    outcome: tuple[tuple[str, ...], ...]
    k: float

    @property
    def tau(self) -> int:
        """Number of time points."""
        return len(self.outcome)

    def to_dict(self) -> dict[str, list[list[str]]]:
        """Plain representation, convenient for inspecting before estimation."""
        return {
            "trt": [list(nodes) for nodes in self.trt],
            "outcome": [list(nodes) for nodes in self.outcome],
        }


def _ordered_unique(columns: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(columns))


def window_bounds(t: int, k: float) -> range:
    """Time point indices (0-based) whose contributions are visible at ``t``."""
    start = 0 if math.isinf(k) else max(0, t - int(k))
    return range(start, t + 1)


def _slide(contributions: Sequence[Sequence[str]], k: float) -> list[tuple[str, ...]]:
    return [
        _ordered_unique(
            column for s in window_bounds(t, k) for column in contributions[s]
        )
        for t in range(len(contributions))
    ]


def _normalize_k(k: float | int | None) -> float:
    if k is None:
        return math.inf
    if k < 0:
        raise ConfigurationError(f"Markov order k must be non-negative, got {k}")
    return float(k)


def build_node_list(
    trt: Sequence[str],
    tau: int,
    time_vary: Sequence[Sequence[str]] | None = None,
    baseline: Sequence[str] | None = None,
    k: float | int | None = math.inf,
) -> NodeList:
    """Build the treatment-side and outcome-side node lists.

    Args:
        trt: Treatment column names ordered by time (or a single point treatment)
        tau: Number of time points of observation
        time_vary: Columns introduced at each time point, one list per time point
        baseline: Columns available at every time point
        k: Markov order; None or ``math.inf`` keeps the full history

    Returns:
        NodeList with one predictor tuple per time point on each side

    Raises:
        ConfigurationError: If list lengths are inconsistent with ``tau``
    """
    if tau < 1:
        raise ConfigurationError(f"tau must be at least 1, got {tau}")
    k = _normalize_k(k)
    trt = list(trt)
    if not trt:
        raise ConfigurationError("At least one treatment column is required")
    if len(trt) not in (1, tau):
        raise ConfigurationError(
            f"Expected 1 or {tau} treatment columns, got {len(trt)}"
        )
    if time_vary is None:
        time_vary = [[] for _ in range(tau)]
    if len(time_vary) != tau:
        raise ConfigurationError(
            f"time_vary must have one entry per time point ({tau}), got {len(time_vary)}"
        )
    baseline = list(baseline or [])
    varying_trt = len(trt) == tau and tau > 1

    trt_contrib: list[list[str]] = []
    outcome_contrib: list[list[str]] = []
    for t in range(tau):
        current = list(time_vary[t])
        if varying_trt:
            lag = [trt[t - 1]] if t > 0 else []
            trt_contrib.append(baseline + current + lag)
            outcome_contrib.append(current + [trt[t]])
        else:
            trt_contrib.append(baseline + current + trt)
            outcome_contrib.append(current + trt)

    trt_nodes = _slide(trt_contrib, k)
    outcome_nodes = _slide(outcome_contrib, k)

    if varying_trt:
        trt_nodes = [_ordered_unique(nodes + (trt[t],)) for t, nodes in enumerate(trt_nodes)]
    outcome_nodes = [_ordered_unique(baseline + list(nodes)) for nodes in outcome_nodes]

    return NodeList(trt=tuple(trt_nodes), outcome=tuple(outcome_nodes), k=k)
