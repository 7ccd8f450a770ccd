"""Base types shared across the modified treatment policy estimators.

This module provides the exception hierarchy, the outcome and estimator
tags, and the immutable result record returned by every estimator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np
from numpy.typing import NDArray


class OutcomeType(str, Enum):
    """Supported outcome variable types."""

    CONTINUOUS = "continuous"
    BINOMIAL = "binomial"
    SURVIVAL = "survival"


class EstimatorType(str, Enum):
    """Estimators sharing the cross-fitting pipeline."""

    TMLE = "TMLE"
    SDR = "SDR"
    SUBSTITUTION = "substitution"
    IPW = "IPW"


class CausalInferenceError(Exception):
    """Base exception class for causal inference specific errors."""

    pass


class ConfigurationError(CausalInferenceError, ValueError):
    """Raised when static inputs (column lists, fold counts, bounds) are invalid."""

    pass


class DataError(CausalInferenceError, ValueError):
    """Raised when the observation table itself cannot be used for estimation."""

    pass


class EstimationError(CausalInferenceError):
    """Raised when estimation process fails."""

    pass


class NumericWarning(UserWarning):
    """Issued when predictions had to be clipped to the configured bound."""

    pass


def _readonly(array: NDArray[Any] | None) -> NDArray[Any] | None:
    if array is None:
        return None
    out = np.array(array, dtype=float, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class ShiftEffect:
    """Result of estimating the mean outcome under a modified treatment policy.

    The record is constructed once, at the end of estimation, and is never
    mutated afterwards: array fields are stored as read-only copies. The
    external contrast layer consumes ``theta``, ``standard_error`` and the
    raw influence function ``eif``.
    """

    estimator: str
    theta: float
    standard_error: float | None = None
    low: float | None = None
    high: float | None = None
    eif: NDArray[Any] | None = None
    shift: str = "unknown"
    outcome_reg: NDArray[Any] | None = None
    density_ratios: NDArray[Any] | None = None
    weights_m: tuple[Any, ...] = ()
    weights_r: tuple[Any, ...] = ()
    outcome_type: str | None = None
    n_observations: int | None = None
    n_clusters: int | None = None
    confidence_level: float = 0.95
    diagnostics: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Freeze array payloads and validate the interval."""
        for name in ("eif", "outcome_reg", "density_ratios"):
            object.__setattr__(self, name, _readonly(getattr(self, name)))
        object.__setattr__(self, "weights_m", tuple(self.weights_m))
        object.__setattr__(self, "weights_r", tuple(self.weights_r))

        if self.low is not None and self.high is not None and self.low > self.high:
            raise ValueError("Lower confidence bound cannot exceed upper bound")

        if self.confidence_level <= 0 or self.confidence_level >= 1:
            raise ValueError("Confidence level must be between 0 and 1")

    @property
    def has_variance(self) -> bool:
        """Whether the estimator provides a valid variance estimate."""
        return self.standard_error is not None

    @property
    def confidence_interval(self) -> tuple[float, float] | None:
        """Get confidence interval as a tuple.

        Returns:
            Tuple of (lower_bound, upper_bound) or None if not available
        """
        if self.low is not None and self.high is not None:
            return (self.low, self.high)
        return None

    def summary(self) -> str:
        """Plain text summary of the estimate."""
        lines = [
            f"{self.estimator} estimate of the mean outcome under '{self.shift}'",
            "=" * 40,
            f"Population intervention effect: {self.theta:.4f}",
        ]
        if self.standard_error is not None:
            lines.append(f"Standard error: {self.standard_error:.4f}")
            lines.append(
                f"{self.confidence_level:.0%} CI: [{self.low:.4f}, {self.high:.4f}]"
            )
        else:
            lines.append("Standard error: not available for this estimator")
        if self.n_observations is not None:
            lines.append(f"Observations: {self.n_observations}")
        if self.n_clusters is not None:
            lines.append(f"Clusters: {self.n_clusters}")
        return "\n".join(lines)
