"""Column layout of wide-format longitudinal data.

This module provides the data model describing which columns of a wide
observation table (one row per unit) hold treatments, time-varying
covariates, censoring indicators and outcomes at each time point.
"""

from __future__ import annotations

import math
from typing import Any, Union

import pandas as pd
from pydantic import BaseModel, Field, ValidationError, field_validator

from .base import ConfigurationError, OutcomeType
from .node_list import NodeList, build_node_list

__all__ = ["LongitudinalSpec"]


def _as_list(v: Any) -> Any:
    if isinstance(v, str):
        return [v]
    return v


class LongitudinalSpec(BaseModel):
    """Data model for the column layout of a longitudinal analysis.

    Treatment columns are ordered by time. ``outcome`` holds a single
    terminal outcome, or one column per time point for survival outcomes.
    ``time_vary`` holds one list of newly measured covariates per time point
    and ``cens`` one censoring indicator per time point (1 = still observed).
    """

    trt: list[str] = Field(..., description="Treatment columns ordered by time")
    outcome: list[str] = Field(..., description="Outcome column(s)")
    baseline: list[str] = Field(
        default_factory=list, description="Covariates available at every time point"
    )
    time_vary: Union[list[list[str]], None] = Field(
        default=None, description="Covariates introduced at each time point"
    )
    cens: Union[list[str], None] = Field(
        default=None, description="Censoring indicators, one per time point"
    )
    id: Union[str, None] = Field(default=None, description="Cluster identifier column")
    weights: Union[str, None] = Field(default=None, description="Row weight column")
    k: float = Field(default=math.inf, description="Markov order of the node lists")
    outcome_type: Union[OutcomeType, None] = Field(
        default=None, description="Type of outcome: 'continuous', 'binomial', 'survival'"
    )
    bounds: Union[tuple[float, float], None] = Field(
        default=None, description="Bounds used to rescale a continuous outcome"
    )

    model_config = {"frozen": True}

    @field_validator("trt", "outcome", "baseline", "cens", mode="before")
    @classmethod
    def validate_column_list(cls, v: Any) -> Any:
        """Allow a single column name where a list is expected."""
        return _as_list(v)

    @field_validator("trt", "outcome")
    @classmethod
    def validate_not_empty(cls, v: list[str]) -> list[str]:
        """Treatment and outcome columns are required."""
        if len(v) == 0:
            raise ValueError("at least one column is required")
        return v

    @field_validator("time_vary", mode="before")
    @classmethod
    def validate_time_vary(cls, v: Any) -> Any:
        """Each time point contributes a list of columns."""
        if v is None:
            return v
        return [_as_list(columns) or [] for columns in v]

    @field_validator("k", mode="before")
    @classmethod
    def validate_k(cls, v: Any) -> Any:
        """None means the full history."""
        if v is None:
            return math.inf
        if v < 0:
            raise ValueError("k must be non-negative")
        return v

    @field_validator("bounds")
    @classmethod
    def validate_bounds(
        cls, v: Union[tuple[float, float], None]
    ) -> Union[tuple[float, float], None]:
        """Bounds must describe a non-empty interval."""
        if v is not None and not v[0] < v[1]:
            raise ValueError("bounds must satisfy lower < upper")
        return v

    @classmethod
    def from_options(cls, **options: Any) -> LongitudinalSpec:
        """Build a column layout, raising ConfigurationError on invalid input."""
        try:
            spec = cls(**options)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid column specification: {e}") from e
        spec.check_consistency()
        return spec

    @property
    def tau(self) -> int:
        """Number of time points of observation."""
        if len(self.trt) > 1:
            return len(self.trt)
        candidates = [1, len(self.cens or [])]
        if self.time_vary is not None:
            candidates.append(len(self.time_vary))
        if self.outcome_type == OutcomeType.SURVIVAL:
            candidates.append(len(self.outcome))
        return max(candidates)

    @property
    def is_survival(self) -> bool:
        """Whether the outcome is a time-to-event outcome."""
        return self.outcome_type == OutcomeType.SURVIVAL

    @property
    def final_outcome(self) -> str:
        """Column holding the terminal outcome."""
        return self.outcome[-1]

    def treatment_at(self, t: int) -> Union[str, None]:
        """Treatment column assigned at time point ``t`` (0-based), if any."""
        if len(self.trt) == self.tau:
            return self.trt[t]
        return self.trt[0] if t == 0 else None

    def check_consistency(self) -> None:
        """Validate list lengths against the number of time points.

        Raises:
            ConfigurationError: If any of the column lists disagree with tau
        """
        tau = self.tau
        if len(self.trt) not in (1, tau):
            raise ConfigurationError(
                f"Expected 1 or {tau} treatment columns, got {len(self.trt)}"
            )
        if self.time_vary is not None and len(self.time_vary) != tau:
            raise ConfigurationError(
                f"time_vary must have {tau} entries, got {len(self.time_vary)}"
            )
        if self.cens is not None and len(self.cens) != tau:
            raise ConfigurationError(
                f"cens must have {tau} entries, got {len(self.cens)}"
            )
        if self.is_survival:
            if len(self.outcome) != tau:
                raise ConfigurationError(
                    f"Survival outcomes need one column per time point ({tau}), "
                    f"got {len(self.outcome)}"
                )
        elif len(self.outcome) > 1:
            raise ConfigurationError(
                "Multiple outcome columns require outcome_type='survival'"
            )
        if self.bounds is not None and self.outcome_type != OutcomeType.CONTINUOUS:
            raise ConfigurationError(
                "bounds can only be supplied for continuous outcomes"
            )

    def node_list(self) -> NodeList:
        """Node lists implied by this layout."""
        return build_node_list(
            trt=self.trt,
            tau=self.tau,
            time_vary=self.time_vary,
            baseline=self.baseline,
            k=self.k,
        )

    def required_columns(self) -> list[str]:
        """Every column referenced by the layout."""
        columns = list(self.trt) + list(self.outcome) + list(self.baseline)
        for group in self.time_vary or []:
            columns.extend(group)
        columns.extend(self.cens or [])
        columns.extend(c for c in (self.id, self.weights) if c is not None)
        return list(dict.fromkeys(columns))

    def validate_columns(self, data: pd.DataFrame) -> None:
        """Check that every referenced column exists.

        Raises:
            ConfigurationError: If a referenced column is missing from ``data``
        """
        missing_cols = [col for col in self.required_columns() if col not in data.columns]
        if missing_cols:
            raise ConfigurationError(f"Missing required columns: {missing_cols}")
