"""Configuration for cross-fitted estimation of modified treatment policies."""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .base import ConfigurationError

__all__ = ["TrimmingConfig", "EstimationConfig"]


class TrimmingConfig(BaseModel):
    """Trimming policy for cumulative density ratios.

    Attributes:
        method: 'quantile' caps ratios at the ``level`` quantile of the ratios
            being trimmed, 'threshold' caps them at the fixed value ``level``,
            None disables trimming
        level: Quantile in (0, 1] or positive cap, depending on ``method``
    """

    method: Union[Literal["quantile", "threshold"], None] = Field(
        default="quantile", description="How the cap on cumulative ratios is chosen"
    )
    level: float = Field(
        default=0.999, gt=0.0, description="Quantile or fixed cap for trimming"
    )

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_level(self) -> TrimmingConfig:
        """Quantile levels must lie in (0, 1]."""
        if self.method == "quantile" and self.level > 1.0:
            raise ValueError("quantile trimming level must be in (0, 1]")
        return self


class EstimationConfig(BaseModel):
    """Numeric and scheduling policy for a single estimation call.

    Attributes:
        folds: Number of cross-fitting folds (at least two)
        bound: Predictions are bounded to [bound, 1 - bound] before logit transforms
        trim: Trimming policy for cumulative density ratios
        unshifted_ratio: 'fixed' gives rows whose shifted treatment equals the
            natural one a treatment density ratio of exactly 1 and keeps them out
            of classifier training; 'estimated' keeps them in the classifier;
            None follows the policy's own ``unshifted_ratio`` attribute and
            falls back to 'fixed'
        covariate_fill: How missing covariates after censoring or an event are
            filled ('carry_forward' or 'zero')
        ci_scale: Scale on which the confidence interval is built
        confidence_level: Confidence level of the interval
        n_jobs: Number of fold workers (joblib semantics)
        backend: joblib backend used for fold workers
        random_state: Single top-level seed for folds and learners
    """

    folds: int = Field(default=10, ge=2, description="Number of cross-fitting folds")
    bound: float = Field(
        default=1e-5, gt=0.0, lt=0.5, description="Prediction bound away from 0 and 1"
    )
    trim: TrimmingConfig = Field(default_factory=TrimmingConfig)
    unshifted_ratio: Union[Literal["fixed", "estimated"], None] = Field(
        default=None, description="Density ratio policy for unshifted rows"
    )
    covariate_fill: Literal["carry_forward", "zero"] = Field(
        default="carry_forward", description="Post-censoring covariate fill policy"
    )
    ci_scale: Literal["identity", "logit"] = Field(
        default="identity", description="Scale on which the interval is computed"
    )
    confidence_level: float = Field(default=0.95, gt=0.0, lt=1.0)
    n_jobs: int = Field(default=1, description="Number of parallel fold workers")
    backend: str = Field(default="threading", description="joblib parallel backend")
    random_state: Union[int, None] = Field(default=None)

    model_config = {"frozen": True}

    @field_validator("n_jobs")
    @classmethod
    def validate_n_jobs(cls, v: int) -> int:
        """joblib accepts positive counts or negative values counting from the cores."""
        if v == 0:
            raise ValueError("n_jobs must be non-zero")
        return v

    @classmethod
    def from_options(cls, **options: Any) -> EstimationConfig:
        """Build a configuration, raising ConfigurationError on invalid values.

        Options passed as None keep their defaults, except ``trim=None``,
        which disables trimming.
        """
        trim = options.get("trim")
        if "trim" in options and trim is None:
            options["trim"] = TrimmingConfig(method=None)
        elif isinstance(trim, (int, float)):
            options["trim"] = {"method": "quantile", "level": float(trim)}
        try:
            return cls(**{k: v for k, v in options.items() if v is not None})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid estimation configuration: {e}") from e
