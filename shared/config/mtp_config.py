"""Environment defaults for modified treatment policy estimation."""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import SettingsConfigDict

from mtp_inference.core.config import EstimationConfig, TrimmingConfig

from .base import BaseConfiguration, Environment


class MTPInferenceConfig(BaseConfiguration):
    """Defaults for estimation read from ``MTP_*`` environment variables.

    Example:
        ``MTP_FOLDS=5 MTP_N_JOBS=4`` gives five folds run on four workers.
    """

    model_config = SettingsConfigDict(
        env_prefix="MTP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    folds: int = Field(default=10, description="Number of cross-fitting folds")
    bound: float = Field(default=1e-5, description="Prediction bound away from 0 and 1")
    trim_method: Literal["quantile", "threshold", "none"] = Field(
        default="quantile", description="Trimming rule for cumulative density ratios"
    )
    trim_level: float = Field(default=0.999, description="Trimming quantile or cap")
    unshifted_ratio: Literal["fixed", "estimated"] | None = Field(
        default=None, description="Unshifted row ratio rule; unset follows the policy"
    )
    covariate_fill: Literal["carry_forward", "zero"] = Field(default="carry_forward")
    ci_scale: Literal["identity", "logit"] = Field(default="identity")
    confidence_level: float = Field(
        default=0.95, description="Default confidence level for estimates"
    )
    n_jobs: int = Field(default=1, description="Number of parallel fold workers")
    parallel_backend: str = Field(default="threading", description="joblib backend")
    random_state: int | None = Field(default=None, description="Top-level seed")

    enable_metrics: bool = Field(default=True, description="Enable metrics collection")
    log_level: str | None = Field(
        default=None, description="Overrides the environment's default log level"
    )

    @field_validator("confidence_level")
    @classmethod
    def validate_confidence_level(cls, v: float) -> float:
        """Confidence level must lie strictly between 0 and 1."""
        if not 0 < v < 1:
            raise ValueError("Confidence level must be between 0 and 1")
        return v

    @field_validator("folds")
    @classmethod
    def validate_folds(cls, v: int) -> int:
        """Cross-fitting needs at least two folds."""
        if v < 2:
            raise ValueError("folds must be at least 2")
        return v

    def estimation_config(self) -> EstimationConfig:
        """Estimation policy built from these defaults."""
        trim = TrimmingConfig(
            method=None if self.trim_method == "none" else self.trim_method,
            level=self.trim_level,
        )
        return EstimationConfig(
            folds=self.folds,
            bound=self.bound,
            trim=trim,
            unshifted_ratio=self.unshifted_ratio,
            covariate_fill=self.covariate_fill,
            ci_scale=self.ci_scale,
            confidence_level=self.confidence_level,
            n_jobs=self.n_jobs,
            backend=self.parallel_backend,
            random_state=self.random_state,
        )

    def validate_configuration(self) -> list[str]:
        """Flag settings that are legal but risky."""
        issues = super().validate_configuration()

        if self.environment == Environment.PRODUCTION and self.random_state is None:
            issues.append("Set MTP_RANDOM_STATE in production for reproducible estimates")
        if self.folds < 5:
            issues.append("Fewer than 5 folds leaves little data for the nuisance models")
        if self.trim_method == "none":
            issues.append("Untrimmed density ratios can inflate the variance")
        if self.unshifted_ratio == "estimated":
            issues.append("Estimated ratios for unshifted rows may suffer from separation")
        return issues
