"""Nuisance models: density ratios and sequential outcome regressions."""

from .density_ratio import (
    DensityRatioFit,
    cumulative_ratios,
    estimate_density_ratios,
    trim_ratios,
)
from .outcome_regression import OutcomeFit, UpdateRule, estimate_outcome_regressions

__all__ = [
    "DensityRatioFit",
    "cumulative_ratios",
    "estimate_density_ratios",
    "trim_ratios",
    "OutcomeFit",
    "UpdateRule",
    "estimate_outcome_regressions",
]
