"""Learner capability and cross-fitting infrastructure."""

from .cross_fitting import (
    CrossFitCoordinator,
    FoldPlan,
    FoldResult,
    ProgressCounter,
    make_folds,
)
from .learners import SuperLearner, design_matrix, fit_nuisance

__all__ = [
    "CrossFitCoordinator",
    "FoldPlan",
    "FoldResult",
    "ProgressCounter",
    "make_folds",
    "SuperLearner",
    "design_matrix",
    "fit_nuisance",
]
