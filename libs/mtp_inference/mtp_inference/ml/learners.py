"""Learner capability used by the nuisance models.

The nuisance layer only relies on the minimal protocol below: a learner is
fit on features and a target (optionally weighted) and predicts on new rows.
Any scikit-learn estimator satisfies it. ``SuperLearner`` is the default
implementation: a stacked ensemble of scikit-learn estimators whose weights
are chosen by non-negative least squares on cross-validated predictions.
"""
# ruff: noqa: N803, N806

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal, Optional, Protocol, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy.optimize import nnls
from sklearn.base import BaseEstimator, clone
from sklearn.dummy import DummyClassifier, DummyRegressor
from sklearn.ensemble import (
    GradientBoostingClassifier,
    GradientBoostingRegressor,
    RandomForestClassifier,
    RandomForestRegressor,
)
from sklearn.linear_model import (
    LassoCV,
    LinearRegression,
    LogisticRegression,
    LogisticRegressionCV,
    RidgeCV,
)
from sklearn.model_selection import KFold, StratifiedKFold
from sklearn.utils.validation import has_fit_parameter

from ..core.base import EstimationError

__all__ = [
    "Learner",
    "SuperLearner",
    "FittedNuisance",
    "design_matrix",
    "fit_nuisance",
    "default_outcome_learner",
    "default_treatment_learner",
]

logger = logging.getLogger(__name__)

TaskType = Literal["regression", "classification"]

_ALIASES = {
    "linear_regression": "glm",
    "logistic_regression": "glm",
    "lasso_logistic": "lasso",
    "rf": "random_forest",
    "gbm": "gradient_boosting",
}


class Learner(Protocol):
    """Protocol for nuisance learners."""

    def fit(
        self, X: pd.DataFrame, y: NDArray[Any], sample_weight: Optional[NDArray[Any]] = None
    ) -> Any:
        """Fit the learner to training data."""
        ...

    def predict(self, X: pd.DataFrame) -> NDArray[Any]:
        """Make predictions on new data."""
        ...


def _base_learner(name: str, task_type: TaskType, random_state: Optional[int]) -> Any:
    name = _ALIASES.get(name.lower(), name.lower())
    classification = task_type == "classification"

    if name == "mean":
        return DummyClassifier(strategy="prior") if classification else DummyRegressor()
    elif name == "glm":
        if classification:
            return LogisticRegression(max_iter=1000)
        return LinearRegression()
    elif name == "lasso":
        if classification:
            return LogisticRegressionCV(
                cv=3, penalty="l1", solver="saga", max_iter=2000, random_state=random_state
            )
        return LassoCV(cv=3, random_state=random_state, max_iter=10000)
    elif name == "ridge":
        if classification:
            return LogisticRegressionCV(cv=3, max_iter=1000)
        return RidgeCV()
    elif name == "random_forest":
        params = {"n_estimators": 200, "min_samples_leaf": 5, "random_state": random_state}
        if classification:
            return RandomForestClassifier(**params)
        return RandomForestRegressor(**params)
    elif name == "gradient_boosting":
        params = {"n_estimators": 100, "max_depth": 3, "random_state": random_state}
        if classification:
            return GradientBoostingClassifier(**params)
        return GradientBoostingRegressor(**params)
    else:
        raise ValueError(f"Unknown base learner: {name}")


def _fit_with_weights(
    estimator: Any, X: Any, y: NDArray[Any], sample_weight: Optional[NDArray[Any]]
) -> Any:
    if sample_weight is not None and has_fit_parameter(estimator, "sample_weight"):
        return estimator.fit(X, y, sample_weight=sample_weight)
    return estimator.fit(X, y)


def _predict_score(estimator: Any, X: Any, task_type: TaskType) -> NDArray[Any]:
    if task_type == "classification" and hasattr(estimator, "predict_proba"):
        proba = estimator.predict_proba(X)
        classes = list(getattr(estimator, "classes_", [0, 1]))
        if 1 in classes:
            return proba[:, classes.index(1)]
        return np.zeros(len(X))
    return np.asarray(estimator.predict(X), dtype=float)


class SuperLearner(BaseEstimator):
    """Stacked ensemble of scikit-learn estimators.

    Base learners are combined with non-negative weights that sum to one,
    chosen by non-negative least squares on cross-validated predictions.
    For classification the ensemble combines predicted probabilities of the
    positive class.

    Attributes:
        base_learners: Names of library estimators ('mean', 'glm', 'lasso',
            'ridge', 'random_forest', 'gradient_boosting') or estimator objects
        task_type: 'regression' or 'classification'
        cv_folds: Number of internal folds used to choose the weights
        random_state: Seed for the internal folds and stochastic learners
    """

    def __init__(
        self,
        base_learners: Sequence[Union[str, Any]] = ("mean", "glm"),
        task_type: TaskType = "regression",
        cv_folds: int = 5,
        random_state: Optional[int] = None,
    ) -> None:
        self.base_learners = base_learners
        self.task_type = task_type
        self.cv_folds = cv_folds
        self.random_state = random_state

    def _library(self) -> dict[str, Any]:
        library: dict[str, Any] = {}
        for i, learner in enumerate(self.base_learners):
            if isinstance(learner, str):
                library[learner] = _base_learner(learner, self.task_type, self.random_state)
            else:
                library[f"{type(learner).__name__}_{i}"] = clone(learner)
        if not library:
            raise ValueError("SuperLearner requires at least one base learner")
        return library

    def _splitter(self, y: NDArray[Any]) -> Any:
        if self.task_type == "classification":
            _, counts = np.unique(y, return_counts=True)
            n_splits = min(self.cv_folds, int(counts.min())) if len(counts) > 1 else 0
            if n_splits < 2:
                return None
            return StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=self.random_state)
        n_splits = min(self.cv_folds, len(y))
        if n_splits < 2:
            return None
        return KFold(n_splits=n_splits, shuffle=True, random_state=self.random_state)

    def fit(
        self, X: Any, y: NDArray[Any], sample_weight: Optional[NDArray[Any]] = None
    ) -> SuperLearner:
        """Fit base learners and choose ensemble weights.

        Args:
            X: Feature matrix
            y: Target values
            sample_weight: Optional observation weights

        Returns:
            self
        """
        X = pd.DataFrame(X).reset_index(drop=True)
        y = np.asarray(y, dtype=float)
        if self.task_type == "classification":
            y = y.astype(int)
        library = self._library()
        names = list(library)
        splitter = self._splitter(y) if len(names) > 1 else None

        if splitter is None:
            weights = np.full(len(names), 1.0 / len(names))
        else:
            cv_predictions = np.zeros((len(y), len(names)))
            for train_idx, val_idx in splitter.split(X, y):
                sw = sample_weight[train_idx] if sample_weight is not None else None
                for j, name in enumerate(names):
                    model = _fit_with_weights(
                        clone(library[name]), X.iloc[train_idx], y[train_idx], sw
                    )
                    cv_predictions[val_idx, j] = _predict_score(
                        model, X.iloc[val_idx], self.task_type
                    )
            weights = self._ensemble_weights(cv_predictions, y, sample_weight)

        self.fitted_learners_ = {
            name: _fit_with_weights(clone(library[name]), X, y, sample_weight)
            for name, w in zip(names, weights)
            if w > 0
        }
        self.learner_weights_ = {
            name: float(w) for name, w in zip(names, weights) if w > 0
        }
        self.is_fitted = True
        return self

    @staticmethod
    def _ensemble_weights(
        Z: NDArray[Any], y: NDArray[Any], sample_weight: Optional[NDArray[Any]]
    ) -> NDArray[Any]:
        root_w = np.sqrt(sample_weight) if sample_weight is not None else np.ones(len(y))
        coef, _ = nnls(Z * root_w[:, None], y * root_w)
        if coef.sum() <= 0:
            risk = np.average((Z - y[:, None]) ** 2, axis=0, weights=root_w**2)
            coef = np.zeros(Z.shape[1])
            coef[int(np.argmin(risk))] = 1.0
        return coef / coef.sum()

    def _combine(self, X: Any) -> NDArray[Any]:
        X = pd.DataFrame(X)
        prediction = np.zeros(len(X))
        for name, model in self.fitted_learners_.items():
            prediction += self.learner_weights_[name] * _predict_score(
                model, X, self.task_type
            )
        return prediction

    def predict(self, X: Any) -> NDArray[Any]:
        """Ensemble prediction (class labels for classification)."""
        if self.task_type == "classification":
            return (self._combine(X) >= 0.5).astype(int)
        return self._combine(X)

    def predict_proba(self, X: Any) -> NDArray[Any]:
        """Ensemble class probabilities, columns ordered as classes (0, 1)."""
        if self.task_type != "classification":
            raise AttributeError("predict_proba is only available for classification")
        p = np.clip(self._combine(X), 0.0, 1.0)
        return np.column_stack([1 - p, p])

    @property
    def classes_(self) -> NDArray[Any]:
        """Binary class labels."""
        return np.array([0, 1])

    def get_learner_weights(self) -> dict[str, float]:
        """Ensemble weight of every base learner kept in the final fit."""
        return dict(self.learner_weights_)


def default_outcome_learner() -> SuperLearner:
    """Default learner for outcome regressions."""
    return SuperLearner(base_learners=["mean", "glm"], task_type="regression")


def default_treatment_learner() -> SuperLearner:
    """Default learner for the density ratio and censoring classifiers."""
    return SuperLearner(base_learners=["mean", "glm"], task_type="classification")


def design_matrix(
    frame: pd.DataFrame, columns: Sequence[str], reference: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """Numeric feature matrix with categorical columns one-hot encoded.

    Args:
        frame: Source table
        columns: Columns to use as predictors
        reference: Feature names of a fitted model; missing dummies are zero-filled

    Returns:
        Float DataFrame of features
    """
    X = frame.loc[:, list(columns)]
    categorical = [
        c for c in X.columns
        if not (pd.api.types.is_numeric_dtype(X[c]) or pd.api.types.is_bool_dtype(X[c]))
    ]
    if categorical:
        X = pd.get_dummies(X, columns=categorical, dtype=float)
    X = X.astype(float)
    if reference is not None:
        X = X.reindex(columns=list(reference), fill_value=0.0)
    return X.reset_index(drop=True)


@dataclass(frozen=True)
class FittedNuisance:
    """A fitted learner plus what is needed to predict on new rows."""

    estimator: Any
    task_type: TaskType
    feature_names: tuple[str, ...]
    constant: Optional[float] = None

    def predict(self, frame: pd.DataFrame, columns: Sequence[str]) -> NDArray[Any]:
        """Predict (probability of class 1 for classification) on ``frame`` rows."""
        if len(frame) == 0:
            return np.zeros(0)
        if self.constant is not None:
            return np.full(len(frame), self.constant)
        X = design_matrix(frame, columns, reference=self.feature_names)
        return _predict_score(self.estimator, X, self.task_type)

    @property
    def weights(self) -> Optional[dict[str, float]]:
        """Ensemble weights, when the learner reports them."""
        if self.constant is not None:
            return None
        getter = getattr(self.estimator, "get_learner_weights", None)
        return getter() if callable(getter) else None


def _seeded(learner: Any, random_state: Optional[int]) -> Any:
    try:
        model = clone(learner)
    except TypeError:
        model = learner
    if random_state is not None and hasattr(model, "get_params"):
        if "random_state" in model.get_params(deep=False):
            model.set_params(random_state=random_state)
    return model


def fit_nuisance(
    learner: Any,
    frame: pd.DataFrame,
    columns: Sequence[str],
    y: NDArray[Any],
    task_type: TaskType,
    sample_weight: Optional[NDArray[Any]] = None,
    random_state: Optional[int] = None,
) -> FittedNuisance:
    """Fit a fresh copy of ``learner`` on ``frame[columns]``.

    Classification targets with a single class produce a constant model.

    Raises:
        EstimationError: If the learner fails to fit
    """
    y = np.asarray(y, dtype=float)
    if task_type == "classification" and len(np.unique(y)) < 2:
        value = float(y[0]) if len(y) else 0.5
        return FittedNuisance(None, task_type, tuple(columns), constant=value)

    X = design_matrix(frame, columns)
    model = _seeded(learner, random_state)
    target = y.astype(int) if task_type == "classification" else y
    try:
        _fit_with_weights(model, X, target, sample_weight)
    except Exception as e:
        raise EstimationError(
            f"Failed to fit {type(model).__name__} on {len(y)} rows: {str(e)}"
        ) from e
    logger.debug("Fitted %s on %d rows, %d features", type(model).__name__, len(y), X.shape[1])
    return FittedNuisance(model, task_type, tuple(X.columns), constant=None)
