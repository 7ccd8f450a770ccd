"""Estimators of the mean outcome under a longitudinal modified treatment policy.

All four estimators share data preparation, cross-fitting and assembly and
differ only in which nuisance models they fit and how the outcome
regressions are updated:

- ``TMLEEstimator``: density ratios and targeted outcome regressions
- ``SDREstimator``: density ratios and sequentially doubly robust regressions
- ``SubstitutionEstimator``: outcome regressions only (G-computation)
- ``IPWEstimator``: density ratios only

Example:
    >>> from mtp_inference import TMLEEstimator, additive_shift
    >>> est = TMLEEstimator(
    ...     trt=["A_1", "A_2"],
    ...     outcome="Y",
    ...     baseline=["W"],
    ...     time_vary=[["L_1"], ["L_2"]],
    ...     folds=5,
    ...     random_state=42,
    ... )
    >>> result = est.fit(df, shift=additive_shift(-1, lower=0)).estimate()  # doctest: +SKIP
"""

from __future__ import annotations

import abc
import logging
import math
import time
from collections.abc import Sequence
from functools import partial
from typing import Any, Callable, Optional, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from ..core.base import (
    CausalInferenceError,
    EstimationError,
    EstimatorType,
    OutcomeType,
    ShiftEffect,
)
from ..core.config import EstimationConfig, TrimmingConfig
from ..core.longitudinal import LongitudinalSpec
from ..core.node_list import NodeList
from ..core.preparation import PreparedData, prepare_data
from ..core.shift import ShiftPolicy
from ..ml.cross_fitting import (
    CrossFitCoordinator,
    FoldResult,
    ParallelCrossFittingConfig,
    make_folds,
)
from ..ml.learners import SuperLearner, default_outcome_learner, default_treatment_learner
from ..nuisance.density_ratio import cumulative_ratios, estimate_density_ratios, trim_ratios
from ..nuisance.outcome_regression import UpdateRule, estimate_outcome_regressions
from .assembly import assemble

__all__ = [
    "LMTPEstimator",
    "TMLEEstimator",
    "SDREstimator",
    "SubstitutionEstimator",
    "IPWEstimator",
]

logger = logging.getLogger(__name__)


def _resolve_learner(learner: Any, task_type: str) -> Any:
    if learner is None:
        if task_type == "classification":
            return default_treatment_learner()
        return default_outcome_learner()
    if isinstance(learner, str) or (
        isinstance(learner, Sequence) and all(isinstance(x, str) for x in learner)
    ):
        names = [learner] if isinstance(learner, str) else list(learner)
        return SuperLearner(base_learners=names, task_type=task_type)
    return learner


class LMTPEstimator(abc.ABC):
    """Base class for the cross-fitted modified treatment policy estimators.

    Subclasses declare which nuisance models they need through
    ``uses_density_ratios`` and ``update_rule``.

    Attributes:
        spec: Column layout of the observation table
        config: Estimation policy
        learners_outcome: Learner for the outcome regressions
        learners_trt: Classifier for density ratios and censoring
        progress: Optional thread-safe callback receiving completed fit counts
        is_fitted: Whether the estimator has been fitted
        result_: ShiftEffect produced by the last fit
    """

    estimator_type: EstimatorType
    uses_density_ratios: bool = True
    update_rule: Optional[UpdateRule] = None

    def __init__(
        self,
        trt: Union[str, list[str]],
        outcome: Union[str, list[str]],
        baseline: Optional[list[str]] = None,
        time_vary: Optional[list[list[str]]] = None,
        cens: Optional[list[str]] = None,
        id: Optional[str] = None,
        weights: Optional[str] = None,
        k: Optional[float] = math.inf,
        outcome_type: Union[OutcomeType, str, None] = None,
        bounds: Optional[tuple[float, float]] = None,
        learners_outcome: Any = None,
        learners_trt: Any = None,
        folds: Optional[int] = None,
        bound: Optional[float] = None,
        trim: Union[TrimmingConfig, float, dict[str, Any], None] = TrimmingConfig(),
        unshifted_ratio: Optional[str] = None,
        covariate_fill: Optional[str] = None,
        ci_scale: Optional[str] = None,
        confidence_level: Optional[float] = None,
        n_jobs: Optional[int] = None,
        random_state: Optional[int] = None,
        progress: Optional[Callable[[int], None]] = None,
        config: Optional[EstimationConfig] = None,
    ) -> None:
        """Initialize the estimator.

        Args:
            trt: Treatment columns ordered by time, or a single point treatment
            outcome: Outcome column, or one column per time point for survival
            baseline: Covariates measured before the first treatment
            time_vary: Covariates introduced at each time point
            cens: Censoring indicators (1 = still observed after the time point)
            id: Cluster identifier column
            weights: Row weight column
            k: Markov order of the covariate history; None or inf keeps all
            outcome_type: 'continuous', 'binomial' or 'survival'; inferred for a
                single outcome column when omitted
            bounds: Bounds for rescaling a continuous outcome
            learners_outcome: Regressor (or base learner names) for outcome regressions
            learners_trt: Classifier (or base learner names) for density ratios
            folds: Number of cross-fitting folds
            bound: Predictions are bounded to [bound, 1 - bound]
            trim: Trimming policy for cumulative density ratios; a number is
                a quantile level and None disables trimming
            unshifted_ratio: 'fixed' or 'estimated'; by default the policy's own
                ``unshifted_ratio`` attribute, else 'fixed'
            covariate_fill: 'carry_forward' or 'zero'
            ci_scale: 'identity' or 'logit'
            confidence_level: Coverage of the confidence interval
            n_jobs: Number of fold workers
            random_state: Single seed for folds and learners
            progress: Optional thread-safe progress callback
            config: Complete estimation policy; overrides the individual options

        Raises:
            ConfigurationError: If the column layout or options are invalid
        """
        self.spec = LongitudinalSpec.from_options(
            trt=trt,
            outcome=outcome,
            baseline=baseline or [],
            time_vary=time_vary,
            cens=cens,
            id=id,
            weights=weights,
            k=k,
            outcome_type=outcome_type,
            bounds=bounds,
        )
        if config is None:
            config = EstimationConfig.from_options(
                folds=folds,
                bound=bound,
                trim=trim,
                unshifted_ratio=unshifted_ratio,
                covariate_fill=covariate_fill,
                ci_scale=ci_scale,
                confidence_level=confidence_level,
                n_jobs=n_jobs,
                random_state=random_state,
            )
        self.config = config
        self.learners_outcome = _resolve_learner(learners_outcome, "regression")
        self.learners_trt = _resolve_learner(learners_trt, "classification")
        self.progress = progress

        self.is_fitted = False
        self.result_: Optional[ShiftEffect] = None
        self.prepared_: Optional[PreparedData] = None
        self.fold_results_: list[FoldResult] = []

    @property
    def node_list(self) -> NodeList:
        """Predictor sets per time point implied by the column layout."""
        return self.spec.node_list()

    def fit(self, data: pd.DataFrame, shift: ShiftPolicy) -> LMTPEstimator:
        """Fit the nuisance models by cross-fitting and assemble the estimate.

        Args:
            data: Wide-format observation table, one row per unit
            shift: Modified treatment policy ``shift(data, trt_column) -> values``

        Returns:
            self: The fitted estimator instance

        Raises:
            ConfigurationError: If columns, folds or the policy are invalid
            DataError: If the observation table is unusable
            EstimationError: If a learner or the targeting step fails
        """
        self.is_fitted = False
        self.result_ = None

        prepared = prepare_data(data, self.spec, shift, self.config)
        plan = make_folds(
            prepared.n, self.config.folds, prepared.groups, self.config.random_state
        )
        coordinator = CrossFitCoordinator(
            plan,
            random_state=self.config.random_state,
            parallel_config=ParallelCrossFittingConfig(
                n_jobs=self.config.n_jobs, parallel_backend=self.config.backend
            ),
        )
        logger.info(
            "Fitting %s: %d observations, %d time points, %d folds",
            self.__class__.__name__,
            prepared.n,
            prepared.tau,
            plan.n_folds,
        )

        try:
            results = coordinator.run(partial(self._fit_fold, prepared))
        except CausalInferenceError:
            raise
        except Exception as e:
            raise EstimationError(f"Failed to fit estimator: {str(e)}") from e

        self.prepared_ = prepared
        self.fold_results_ = results
        self.result_ = assemble(self.estimator_type, prepared, results, self.config)
        self.is_fitted = True
        return self

    def estimate(self) -> ShiftEffect:
        """Return the estimate of the last fit.

        Raises:
            EstimationError: If the estimator is not fitted
        """
        if not self.is_fitted or self.result_ is None:
            raise EstimationError("Estimator must be fitted before estimation")
        return self.result_

    def _fit_fold(
        self,
        prepared: PreparedData,
        fold: int,
        train_idx: NDArray[Any],
        valid_idx: NDArray[Any],
        seed: np.random.SeedSequence,
    ) -> FoldResult:
        start = time.perf_counter()
        ratio_seed, outcome_seed = seed.spawn(2)
        ratios = None
        valid_cumulative = None
        diagnostics = {"clipped_probabilities": 0, "clipped_predictions": 0, "trimmed_ratios": 0}

        if self.uses_density_ratios:
            ratios = estimate_density_ratios(
                prepared,
                train_idx,
                valid_idx,
                self.learners_trt,
                self.config,
                ratio_seed.spawn(prepared.tau),
                progress=self.progress,
            )
            valid_cumulative, n_trimmed = trim_ratios(
                cumulative_ratios(ratios.valid), self.config.trim
            )
            diagnostics["clipped_probabilities"] = ratios.clipped
            diagnostics["trimmed_ratios"] = n_trimmed

        outcome = None
        if self.update_rule is not None:
            outcome = estimate_outcome_regressions(
                prepared,
                train_idx,
                valid_idx,
                self.learners_outcome,
                self.config,
                self.update_rule,
                outcome_seed.spawn(prepared.tau),
                ratios=ratios,
                valid_cumulative=valid_cumulative,
                progress=self.progress,
            )
            diagnostics["clipped_predictions"] = outcome.clipped

        logger.debug("Fold %d finished in %.2fs", fold, time.perf_counter() - start)
        return FoldResult(
            fold=fold,
            val_indices=valid_idx,
            outcome_natural=None if outcome is None else outcome.natural,
            outcome_shifted=None if outcome is None else outcome.shifted,
            ratios=None if ratios is None else ratios.valid,
            cumulative_ratios=valid_cumulative,
            weights_m=() if outcome is None else outcome.weights,
            weights_r=() if ratios is None else ratios.weights,
            diagnostics=diagnostics,
            elapsed=time.perf_counter() - start,
        )


class TMLEEstimator(LMTPEstimator):
    """Cross-fitted targeted maximum likelihood estimator.

    After each outcome regression a logistic fluctuation, weighted by the
    cumulative density ratio, is fit on the held-out rows so that the
    efficient estimating equation is solved. Doubly robust and efficient;
    the estimate stays within the bounds of the outcome.
    """

    estimator_type = EstimatorType.TMLE
    uses_density_ratios = True
    update_rule = UpdateRule.TMLE


class SDREstimator(LMTPEstimator):
    """Cross-fitted sequentially doubly robust estimator.

    Each outcome regression targets a doubly robust transformed outcome, and
    the estimate is the mean of the efficient influence function.
    """

    estimator_type = EstimatorType.SDR
    uses_density_ratios = True
    update_rule = UpdateRule.SDR


class SubstitutionEstimator(LMTPEstimator):
    """Sequential regression (G-computation) estimator.

    Consistent only when every outcome regression is correctly specified.
    No standard error is reported.
    """

    estimator_type = EstimatorType.SUBSTITUTION
    uses_density_ratios = False
    update_rule = UpdateRule.SUBSTITUTION


class IPWEstimator(LMTPEstimator):
    """Inverse probability weighting estimator using cumulative density ratios.

    Consistent only when every density ratio is correctly estimated.
    No standard error is reported.
    """

    estimator_type = EstimatorType.IPW
    uses_density_ratios = True
    update_rule = None
