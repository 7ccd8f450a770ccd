"""Cross-fitting infrastructure for the longitudinal estimators.

Cross-fitting (also called sample splitting) reduces overfitting bias when
machine learning methods estimate the nuisance parameters: every nuisance
prediction used for inference comes from models that never saw that row.
Folds are independent units of work and run on a joblib worker pool.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
from joblib import Parallel, delayed
from numpy.typing import NDArray
from sklearn.model_selection import KFold

from ..core.base import ConfigurationError

__all__ = [
    "ParallelCrossFittingConfig",
    "FoldPlan",
    "FoldResult",
    "ProgressCounter",
    "CrossFitCoordinator",
    "make_folds",
    "seed_to_int",
]

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


@dataclass
class ParallelCrossFittingConfig:
    """Configuration for parallel cross-fitting."""

    n_jobs: int = 1
    parallel_backend: str = "threading"


@dataclass(frozen=True)
class FoldPlan:
    """Partition of row indices into disjoint held-out sets.

    Attributes:
        n_folds: Number of folds
        train_indices: Training (complement) row indices per fold
        val_indices: Held-out row indices per fold
    """

    n_folds: int
    train_indices: tuple[NDArray[Any], ...]
    val_indices: tuple[NDArray[Any], ...]

    @property
    def n(self) -> int:
        """Number of rows covered by the plan."""
        return int(sum(len(idx) for idx in self.val_indices))

    def fold_ids(self) -> NDArray[Any]:
        """Fold id of every row."""
        ids = np.full(self.n, -1, dtype=int)
        for v, idx in enumerate(self.val_indices):
            ids[idx] = v
        return ids


@dataclass(frozen=True)
class FoldResult:
    """Immutable nuisance fragment returned by one fold worker.

    Matrices are indexed by the rows in ``val_indices``, in that order.

    Attributes:
        fold: Fold number
        val_indices: Held-out row indices
        outcome_natural: Outcome regressions under the natural treatment,
            n_val x (tau + 1); the last column is the observed outcome
        outcome_shifted: Outcome regressions under the shift, n_val x (tau + 1)
        ratios: Raw per-time-point density ratios, n_val x tau
        cumulative_ratios: Trimmed cumulative ratios, n_val x tau
        weights_m: Outcome learner weights per time point
        weights_r: Treatment learner weights per time point
        diagnostics: Clipping and trimming counts
        elapsed: Wall time of the fold in seconds
    """

    fold: int
    val_indices: NDArray[Any]
    outcome_natural: Optional[NDArray[Any]]
    outcome_shifted: Optional[NDArray[Any]]
    ratios: Optional[NDArray[Any]]
    cumulative_ratios: Optional[NDArray[Any]]
    weights_m: tuple[Any, ...] = ()
    weights_r: tuple[Any, ...] = ()
    diagnostics: dict[str, int] = field(default_factory=dict)
    elapsed: float = 0.0


class ProgressCounter:
    """Thread-safe count of completed nuisance fits.

    Args:
        total: Expected number of fits, if known
        callback: Optional function called with (completed, total) after each update
    """

    def __init__(
        self,
        total: Optional[int] = None,
        callback: Optional[Callable[[int, Optional[int]], None]] = None,
    ) -> None:
        self.total = total
        self.callback = callback
        self._count = 0
        self._lock = threading.Lock()

    def __call__(self, increment: int = 1) -> None:
        with self._lock:
            self._count += increment
            completed = self._count
        if self.callback is not None:
            self.callback(completed, self.total)

    @property
    def count(self) -> int:
        """Number of completed fits."""
        with self._lock:
            return self._count


def seed_to_int(seed: np.random.SeedSequence, index: int = 0) -> int:
    """Integer seed for scikit-learn estimators derived from a SeedSequence.

    Distinct ``index`` values give independent seeds from the same sequence
    without spawning, so repeated calls stay reproducible.
    """
    return int(seed.generate_state(index + 1, dtype=np.uint32)[index])


def make_folds(
    n: int,
    n_folds: int,
    groups: Optional[Sequence[Any]] = None,
    random_state: Optional[int] = None,
) -> FoldPlan:
    """Create cross-fitting splits.

    All rows sharing a cluster id land in the same fold.

    Args:
        n: Number of rows
        n_folds: Number of folds (at least 2)
        groups: Optional cluster id per row
        random_state: Seed for the shuffled assignment

    Returns:
        FoldPlan with disjoint, exhaustive held-out sets

    Raises:
        ConfigurationError: If the number of folds cannot be formed
    """
    if n_folds < 2:
        raise ConfigurationError(f"folds must be at least 2, got {n_folds}")

    if groups is None:
        if n_folds > n:
            raise ConfigurationError(
                f"Cannot split {n} observations into {n_folds} folds"
            )
        splitter = KFold(n_splits=n_folds, shuffle=True, random_state=random_state)
        splits = list(splitter.split(np.arange(n)))
    else:
        groups = np.asarray(groups)
        if len(groups) != n:
            raise ConfigurationError("groups must have one entry per observation")
        clusters, codes = np.unique(groups, return_inverse=True)
        if n_folds > len(clusters):
            raise ConfigurationError(
                f"Cannot split {len(clusters)} clusters into {n_folds} folds"
            )
        splitter = KFold(n_splits=n_folds, shuffle=True, random_state=random_state)
        splits = []
        for train_clusters, val_clusters in splitter.split(clusters):
            val_mask = np.isin(codes, val_clusters)
            splits.append((np.flatnonzero(~val_mask), np.flatnonzero(val_mask)))

    return FoldPlan(
        n_folds=n_folds,
        train_indices=tuple(np.sort(train) for train, _ in splits),
        val_indices=tuple(np.sort(val) for _, val in splits),
    )


FoldFunction = Callable[
    [int, NDArray[Any], NDArray[Any], np.random.SeedSequence], FoldResult
]


class CrossFitCoordinator:
    """Run one nuisance worker per fold and collect the fragments.

    Each fold receives its training and held-out indices and a seed spawned
    from the single top-level ``random_state``, so results do not depend on
    scheduling order or on the number of workers.
    """

    def __init__(
        self,
        plan: FoldPlan,
        random_state: Optional[int] = None,
        parallel_config: Optional[ParallelCrossFittingConfig] = None,
    ) -> None:
        self.plan = plan
        self.random_state = random_state
        self.parallel_config = parallel_config or ParallelCrossFittingConfig()
        self._fold_timings_: list[float] = []

    def _fold_seeds(self) -> list[np.random.SeedSequence]:
        return np.random.SeedSequence(self.random_state).spawn(self.plan.n_folds)

    def run(self, fold_fn: FoldFunction) -> list[FoldResult]:
        """Run ``fold_fn`` on every fold.

        Args:
            fold_fn: Worker ``fold_fn(fold, train_idx, val_idx, seed) -> FoldResult``

        Returns:
            Fold results ordered by fold number

        Raises:
            RuntimeError: If the fragments do not cover every row exactly once
        """
        seeds = self._fold_seeds()
        tasks = [
            (v, self.plan.train_indices[v], self.plan.val_indices[v], seeds[v])
            for v in range(self.plan.n_folds)
        ]
        start_time = time.perf_counter()

        if self.parallel_config.n_jobs == 1:
            results = [fold_fn(*task) for task in tasks]
        else:
            results = Parallel(
                n_jobs=self.parallel_config.n_jobs,
                backend=self.parallel_config.parallel_backend,
            )(delayed(fold_fn)(*task) for task in tasks)

        results = sorted(results, key=lambda r: r.fold)
        self._fold_timings_ = [r.elapsed for r in results]
        self._check_coverage(results)

        logger.info(
            "Cross-fitting finished: %d folds in %.2fs (n_jobs=%s)",
            self.plan.n_folds,
            time.perf_counter() - start_time,
            self.parallel_config.n_jobs,
        )
        return results

    def _check_coverage(self, results: Sequence[FoldResult]) -> None:
        counts = np.zeros(self.plan.n, dtype=int)
        for result in results:
            counts[result.val_indices] += 1
        if np.any(counts != 1):
            raise RuntimeError(
                "Cross-fitting fragments must cover every observation exactly once"
            )

    @staticmethod
    def stitch(
        results: Sequence[FoldResult], attribute: str, n: int
    ) -> Optional[NDArray[Any]]:
        """Concatenate one matrix attribute of the fragments by original row index."""
        blocks = [getattr(r, attribute) for r in results]
        if any(block is None for block in blocks):
            return None
        width = blocks[0].shape[1]
        out = np.full((n, width), np.nan)
        for result, block in zip(results, blocks):
            out[result.val_indices] = block
        return out
