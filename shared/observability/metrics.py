"""Prometheus metrics for modified treatment policy estimation."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class MTPInferenceMetrics:
    """Metrics collection for estimation runs."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()

        self.estimation_duration = Histogram(
            "mtp_inference_estimation_duration_seconds",
            "Duration of estimation runs",
            ["estimator", "status"],
            registry=self.registry,
        )

        self.estimation_count = Counter(
            "mtp_inference_estimations_total",
            "Total number of estimation runs",
            ["estimator", "status"],
            registry=self.registry,
        )

        self.sample_size_gauge = Gauge(
            "mtp_inference_sample_size",
            "Number of observations of the latest estimation",
            ["estimator"],
            registry=self.registry,
        )

        self.nuisance_fits = Counter(
            "mtp_inference_nuisance_fits_total",
            "Completed nuisance model fits",
            ["estimator"],
            registry=self.registry,
        )

        self.clipped_values = Counter(
            "mtp_inference_clipped_values_total",
            "Predictions bounded away from 0 and 1",
            ["estimator"],
            registry=self.registry,
        )

        self.errors = Counter(
            "mtp_inference_errors_total",
            "Total errors",
            ["error_type", "estimator"],
            registry=self.registry,
        )

    def record_estimation(
        self, estimator: str, duration: float, status: str, sample_size: int
    ) -> None:
        """Record a finished estimation run."""
        self.estimation_duration.labels(estimator=estimator, status=status).observe(duration)
        self.estimation_count.labels(estimator=estimator, status=status).inc()
        self.sample_size_gauge.labels(estimator=estimator).set(sample_size)

    def record_clipping(self, estimator: str, count: int) -> None:
        """Record clipped predictions reported in a result's diagnostics."""
        if count > 0:
            self.clipped_values.labels(estimator=estimator).inc(count)

    def record_error(self, error_type: str, estimator: str) -> None:
        """Record an error."""
        self.errors.labels(error_type=error_type, estimator=estimator).inc()

    @contextmanager
    def track(self, estimator: str, sample_size: int) -> Iterator[None]:
        """Time a block and record it as a successful or failed estimation."""
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            self.record_error(type(e).__name__, estimator)
            self.record_estimation(estimator, time.perf_counter() - start, "error", sample_size)
            raise
        self.record_estimation(estimator, time.perf_counter() - start, "success", sample_size)


class MetricsProgress:
    """Thread-safe progress callback counting nuisance fits in Prometheus.

    Pass an instance as ``progress=`` to an estimator.
    """

    def __init__(self, metrics: MTPInferenceMetrics, estimator: str) -> None:
        self._counter = metrics.nuisance_fits.labels(estimator=estimator)
        self._lock = threading.Lock()
        self._completed = 0

    def __call__(self, increment: int = 1) -> None:
        self._counter.inc(increment)
        with self._lock:
            self._completed += increment

    @property
    def completed(self) -> int:
        """Fits completed through this callback."""
        with self._lock:
            return self._completed


_metrics: MTPInferenceMetrics | None = None


def get_metrics() -> MTPInferenceMetrics:
    """Get the global metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = MTPInferenceMetrics()
    return _metrics
