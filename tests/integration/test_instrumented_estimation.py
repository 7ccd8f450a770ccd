"""Integration tests for estimators driven by the shared config and metrics."""

import numpy as np
import pandas as pd
import pytest
from prometheus_client import CollectorRegistry

from mtp_inference import SDREstimator, TMLEEstimator, additive_shift
from mtp_inference.core.base import DataError
from shared.config import MTPInferenceConfig
from shared.observability import MetricsProgress, MTPInferenceMetrics


@pytest.fixture
def point_treatment_data():
    rng = np.random.default_rng(7)
    n = 400
    W = rng.normal(0, 1, n)
    A = rng.normal(1 + 0.5 * W, 1)
    Y = 2 + A + W + rng.normal(0, 0.5, n)
    return pd.DataFrame({"W": W, "A": A, "Y": Y})


@pytest.mark.integration
class TestInstrumentedEstimation:
    """Estimation runs reported through Prometheus."""

    def test_successful_run_is_recorded(self, point_treatment_data, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("MTP_FOLDS", "3")
        monkeypatch.setenv("MTP_RANDOM_STATE", "7")
        settings = MTPInferenceConfig()
        metrics = MTPInferenceMetrics(registry=CollectorRegistry())
        progress = MetricsProgress(metrics, "TMLE")

        estimator = TMLEEstimator(
            trt="A",
            outcome="Y",
            baseline=["W"],
            config=settings.estimation_config(),
            progress=progress,
        )
        with metrics.track("TMLE", len(point_treatment_data)):
            result = estimator.fit(point_treatment_data, shift=additive_shift(1.0)).estimate()
        metrics.record_clipping("TMLE", result.diagnostics["clipped_predictions"])

        truth = 2 + (point_treatment_data["A"] + 1).mean() + point_treatment_data["W"].mean()
        assert result.theta == pytest.approx(truth, abs=0.3)
        # One density ratio and one outcome regression per fold
        assert progress.completed == 6
        assert (
            metrics.registry.get_sample_value(
                "mtp_inference_estimations_total", {"estimator": "TMLE", "status": "success"}
            )
            == 1.0
        )

    def test_failed_run_is_recorded(self, point_treatment_data):
        metrics = MTPInferenceMetrics(registry=CollectorRegistry())
        data = point_treatment_data.copy()
        data.loc[0, "W"] = np.nan

        estimator = SDREstimator(trt="A", outcome="Y", baseline=["W"], folds=2)
        with pytest.raises(DataError):
            with metrics.track("SDR", len(data)):
                estimator.fit(data, shift=additive_shift(1.0))

        assert (
            metrics.registry.get_sample_value(
                "mtp_inference_errors_total", {"error_type": "DataError", "estimator": "SDR"}
            )
            == 1.0
        )
