"""Tests for density ratio estimation, cumulation and trimming."""

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.extra.numpy import arrays
from sklearn.linear_model import LogisticRegression

from mtp_inference.core.config import EstimationConfig, TrimmingConfig
from mtp_inference.core.longitudinal import LongitudinalSpec
from mtp_inference.core.preparation import prepare_data
from mtp_inference.core.shift import additive_shift
from mtp_inference.ml.cross_fitting import make_folds
from mtp_inference.nuisance.density_ratio import (
    clip_probabilities,
    cumulative_ratios,
    estimate_density_ratios,
    trim_ratios,
)


class RecordingClassifier(LogisticRegression):
    """Logistic regression that remembers the rows it was trained on."""

    training_frames = []

    def fit(self, X, y, sample_weight=None):
        RecordingClassifier.training_frames.append((X.copy(), np.asarray(y).copy()))
        return super().fit(X, y, sample_weight=sample_weight)


def _seeds(tau):
    return np.random.SeedSequence(0).spawn(tau)


@pytest.fixture
def floor_prepared(continuous_treatment_data):
    """Continuous treatment shifted down by 1 unless that would go below 1."""
    spec = LongitudinalSpec.from_options(trt="A", outcome="Y", baseline=["W"])
    return prepare_data(
        continuous_treatment_data, spec, additive_shift(-1.0, lower=1.0), EstimationConfig()
    )


class TestTrimming:
    """Test cases for trimming cumulative ratios."""

    @given(
        ratios=arrays(
            np.float64,
            st.tuples(st.integers(1, 50), st.integers(1, 4)),
            elements=st.floats(0, 1e4, allow_nan=False),
        ),
        level=st.floats(0.5, 1.0),
    )
    @settings(max_examples=50, deadline=None)
    def test_quantile_cap_is_respected(self, ratios, level):
        trimmed, _ = trim_ratios(ratios, TrimmingConfig(method="quantile", level=level))
        cap = np.quantile(ratios, level)

        assert np.all(trimmed <= cap + 1e-12)
        assert np.all(trimmed <= ratios)

    @given(
        ratios=arrays(
            np.float64, st.integers(1, 100), elements=st.floats(0, 1e4, allow_nan=False)
        ),
        cap=st.floats(1.0, 100.0),
    )
    @settings(max_examples=50, deadline=None)
    def test_threshold_cap_is_respected(self, ratios, cap):
        trimmed, count = trim_ratios(ratios, TrimmingConfig(method="threshold", level=cap))

        assert np.all(trimmed <= cap)
        assert count == int(np.sum(ratios > cap))

    def test_no_trimming(self):
        ratios = np.array([[1.0, 500.0]])
        trimmed, count = trim_ratios(ratios, TrimmingConfig(method=None))
        np.testing.assert_array_equal(trimmed, ratios)
        assert count == 0

    def test_cumulative_product(self):
        ratios = np.array([[2.0, 3.0, 0.5], [1.0, 0.0, 4.0]])
        np.testing.assert_allclose(cumulative_ratios(ratios), [[2, 6, 3], [1, 0, 0]])

    def test_clip_counts(self):
        clipped, count = clip_probabilities(np.array([0.0, 0.5, 1.0]), 0.01)
        np.testing.assert_allclose(clipped, [0.01, 0.5, 0.99])
        assert count == 2


class TestEstimateDensityRatios:
    """Test cases for the classification-based ratio estimator."""

    def test_identity_shift_gives_unit_ratios(self, binary_two_period_data, identity_shift):
        spec = LongitudinalSpec.from_options(
            trt=["A_1", "A_2"], outcome="Y", baseline=["W"], time_vary=[["L_1"], ["L_2"]]
        )
        prepared = prepare_data(binary_two_period_data, spec, identity_shift, EstimationConfig())
        plan = make_folds(prepared.n, 2, random_state=1)

        fit = estimate_density_ratios(
            prepared, plan.train_indices[0], plan.val_indices[0],
            LogisticRegression(), EstimationConfig(), _seeds(2),
        )

        assert (fit.valid == 1.0).all()
        assert (fit.train == 1.0).all()
        assert fit.weights[0]["trt"] is None

    def test_floor_rows_are_deterministic(self, floor_prepared):
        """Rows at the floor get ratio exactly 1 and never reach the classifier."""
        prepared = floor_prepared
        plan = make_folds(prepared.n, 2, random_state=1)
        train_idx, valid_idx = plan.train_indices[0], plan.val_indices[0]
        RecordingClassifier.training_frames.clear()

        fit = estimate_density_ratios(
            prepared, train_idx, valid_idx, RecordingClassifier(), EstimationConfig(), _seeds(1)
        )

        at_floor = prepared.natural["A"].to_numpy() - 1.0 < 1.0
        assert at_floor.any() and (~at_floor).any()
        np.testing.assert_array_equal(prepared.unshifted[:, 0], at_floor)
        assert (fit.valid[at_floor[valid_idx], 0] == 1.0).all()
        assert (fit.train[at_floor[train_idx], 0] == 1.0).all()

        X, label = RecordingClassifier.training_frames[0]
        natural_half = X["A"].to_numpy()[label == 0]
        eligible = train_idx[~at_floor[train_idx]]
        assert len(natural_half) == len(eligible)
        assert (natural_half >= 2.0).all()
        np.testing.assert_allclose(X["A"].to_numpy()[label == 1], natural_half - 1.0)

    def test_estimated_policy_keeps_floor_rows(self, continuous_treatment_data):
        config = EstimationConfig(unshifted_ratio="estimated")
        spec = LongitudinalSpec.from_options(trt="A", outcome="Y", baseline=["W"])
        prepared = prepare_data(
            continuous_treatment_data, spec, additive_shift(-1.0, lower=1.0), config
        )
        assert prepared.unshifted_ratio == "estimated"
        assert not prepared.deterministic[:, 0].any()
        plan = make_folds(prepared.n, 2, random_state=1)
        RecordingClassifier.training_frames.clear()

        estimate_density_ratios(
            prepared,
            plan.train_indices[0],
            plan.val_indices[0],
            RecordingClassifier(),
            config,
            _seeds(1),
        )

        X, label = RecordingClassifier.training_frames[0]
        assert (label == 0).sum() == len(plan.train_indices[0])

    def test_shift_increases_ratio_where_expected(self, floor_prepared):
        """Shifting down makes low natural treatment values more likely."""
        prepared = floor_prepared
        plan = make_folds(prepared.n, 2, random_state=1)
        valid_idx = plan.val_indices[0]
        fit = estimate_density_ratios(
            prepared, plan.train_indices[0], valid_idx,
            LogisticRegression(), EstimationConfig(), _seeds(1),
        )

        A = prepared.natural["A"].to_numpy()[valid_idx]
        shifted_rows = ~prepared.unshifted[valid_idx, 0]
        low = shifted_rows & (A < np.median(A[shifted_rows]))
        high = shifted_rows & (A >= np.median(A[shifted_rows]))
        assert fit.valid[low, 0].mean() > fit.valid[high, 0].mean()
        assert np.all(fit.valid > 0)

    def test_censored_rows_get_zero_ratio(self, censored_data):
        spec = LongitudinalSpec.from_options(
            trt=["A_1", "A_2"],
            outcome="Y",
            baseline=["W"],
            time_vary=[["L_1"], ["L_2"]],
            cens=["C_1", "C_2"],
        )
        prepared = prepare_data(
            censored_data, spec, lambda d, trt: np.ones(len(d)), EstimationConfig()
        )
        plan = make_folds(prepared.n, 2, random_state=1)
        valid_idx = plan.val_indices[1]

        fit = estimate_density_ratios(
            prepared, plan.train_indices[1], valid_idx,
            LogisticRegression(), EstimationConfig(), _seeds(2),
        )

        censored_at_1 = ~prepared.uncensored[valid_idx, 0]
        assert censored_at_1.any()
        assert (fit.valid[censored_at_1, 0] == 0).all()
        assert (cumulative_ratios(fit.valid)[censored_at_1, 1] == 0).all()
        observed = prepared.uncensored[valid_idx, 0] & ~prepared.unshifted[valid_idx, 0]
        assert (fit.valid[observed, 0] > 0).all()
        assert fit.weights[0]["cens"] is None
