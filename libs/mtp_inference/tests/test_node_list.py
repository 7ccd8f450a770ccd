"""Tests for node list construction and Markov windowing."""

import math

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from mtp_inference.core.base import ConfigurationError
from mtp_inference.core.node_list import build_node_list, window_bounds


def _layout(tau):
    trt = [f"A_{t}" for t in range(1, tau + 1)]
    time_vary = [[f"L_{t}", f"M_{t}"] for t in range(1, tau + 1)]
    return trt, time_vary


class TestBuildNodeList:
    """Test cases for build_node_list."""

    def test_full_history(self):
        """With k = inf every past contribution is visible."""
        trt, time_vary = _layout(3)
        nodes = build_node_list(trt, 3, time_vary, baseline=["W"])

        assert nodes.trt[0] == ("W", "L_1", "M_1", "A_1")
        assert nodes.trt[2] == (
            "W", "L_1", "M_1", "L_2", "M_2", "A_1", "L_3", "M_3", "A_2", "A_3"
        )
        assert nodes.outcome[0] == ("W", "L_1", "M_1", "A_1")
        assert nodes.outcome[2] == (
            "W", "L_1", "M_1", "A_1", "L_2", "M_2", "A_2", "L_3", "M_3", "A_3"
        )
        assert nodes.tau == 3

    def test_markov_order_zero(self):
        """With k = 0 only the current time point contributes."""
        trt, time_vary = _layout(3)
        nodes = build_node_list(trt, 3, time_vary, baseline=["W"], k=0)

        assert nodes.trt[1] == ("W", "L_2", "M_2", "A_1", "A_2")
        assert nodes.outcome[2] == ("W", "L_3", "M_3", "A_3")

    def test_markov_order_one(self):
        trt, time_vary = _layout(3)
        nodes = build_node_list(trt, 3, time_vary, k=1)

        assert nodes.outcome[2] == ("L_2", "M_2", "A_2", "L_3", "M_3", "A_3")

    def test_point_treatment(self):
        """A single treatment column is visible at every time point."""
        nodes = build_node_list(["A"], 2, [["L_1"], ["L_2"]], baseline=["W"])

        assert nodes.trt[0] == ("W", "L_1", "A")
        assert nodes.outcome[1] == ("W", "L_1", "A", "L_2")

    def test_no_time_varying_covariates(self):
        nodes = build_node_list(["A_1", "A_2"], 2, baseline=["W"])

        assert nodes.trt[1] == ("W", "A_1", "A_2")
        assert nodes.outcome[0] == ("W", "A_1")

    def test_none_k_means_full_history(self):
        trt, time_vary = _layout(2)
        assert build_node_list(trt, 2, time_vary, k=None) == build_node_list(
            trt, 2, time_vary, k=math.inf
        )

    def test_to_dict(self):
        nodes = build_node_list(["A"], 1, [["L"]])
        assert nodes.to_dict() == {"trt": [["L", "A"]], "outcome": [["L", "A"]]}


class TestNodeListValidation:
    """Test cases for invalid node list inputs."""

    def test_negative_k(self):
        with pytest.raises(ConfigurationError, match="non-negative"):
            build_node_list(["A"], 1, k=-1)

    def test_time_vary_length_mismatch(self):
        with pytest.raises(ConfigurationError, match="time_vary must have"):
            build_node_list(["A_1", "A_2"], 2, [["L_1"]])

    def test_treatment_length_mismatch(self):
        with pytest.raises(ConfigurationError, match="treatment columns"):
            build_node_list(["A_1", "A_2"], 3)

    def test_empty_treatment(self):
        with pytest.raises(ConfigurationError):
            build_node_list([], 1)


class TestNodeListProperties:
    """Property-based checks of the windowing rules."""

    @given(
        tau=st.integers(min_value=1, max_value=6),
        k=st.one_of(st.integers(min_value=0, max_value=6), st.just(math.inf)),
    )
    @settings(max_examples=50, deadline=None)
    def test_never_looks_ahead(self, tau, k):
        """No time-varying column from a later time point appears at t."""
        trt, time_vary = _layout(tau)
        nodes = build_node_list(trt, tau, time_vary, baseline=["W"], k=k)

        for t in range(tau):
            future = {c for s in range(t + 1, tau) for c in time_vary[s] + [trt[s]]}
            assert future.isdisjoint(nodes.trt[t])
            assert future.isdisjoint(nodes.outcome[t])

    @given(tau=st.integers(min_value=1, max_value=6))
    @settings(max_examples=25, deadline=None)
    def test_k_zero_excludes_other_time_points(self, tau):
        trt, time_vary = _layout(tau)
        nodes = build_node_list(trt, tau, time_vary, k=0)

        for t in range(tau):
            others = {c for s in range(tau) if s != t for c in time_vary[s]}
            assert others.isdisjoint(nodes.outcome[t])

    @given(tau=st.integers(min_value=1, max_value=6))
    @settings(max_examples=25, deadline=None)
    def test_large_k_matches_full_history(self, tau):
        trt, time_vary = _layout(tau)
        windowed = build_node_list(trt, tau, time_vary, k=tau)
        full = build_node_list(trt, tau, time_vary, k=math.inf)

        assert windowed.trt == full.trt
        assert windowed.outcome == full.outcome

    @given(
        t=st.integers(min_value=0, max_value=20),
        k=st.integers(min_value=0, max_value=20),
    )
    def test_window_bounds(self, t, k):
        window = window_bounds(t, k)
        assert window.stop == t + 1
        assert window.start == max(0, t - k)
        assert len(window) == min(t, k) + 1

    @given(tau=st.integers(min_value=1, max_value=6))
    @settings(max_examples=25, deadline=None)
    def test_columns_are_unique(self, tau):
        trt, time_vary = _layout(tau)
        nodes = build_node_list(trt, tau, time_vary, baseline=["W"])
        for columns in nodes.trt + nodes.outcome:
            assert len(columns) == len(set(columns))
