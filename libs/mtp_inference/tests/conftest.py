"""Shared test fixtures for the mtp_inference library.

The fixtures generate small wide-format longitudinal datasets with known
structure: binary treatments over two time points, a continuous point
treatment with a linear outcome, right-censored data and a survival outcome.
"""

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit


@pytest.fixture
def random_state():
    """Provide a consistent random state for reproducible tests."""
    return 42


@pytest.fixture
def binary_two_period_data(random_state):
    """Two time points, binary treatments and a binary outcome, no censoring."""
    rng = np.random.default_rng(random_state)
    n = 300

    W = rng.normal(0, 1, n)
    L_1 = rng.normal(0.3 * W, 1)
    A_1 = rng.binomial(1, expit(-0.2 + 0.5 * L_1))
    L_2 = rng.normal(0.4 * L_1 + 0.5 * A_1, 1)
    A_2 = rng.binomial(1, expit(-0.2 + 0.5 * L_2 + 0.5 * A_1))
    Y = rng.binomial(1, expit(-0.5 + 0.4 * W + 0.3 * L_2 + 0.6 * A_2))

    return pd.DataFrame(
        {"W": W, "L_1": L_1, "A_1": A_1, "L_2": L_2, "A_2": A_2, "Y": Y}
    )


@pytest.fixture
def continuous_treatment_data(random_state):
    """Point continuous treatment with a linear outcome; shifting A by d adds d."""
    rng = np.random.default_rng(random_state)
    n = 1000

    W = rng.normal(0, 1, n)
    A = rng.normal(2 + 0.5 * W, 1)
    Y = 1 + A + W + rng.normal(0, 0.5, n)

    return pd.DataFrame({"W": W, "A": A, "Y": Y})


@pytest.fixture
def binary_point_treatment_data(random_state):
    """Point binary treatment confounded by W; Y is binary."""
    rng = np.random.default_rng(random_state)
    n = 2000

    W = rng.normal(0, 1, n)
    A = rng.binomial(1, expit(0.5 * W))
    Y = rng.binomial(1, expit(-0.5 + A + 0.8 * W))

    return pd.DataFrame({"W": W, "A": A, "Y": Y})


@pytest.fixture
def censored_data(random_state):
    """Two time points with right censoring; censored rows have missing values."""
    rng = np.random.default_rng(random_state)
    n = 400

    W = rng.normal(0, 1, n)
    L_1 = rng.normal(0.3 * W, 1)
    A_1 = rng.binomial(1, expit(0.4 * L_1))
    C_1 = rng.binomial(1, expit(2.5 + 0.3 * L_1))
    L_2 = rng.normal(0.4 * L_1 + 0.5 * A_1, 1)
    A_2 = rng.binomial(1, expit(0.4 * L_2 + 0.3 * A_1))
    C_2 = rng.binomial(1, expit(2.5 - 0.3 * L_2))
    Y = rng.binomial(1, expit(-0.3 + 0.3 * W + 0.4 * L_2 + 0.5 * A_2)).astype(float)

    df = pd.DataFrame(
        {
            "W": W,
            "L_1": L_1,
            "A_1": A_1,
            "C_1": C_1,
            "L_2": L_2,
            "A_2": A_2.astype(float),
            "C_2": C_2,
            "Y": Y,
        }
    )
    lost_1 = df["C_1"] == 0
    df.loc[lost_1, ["L_2", "A_2", "Y"]] = np.nan
    df.loc[lost_1, "C_2"] = 0
    df.loc[df["C_2"] == 0, "Y"] = np.nan
    return df


@pytest.fixture
def survival_data(random_state):
    """Three time points with an event indicator observed at each time point."""
    rng = np.random.default_rng(random_state)
    n = 400
    tau = 3

    df = pd.DataFrame({"W": rng.normal(0, 1, n)})
    event = np.zeros(n, dtype=bool)
    for t in range(1, tau + 1):
        L = rng.normal(0.3 * df["W"], 1)
        A = rng.binomial(1, expit(0.3 * L))
        hazard = expit(-2.0 + 0.4 * L - 0.6 * A)
        new_event = ~event & (rng.uniform(size=n) < hazard)
        event = event | new_event
        df[f"L_{t}"] = np.where(event & ~new_event, np.nan, L)
        df[f"A_{t}"] = np.where(event & ~new_event, np.nan, A)
        df[f"Y_{t}"] = event.astype(float)
    return df


@pytest.fixture
def identity_shift():
    """Policy that leaves every treatment at its natural value."""

    def policy(data, trt):
        return data[trt]

    return policy
