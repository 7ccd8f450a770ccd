"""Estimation of the mean outcome under longitudinal modified treatment policies.

Cross-fitted TMLE, sequentially doubly robust, substitution and IPW
estimators for wide-format longitudinal data with time-varying confounding
and right censoring.
"""

__version__ = "0.1.0"

from .core import *
from .estimators import (
    IPWEstimator,
    LMTPEstimator,
    SDREstimator,
    SubstitutionEstimator,
    TMLEEstimator,
)
from .ml import ProgressCounter, SuperLearner

__all__ = [
    "__version__",
    "IPWEstimator",
    "LMTPEstimator",
    "ProgressCounter",
    "SDREstimator",
    "SubstitutionEstimator",
    "SuperLearner",
    "TMLEEstimator",
    "CausalInferenceError",
    "ConfigurationError",
    "DataError",
    "EstimationError",
    "NumericWarning",
    "OutcomeType",
    "ShiftEffect",
    "EstimationConfig",
    "TrimmingConfig",
    "LongitudinalSpec",
    "NodeList",
    "build_node_list",
    "apply_shift",
    "static_binary_on",
    "static_binary_off",
    "additive_shift",
    "multiplicative_shift",
]
