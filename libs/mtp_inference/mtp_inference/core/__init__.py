"""Data model, configuration and preparation shared by the estimators."""

from .base import (
    CausalInferenceError,
    ConfigurationError,
    DataError,
    EstimationError,
    EstimatorType,
    NumericWarning,
    OutcomeType,
    ShiftEffect,
)
from .config import EstimationConfig, TrimmingConfig
from .longitudinal import LongitudinalSpec
from .node_list import NodeList, build_node_list
from .preparation import PreparedData, prepare_data
from .shift import (
    ShiftedData,
    additive_shift,
    apply_shift,
    describe_policy,
    multiplicative_shift,
    policy_unshifted_ratio,
    static_binary_off,
    static_binary_on,
)

__all__ = [
    "CausalInferenceError",
    "ConfigurationError",
    "DataError",
    "EstimationError",
    "EstimatorType",
    "NumericWarning",
    "OutcomeType",
    "ShiftEffect",
    "EstimationConfig",
    "TrimmingConfig",
    "LongitudinalSpec",
    "NodeList",
    "build_node_list",
    "PreparedData",
    "prepare_data",
    "ShiftedData",
    "additive_shift",
    "apply_shift",
    "describe_policy",
    "multiplicative_shift",
    "policy_unshifted_ratio",
    "static_binary_off",
    "static_binary_on",
]
