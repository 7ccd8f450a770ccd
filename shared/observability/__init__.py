"""Logging and metrics setup."""

from .logging import get_logger, setup_logging
from .metrics import MetricsProgress, MTPInferenceMetrics, get_metrics

__all__ = [
    "get_logger",
    "setup_logging",
    "MetricsProgress",
    "MTPInferenceMetrics",
    "get_metrics",
]
