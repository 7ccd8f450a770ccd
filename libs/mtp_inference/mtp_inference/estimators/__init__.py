"""Modified treatment policy estimators."""

from .lmtp import (
    IPWEstimator,
    LMTPEstimator,
    SDREstimator,
    SubstitutionEstimator,
    TMLEEstimator,
)

__all__ = [
    "IPWEstimator",
    "LMTPEstimator",
    "SDREstimator",
    "SubstitutionEstimator",
    "TMLEEstimator",
]
