"""Configuration management for applications using mtp_inference."""

from .base import (
    BaseConfiguration,
    ConfigurationManager,
    Environment,
    config_manager,
)
from .mtp_config import MTPInferenceConfig

__all__ = [
    "BaseConfiguration",
    "ConfigurationManager",
    "Environment",
    "config_manager",
    "MTPInferenceConfig",
]
