"""Logging setup for applications using mtp_inference."""

import logging
import sys

from shared.config import Environment, MTPInferenceConfig


def setup_logging(config: MTPInferenceConfig | None = None) -> None:
    """Set up logging configuration."""
    if config is None:
        config = MTPInferenceConfig()

    if config.log_level is not None:
        log_level = logging.getLevelName(config.log_level.upper())
    elif config.environment == Environment.DEVELOPMENT:
        log_level = logging.DEBUG
    else:
        log_level = logging.INFO

    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Per-fold and per-time-point details are only useful while developing
    logging.getLogger("mtp_inference.nuisance").setLevel(
        logging.DEBUG if config.environment == Environment.DEVELOPMENT else logging.INFO
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
