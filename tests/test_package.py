"""Basic tests for package structure and imports."""


def test_package_import():
    """Test that the main package can be imported."""
    import mtp_inference

    assert mtp_inference.__version__ == "0.1.0"


def test_submodule_imports():
    """Test that submodules can be imported."""
    from mtp_inference import core, estimators, ml, nuisance

    # Basic import test - modules should exist
    assert core is not None
    assert estimators is not None
    assert ml is not None
    assert nuisance is not None


def test_shared_imports():
    """Test that the shared configuration and observability helpers import."""
    from shared.config import MTPInferenceConfig
    from shared.observability import MetricsProgress, setup_logging

    assert MTPInferenceConfig is not None
    assert MetricsProgress is not None
    assert setup_logging is not None
