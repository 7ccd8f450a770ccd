"""Tests for environment-driven estimation settings."""

import pytest
from pydantic import ValidationError

from mtp_inference.core.config import EstimationConfig
from shared.config import (
    BaseConfiguration,
    ConfigurationManager,
    Environment,
    MTPInferenceConfig,
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Isolate settings from the developer's environment and .env file."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "ENVIRONMENT",
        "MTP_FOLDS",
        "MTP_N_JOBS",
        "MTP_TRIM_METHOD",
        "MTP_RANDOM_STATE",
        "MTP_CONFIDENCE_LEVEL",
        "MTP_ENVIRONMENT",
    ):
        monkeypatch.delenv(name, raising=False)


class TestMTPInferenceConfig:
    """Test cases for MTPInferenceConfig."""

    def test_defaults_match_estimation_config(self):
        config = MTPInferenceConfig()
        assert config.estimation_config() == EstimationConfig()

    def test_reads_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("MTP_FOLDS", "5")
        monkeypatch.setenv("MTP_N_JOBS", "4")
        monkeypatch.setenv("MTP_RANDOM_STATE", "11")

        estimation = MTPInferenceConfig().estimation_config()

        assert estimation.folds == 5
        assert estimation.n_jobs == 4
        assert estimation.random_state == 11

    def test_trimming_can_be_disabled(self, monkeypatch):
        monkeypatch.setenv("MTP_TRIM_METHOD", "none")
        config = MTPInferenceConfig()

        assert config.estimation_config().trim.method is None
        assert any("Untrimmed" in issue for issue in config.validate_configuration())

    def test_reads_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("MTP_FOLDS=3\nMTP_CI_SCALE=logit\n")
        config = MTPInferenceConfig()

        assert config.folds == 3
        assert config.estimation_config().ci_scale == "logit"

    @pytest.mark.parametrize(
        "name, value",
        [
            ("MTP_FOLDS", "1"),
            ("MTP_CONFIDENCE_LEVEL", "1.5"),
            ("MTP_TRIM_METHOD", "median"),
        ],
    )
    def test_invalid_values(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ValidationError):
            MTPInferenceConfig()

    def test_production_without_seed_is_flagged(self):
        config = MTPInferenceConfig(environment=Environment.PRODUCTION)
        issues = config.validate_configuration()
        assert any("MTP_RANDOM_STATE" in issue for issue in issues)

    def test_recommended_settings_have_no_issues(self):
        config = MTPInferenceConfig(folds=10, random_state=1)
        assert config.validate_configuration() == []


class TestConfigurationManager:
    """Test cases for the configuration registry."""

    def test_register_and_validate(self):
        manager = ConfigurationManager()
        manager.register_configuration("estimation", MTPInferenceConfig(folds=2))
        manager.register_configuration("base", BaseConfiguration())

        assert isinstance(manager.get_configuration("estimation"), MTPInferenceConfig)
        assert manager.get_configuration("missing") is None
        assert list(manager.validate_all_configurations()) == ["estimation"]

    def test_sensitive_values_are_redacted(self):
        class ServiceConfig(BaseConfiguration):
            api_token: str = "abc"
            db_password: str = "hunter2"
            service_label: str = "mtp"

        manager = ConfigurationManager()
        manager.register_configuration("service", ServiceConfig())
        exported = manager.get_all_configurations()["service"]

        assert exported["api_token"] == "***REDACTED***"
        assert exported["db_password"] == "***REDACTED***"
        assert exported["service_label"] == "mtp"
        assert ServiceConfig().to_dict(exclude_sensitive=False)["db_password"] == "hunter2"
