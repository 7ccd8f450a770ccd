"""Environment-driven settings shared by applications built on mtp_inference."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

T = TypeVar("T", bound="BaseConfiguration")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Environment(str, Enum):
    """Supported deployment environments."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class BaseConfiguration(BaseSettings):
    """Base settings class reading ``.env`` files and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Current deployment environment",
    )
    version: str = Field(default="0.1.0", description="Configuration version")
    loaded_at: datetime = Field(
        default_factory=_utcnow,
        description="When the configuration was loaded",
    )

    def to_dict(self, exclude_sensitive: bool = True) -> dict[str, Any]:
        """Convert configuration to dictionary, optionally redacting secrets."""
        data = self.model_dump()
        if not exclude_sensitive:
            return data

        sensitive_patterns = ["password", "token", "secret"]
        return {
            k: "***REDACTED***" if any(p in k.lower() for p in sensitive_patterns) else v
            for k, v in data.items()
        }

    def validate_configuration(self) -> list[str]:
        """Return configuration issues; subclasses add their own checks."""
        return []


class ConfigurationManager:
    """Registry of named configurations."""

    def __init__(self) -> None:
        self._configurations: dict[str, BaseConfiguration] = {}

    def register_configuration(self, name: str, config: BaseConfiguration) -> None:
        """Register a configuration instance."""
        self._configurations[name] = config

    def get_configuration(self, name: str) -> BaseConfiguration | None:
        """Get a registered configuration by name."""
        return self._configurations.get(name)

    def get_all_configurations(self) -> dict[str, dict[str, Any]]:
        """Get all configurations as dictionaries."""
        return {
            name: config.to_dict(exclude_sensitive=True)
            for name, config in self._configurations.items()
        }

    def validate_all_configurations(self) -> dict[str, list[str]]:
        """Validate all registered configurations."""
        validation_results = {}
        for name, config in self._configurations.items():
            issues = config.validate_configuration()
            if issues:
                validation_results[name] = issues
        return validation_results


config_manager = ConfigurationManager()
