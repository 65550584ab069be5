"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator


class BookingDefaults(BaseModel):
    """Booking behaviour settings."""
    smart_assignment: bool = True
    materialize_course_sessions: bool = False
    course_extra_weeks: int = 1
    default_sessions_per_week: int = 1

    @field_validator("course_extra_weeks")
    @classmethod
    def validate_extra_weeks(cls, value: int) -> int:
        """Ensure the course expiry margin is not negative."""
        if value < 0:
            raise ValueError("course_extra_weeks must not be negative")
        return value

    @field_validator("default_sessions_per_week")
    @classmethod
    def validate_sessions_per_week(cls, value: int) -> int:
        """Validate sessions per week is between 1 and 7."""
        if not 1 <= value <= 7:
            raise ValueError(f"default_sessions_per_week must be between 1 and 7, got {value}")
        return value


class ApiConfig(BaseModel):
    """Connection settings for the booking REST API."""
    base_url: str
    token: str = ""
    timeout_seconds: int = 30

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, value: str) -> str:
        """Require an http(s) URL and drop the trailing slash."""
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {value!r}")
        return value.rstrip("/")

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("timeout_seconds must be greater than zero")
        return value


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "Asia/Ho_Chi_Minh"
    log_level: str = "INFO"
    api: Optional[ApiConfig] = None
    data_file: Optional[Path] = None
    booking: BookingDefaults = Field(default_factory=BookingDefaults)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Reject timezone names pendulum does not know."""
        try:
            pendulum.timezone(value)
        except Exception as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        config = cls(**data)

        # Relative fixture paths are relative to the config file
        if config.data_file is not None and not config.data_file.is_absolute():
            config.data_file = config_path.parent / config.data_file

        return config


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
