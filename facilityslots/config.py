"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import Dict, Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.models import WEEKDAY_NAMES, OperatingHours, parse_clock


DEFAULT_DURATION_MINUTES = 60
DEFAULT_RANGE_DAYS = 7
MAX_RANGE_DAYS = 30
DEFAULT_MAX_PARTICIPANTS = 999
DEFAULT_DATABASE_URL = "sqlite:///facilityslots.db"


class DefaultsConfig(BaseModel):
    """Default settings for slot queries."""
    duration_minutes: int = DEFAULT_DURATION_MINUTES
    range_days: int = DEFAULT_RANGE_DAYS

    @field_validator("duration_minutes", "range_days")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """Ensure defaults are positive."""
        if value <= 0:
            raise ValueError("value must be greater than zero")
        return value


class LimitsConfig(BaseModel):
    """Guards against unbounded scans and unset capacities."""
    max_range_days: int = MAX_RANGE_DAYS
    default_max_participants: int = DEFAULT_MAX_PARTICIPANTS

    @field_validator("max_range_days", "default_max_participants")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("value must be greater than zero")
        return value


class DayHoursConfig(BaseModel):
    """Opening window for one weekday, as ``HH:mm`` strings."""
    open: str
    close: str

    @field_validator("open", "close")
    @classmethod
    def validate_clock(cls, value: str) -> str:
        parse_clock(value)
        return value

    @model_validator(mode="after")
    def validate_order(self) -> "DayHoursConfig":
        """Ensure the configured window opens before it closes."""
        if parse_clock(self.close) <= parse_clock(self.open):
            raise ValueError("close must be later than open")
        return self

    def to_operating_hours(self) -> OperatingHours:
        return OperatingHours.from_strings(self.open, self.close)


class AppConfig(BaseModel):
    """Application configuration."""
    database_url: str = DEFAULT_DATABASE_URL
    timezone: str = "Europe/Berlin"
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    business_hours: Dict[str, Optional[DayHoursConfig]] = Field(default_factory=dict)
    mock_data_file: Optional[Path] = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA name."""
        try:
            pendulum.timezone(value)
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("business_hours", mode="before")
    @classmethod
    def validate_business_days(cls, value):
        """Normalise weekday keys and reject unknown ones."""
        if value is None:
            return {}
        normalized = {}
        for day, hours in value.items():
            key = str(day).lower()
            if key not in WEEKDAY_NAMES:
                raise ValueError(f"Unknown weekday in business_hours: {day}")
            normalized[key] = hours
        return normalized

    def organization_hours(self) -> Dict[str, Optional[OperatingHours]]:
        """Configured business hours keyed by weekday; None means closed."""
        return {
            day: hours.to_operating_hours() if hours is not None else None
            for day, hours in self.business_hours.items()
        }

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

        # Relative fixture paths are resolved against the config file.
        if config.mock_data_file is not None and not config.mock_data_file.is_absolute():
            config.mock_data_file = config_path.parent / config.mock_data_file

        return config

    @classmethod
    def load_or_default(cls, config_path: Path) -> "AppConfig":
        """Load the YAML file if present, otherwise fall back to defaults."""
        if config_path.exists():
            return cls.load_from_yaml(config_path)
        return cls()


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
