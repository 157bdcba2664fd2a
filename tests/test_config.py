"""
Tests for YAML configuration loading.
"""

import pytest
from pydantic import ValidationError

from facilityslots.config import (
    DEFAULT_MAX_PARTICIPANTS,
    MAX_RANGE_DAYS,
    AppConfig,
)


class TestAppConfig:
    """Tests for AppConfig."""

    def test_defaults(self):
        config = AppConfig()

        assert config.timezone == "Europe/Berlin"
        assert config.defaults.duration_minutes == 60
        assert config.defaults.range_days == 7
        assert config.limits.max_range_days == MAX_RANGE_DAYS == 30
        assert config.limits.default_max_participants == DEFAULT_MAX_PARTICIPANTS == 999
        assert config.organization_hours() == {}

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "database_url: sqlite:///bookings.db\n"
            "timezone: Europe/Vienna\n"
            "defaults:\n"
            "  duration_minutes: 90\n"
            "business_hours:\n"
            "  Monday: {open: '07:00', close: '21:00'}\n"
            "  sunday:\n"
            "mock_data_file: data/mock.json\n",
            encoding="utf-8",
        )

        config = AppConfig.load_from_yaml(path)

        assert config.database_url == "sqlite:///bookings.db"
        assert config.timezone == "Europe/Vienna"
        assert config.defaults.duration_minutes == 90
        assert config.mock_data_file == tmp_path / "data" / "mock.json"

        hours = config.organization_hours()
        assert hours["monday"].open.strftime("%H:%M") == "07:00"
        assert hours["sunday"] is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            AppConfig.load_from_yaml(tmp_path / "config.yaml")

        assert AppConfig.load_or_default(tmp_path / "config.yaml") == AppConfig()

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")

        with pytest.raises(ValueError):
            AppConfig.load_from_yaml(path)

    @pytest.mark.parametrize("data", [
        {"timezone": "Mars/Olympus_Mons"},
        {"defaults": {"duration_minutes": 0}},
        {"limits": {"max_range_days": -1}},
        {"business_hours": {"funday": {"open": "09:00", "close": "17:00"}}},
        {"business_hours": {"monday": {"open": "17:00", "close": "09:00"}}},
        {"business_hours": {"monday": {"open": "9 Uhr", "close": "17:00"}}},
    ])
    def test_invalid_values(self, data):
        with pytest.raises(ValidationError):
            AppConfig(**data)
