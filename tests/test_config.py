"""
Tests for YAML configuration loading.
"""

from pathlib import Path

import pytest

from spabooking.config import AppConfig, BookingDefaults


def _write(tmp_path: Path, content: str) -> Path:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(content, encoding="utf-8")
    return config_path


class TestAppConfig:
    """Tests for AppConfig."""

    def test_defaults(self):
        config = AppConfig()

        assert config.timezone == "Asia/Ho_Chi_Minh"
        assert config.api is None
        assert config.booking.smart_assignment is True
        assert config.booking.materialize_course_sessions is False
        assert config.booking.course_extra_weeks == 1

    def test_load_from_yaml(self, tmp_path):
        config_path = _write(
            tmp_path,
            """
timezone: Europe/Berlin
log_level: debug
api:
  base_url: https://spa.example.com/
  token: abc
booking:
  materialize_course_sessions: true
  course_extra_weeks: 2
""",
        )

        config = AppConfig.load_from_yaml(config_path)

        assert config.timezone == "Europe/Berlin"
        assert config.log_level == "DEBUG"
        assert config.api.base_url == "https://spa.example.com"
        assert config.api.timeout_seconds == 30
        assert config.booking.materialize_course_sessions is True
        assert config.booking.course_extra_weeks == 2

    def test_data_file_is_relative_to_config(self, tmp_path):
        config_path = _write(tmp_path, "data_file: fixtures/spa.json\n")

        config = AppConfig.load_from_yaml(config_path)

        assert config.data_file == tmp_path / "fixtures" / "spa.json"

    def test_empty_file_uses_defaults(self, tmp_path):
        config = AppConfig.load_from_yaml(_write(tmp_path, ""))

        assert config.timezone == "Asia/Ho_Chi_Minh"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            AppConfig.load_from_yaml(tmp_path / "config.yaml")

    def test_root_must_be_mapping(self, tmp_path):
        with pytest.raises(ValueError):
            AppConfig.load_from_yaml(_write(tmp_path, "- a\n- b\n"))

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ValueError):
            AppConfig.load_from_yaml(_write(tmp_path, "timezone: [unclosed\n"))

    @pytest.mark.parametrize(
        "content",
        [
            "timezone: Mars/Olympus_Mons\n",
            "log_level: chatty\n",
            "api:\n  base_url: ftp://spa.example.com\n",
            "api:\n  base_url: https://spa.example.com\n  timeout_seconds: 0\n",
        ],
    )
    def test_invalid_values(self, tmp_path, content):
        with pytest.raises(ValueError):
            AppConfig.load_from_yaml(_write(tmp_path, content))


class TestBookingDefaults:
    """Validation of booking settings."""

    def test_sessions_per_week_range(self):
        with pytest.raises(ValueError):
            BookingDefaults(default_sessions_per_week=8)

    def test_negative_extra_weeks(self):
        with pytest.raises(ValueError):
            BookingDefaults(course_extra_weeks=-1)
