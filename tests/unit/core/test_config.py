"""Tests for logger settings resolution."""
import logging

import pytest
from pydantic import ValidationError

from reqlog.core.config import NOTICE, GelfConfig, LoggerSettings, resolve_level


class TestResolveLevel:
    """Test level name resolution."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("debug", logging.DEBUG),
            ("INFO", logging.INFO),
            ("warn", logging.WARNING),
            ("fatal", logging.CRITICAL),
            ("notice", NOTICE),
            (40, 40),
            ("35", 35),
        ],
    )
    def test_known_levels(self, value, expected):
        assert resolve_level(value) == expected

    @pytest.mark.parametrize("value", ["verbose", None, True, 1.5])
    def test_unknown_levels_use_default(self, value):
        assert resolve_level(value) == logging.INFO


class TestLoggerSettings:
    """Test settings defaults and fallbacks."""

    def test_defaults(self, monkeypatch):
        for key in ("REQLOG_LEVEL", "REQLOG_NAME", "REQLOG_IS_JSON"):
            monkeypatch.delenv(key, raising=False)
        settings = LoggerSettings()
        assert settings.name == "example"
        assert settings.type == "example"
        assert settings.level == logging.INFO
        assert settings.is_json is False
        assert settings.is_mapper is False
        assert settings.is_trim is False
        assert settings.streams == []
        assert settings.gelf_config is None
        assert settings.request_id_header == "x-request-id"

    def test_settings_are_frozen(self):
        settings = LoggerSettings()
        with pytest.raises(ValidationError):
            settings.level = 10

    def test_invalid_level_falls_back(self):
        assert LoggerSettings(level="chatty").level == logging.INFO

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("REQLOG_LEVEL", "error")
        monkeypatch.setenv("REQLOG_IS_JSON", "true")
        settings = LoggerSettings()
        assert settings.level == logging.ERROR
        assert settings.is_json is True

    def test_from_options_camel_case(self):
        settings = LoggerSettings.from_options(
            {
                "name": "api",
                "isJSON": True,
                "isMapper": True,
                "isTrim": True,
                "gelfConfig": {"host": "graylog", "port": 12202, "protocol": "tcp"},
            }
        )
        assert settings.name == "api"
        assert settings.is_json is True
        assert settings.is_mapper is True
        assert settings.is_trim is True
        assert settings.gelf_config == GelfConfig(host="graylog", port=12202, protocol="tcp")

    def test_from_options_drops_invalid_values(self):
        """Bad options are replaced by their defaults, never fatal."""
        settings = LoggerSettings.from_options(
            {"isMapper": True, "gelfConfig": {"port": "not-a-port"}, "max_field_size": -1}
        )
        assert settings.is_mapper is True
        assert settings.gelf_config is None
        assert settings.max_field_size == 1024

    def test_from_options_ignores_unknown_keys(self):
        assert LoggerSettings.from_options({"colour": "blue"}) == LoggerSettings()

    def test_from_options_none(self):
        assert LoggerSettings.from_options(None).level == logging.INFO

    def test_blank_names_default(self):
        settings = LoggerSettings(name="", type=None)
        assert settings.name == "example"
        assert settings.type == "example"
