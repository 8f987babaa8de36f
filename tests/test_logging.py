"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

from canvas_sync.app.core.logging import (
    ContextFilter,
    JSONFormatter,
    get_log_context,
    get_logger,
    get_logging_config,
    setup_logging,
)


def make_record(msg="Test message"):
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert data["timestamp"].endswith("+00:00")
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_context_fields(self):
        record = make_record("Flushed canvas")
        record.entity_id = "T1"
        record.user_id = "u1"
        record.mode = "busy"
        record.duration_ms = 12.5

        data = json.loads(JSONFormatter().format(record))

        assert data["entity_id"] == "T1"
        assert data["user_id"] == "u1"
        assert data["mode"] == "busy"
        assert data["duration_ms"] == 12.5

    def test_unset_context_fields_omitted(self):
        record = make_record()
        ContextFilter().filter(record)

        data = json.loads(JSONFormatter().format(record))

        assert "entity_id" not in data
        assert "extra" not in data

    def test_extra_fields(self):
        record = make_record()
        record.filled_pixels = 4

        data = json.loads(JSONFormatter().format(record))

        assert data["extra"] == {"filled_pixels": 4}

    def test_exception_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                name="test",
                level=logging.ERROR,
                pathname="test.py",
                lineno=1,
                msg="Failed",
                args=(),
                exc_info=sys.exc_info(),
            )

        data = json.loads(JSONFormatter().format(record))

        assert any("ValueError: boom" in line for line in data["exception"])


class TestContextFilter:
    def test_defaults_added(self):
        record = make_record()

        assert ContextFilter().filter(record) is True
        assert record.entity_id is None
        assert record.attempt is None

    def test_existing_values_kept(self):
        record = make_record()
        record.entity_id = "T9"

        ContextFilter().filter(record)

        assert record.entity_id == "T9"


class TestLoggingConfig:
    """Tests for the dictConfig builder."""

    def test_text_format_from_settings(self):
        with patch("canvas_sync.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "debug"
            config = get_logging_config()

        console = config["handlers"]["console"]
        assert console["formatter"] == "text"
        assert console["level"] == "DEBUG"
        assert console["stream"] == "ext://sys.stderr"
        assert config["loggers"]["canvas_sync"]["propagate"] is False

    def test_json_format(self):
        config = get_logging_config(level="INFO", fmt="json")

        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["formatters"]["json"]["()"].endswith("JSONFormatter")

    def test_structured_format(self):
        config = get_logging_config(level="INFO", fmt="structured")

        assert config["handlers"]["console"]["formatter"] == "structured"
        assert "entity_id" in config["formatters"]["structured"]["format"]

    def test_unknown_format_falls_back_to_text(self):
        config = get_logging_config(level="INFO", fmt="xml")

        assert list(config["formatters"]) == ["text"]
        assert config["handlers"]["console"]["formatter"] == "text"

    def test_setup_logging_applies_config(self):
        with patch("canvas_sync.app.core.logging.logging.config.dictConfig") as dict_config:
            setup_logging(level="WARNING", fmt="json")

        config = dict_config.call_args.args[0]
        assert config["loggers"]["canvas_sync"]["level"] == "WARNING"
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING


class TestLogContext:
    def test_none_values_dropped(self):
        assert get_log_context(entity_id="T1") == {"entity_id": "T1"}

    def test_extra_fields_kept(self):
        context = get_log_context(user_id="u1", action_type="pixel_edit", attempt=2)

        assert context == {"user_id": "u1", "action_type": "pixel_edit", "attempt": 2}

    def test_get_logger(self):
        assert get_logger().name == "canvas_sync"
        assert get_logger("canvas_sync.test").name == "canvas_sync.test"
