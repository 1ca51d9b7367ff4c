"""Tests for structured logging configuration."""

import json
import logging

from shortener.app.core.config import Settings
from shortener.app.core.logging import (
    ContextFilter,
    JSONFormatter,
    get_log_context,
    get_logger,
    get_logging_config,
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
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_context_fields(self):
        record = make_record("URL saved")
        record.request_id = "req-1"
        record.alias = "abc123"
        record.job = "analytics"
        record.rate = 7

        data = json.loads(JSONFormatter().format(record))

        assert data["request_id"] == "req-1"
        assert data["alias"] == "abc123"
        assert data["job"] == "analytics"
        assert data["rate"] == 7

    def test_unknown_fields_go_to_extra(self):
        record = make_record()
        record.location = "Europe/Moscow"

        data = json.loads(JSONFormatter().format(record))

        assert data["extra"] == {"location": "Europe/Moscow"}

    def test_exception_info(self):
        try:
            raise ValueError("bad")
        except ValueError:
            import sys
            record = logging.LogRecord(
                "test", logging.ERROR, "test.py", 1, "failed", (), sys.exc_info()
            )

        data = json.loads(JSONFormatter().format(record))

        assert "ValueError: bad" in "".join(data["exception"])


class TestContextFilter:
    """Test context defaults."""

    def test_adds_missing_fields(self):
        record = make_record()
        assert ContextFilter().filter(record) is True
        assert record.request_id is None
        assert record.job is None

    def test_keeps_existing_fields(self):
        record = make_record()
        record.request_id = "req-1"
        ContextFilter().filter(record)
        assert record.request_id == "req-1"


class TestLoggingConfig:
    """Test dictConfig generation."""

    def test_text_format(self):
        config = get_logging_config(Settings(log_format="text", log_level="debug"))
        assert config["handlers"]["console"]["formatter"] == "standard"
        assert config["loggers"]["shortener"]["level"] == "DEBUG"

    def test_structured_format(self):
        config = get_logging_config(Settings(log_format="structured"))
        assert config["handlers"]["console"]["formatter"] == "structured"

    def test_json_format(self):
        config = get_logging_config(Settings(log_format="json"))
        assert config["handlers"]["console"]["formatter"] == "json"
        assert "json" in config["formatters"]


def test_get_logger_default_name():
    assert get_logger().name == "shortener"


def test_get_log_context_drops_none():
    assert get_log_context(request_id="req-1", rate=3) == {"request_id": "req-1", "rate": 3}
