"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

from tokengate.core.logging import (
    ContextFilter,
    JSONFormatter,
    get_log_context,
    get_logger,
    get_logging_config,
)


def _record(msg: str = "Test message") -> logging.LogRecord:
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
        data = json.loads(JSONFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_context(self):
        record = _record("Rate limiting fail-open triggered")
        record.identifier = "ip:abc"
        record.store = "redis"
        record.error_type = "timeout"

        data = json.loads(JSONFormatter().format(record))

        assert data["identifier"] == "ip:abc"
        assert data["store"] == "redis"
        assert data["error_type"] == "timeout"
        assert "extra" not in data

    def test_json_format_with_extra_fields(self):
        record = _record()
        record.bucket_count = 12

        data = json.loads(JSONFormatter().format(record))

        assert data["extra"]["bucket_count"] == 12

    def test_json_format_with_exception(self):
        try:
            raise ValueError("bad capacity")
        except ValueError:
            record = logging.LogRecord(
                name="test",
                level=logging.ERROR,
                pathname="test.py",
                lineno=1,
                msg="failed",
                args=(),
                exc_info=sys.exc_info(),
            )

        data = json.loads(JSONFormatter().format(record))

        assert any("bad capacity" in line for line in data["exception"])


class TestContextFilter:

    def test_adds_defaults(self):
        record = _record()

        assert ContextFilter().filter(record) is True
        assert record.identifier is None
        assert record.store is None

    def test_keeps_existing_values(self):
        record = _record()
        record.store = "memory"

        ContextFilter().filter(record)

        assert record.store == "memory"


class TestLoggingConfig:

    def test_json_format_selected(self):
        with patch("tokengate.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "debug"
            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["loggers"]["tokengate"]["level"] == "DEBUG"

    def test_text_format_default(self):
        with patch("tokengate.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"
            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "standard"
        assert "json" not in config["formatters"]

    def test_get_logger(self):
        assert get_logger().name == "tokengate"
        assert get_logger("tokengate.storage").name == "tokengate.storage"

    def test_get_log_context_drops_none(self):
        context = get_log_context(identifier="ip:abc", store=None, retry_after_ms=500)

        assert context == {"identifier": "ip:abc", "retry_after_ms": 500}
