"""Tests for RateLimitResult and exceptions."""

from tokengate.exceptions import ConfigurationError, RateLimitError, StoreUnavailableError
from tokengate.storage import RateLimitResult


class TestRateLimitResult:
    """Tests for RateLimitResult dataclass."""

    def test_retry_after_seconds_rounds_up(self):
        result = RateLimitResult(
            allowed=False, limit=10, remaining=0,
            retry_after_millis=1001, reset_time_millis=1_700_000_001_001,
        )
        assert result.retry_after_seconds == 2

    def test_headers_when_denied(self):
        result = RateLimitResult(
            allowed=False, limit=10, remaining=0,
            retry_after_millis=1500, reset_time_millis=1_700_000_001_500,
        )
        assert result.to_headers() == {
            "X-RateLimit-Limit": "10",
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": "1700000002",
            "Retry-After": "2",
        }

    def test_headers_when_allowed(self):
        result = RateLimitResult(
            allowed=True, limit=10, remaining=9,
            retry_after_millis=0, reset_time_millis=1_700_000_000_000,
        )
        headers = result.to_headers()
        assert headers["X-RateLimit-Remaining"] == "9"
        assert "Retry-After" not in headers

    def test_to_dict(self):
        result = RateLimitResult(
            allowed=True, limit=5, remaining=5,
            retry_after_millis=0, reset_time_millis=0, error="timeout",
        )
        assert result.to_dict()["error"] == "timeout"
        assert result.to_dict()["allowed"] is True


class TestExceptions:

    def test_configuration_error_message(self):
        error = ConfigurationError("capacity", 0, "must be a positive finite number")
        assert isinstance(error, RateLimitError)
        assert "capacity=0" in error.message

    def test_store_unavailable_wraps_cause(self):
        cause = OSError("connection refused")
        error = StoreUnavailableError("reset", cause)
        assert error.status_code == 503
        assert error.cause is cause
        assert "reset" in str(error)
        assert "connection refused" in str(error)
