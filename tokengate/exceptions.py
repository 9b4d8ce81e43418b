"""Custom exceptions for the rate limiter."""


class RateLimitError(Exception):
    """Base class for rate limiter exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class ConfigurationError(RateLimitError, ValueError):
    """Raised when a bucket rule or identifier is invalid.

    This is a programmer error: the caller must fix the configuration,
    retrying will not help.
    """
    status_code = 500

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}={value!r}: {reason}")


class StoreUnavailableError(RateLimitError):
    """Raised when the shared store cannot be reached.

    Only surfaced from explicit connects and administrative operations;
    ``check_limit`` absorbs transport failures instead.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, operation: str, cause: BaseException | None = None):
        self.operation = operation
        self.cause = cause
        message = f"Rate limit store unavailable during {operation}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
