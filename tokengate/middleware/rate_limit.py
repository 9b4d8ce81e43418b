"""Rate limiting middleware for Starlette and FastAPI applications.

This module adapts a bucket store to HTTP: it resolves a client
identifier per request, runs ``check_limit`` and shapes the response.
"""

import hashlib
from typing import Any, Callable, Dict, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from tokengate.algorithms.token_bucket import BucketConfig
from tokengate.core.logging import get_log_context, get_logger
from tokengate.factory import create_store
from tokengate.storage.base import RateLimitStore

logger = get_logger(__name__)

MAX_API_KEY_LENGTH = 512

PRESETS: Dict[str, Dict[str, Any]] = {
    "strict": {"requests_per_minute": 10},
    "moderate": {"requests_per_minute": 60},
    "relaxed": {"requests_per_minute": 120},
    "api": {"requests_per_minute": 1000, "capacity": 100},
}


def preset(name: str, **overrides: Any) -> Dict[str, Any]:
    """Middleware keyword arguments for a named preset.

    Example:
        >>> app.add_middleware(RateLimitMiddleware, **preset("strict", store=store))
    """
    try:
        options = dict(PRESETS[name])
    except KeyError:
        raise ValueError(f"Unknown rate limit preset: {name!r}") from None
    options.update(overrides)
    return options


def default_identifier(request: Request) -> Optional[str]:
    """Get rate limit identifier for the request.

    Uses the Bearer API key if available, otherwise the client IP. Both
    are hashed with SHA-256 so raw keys and addresses never reach the store.
    """
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        api_key = auth[7:].strip()
        if api_key and len(api_key) <= MAX_API_KEY_LENGTH:
            # 32 hex chars (128 bits) for collision resistance
            return "apikey:" + hashlib.sha256(api_key.encode()).hexdigest()[:32]

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    else:
        client_ip = request.client.host if request.client else None
    if not client_ip:
        return None
    return "ip:" + hashlib.sha256(client_ip.encode()).hexdigest()[:32]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits on requests.

    Rate limits are applied per API key if available, otherwise per IP,
    unless a custom identifier function is given.
    """

    def __init__(
        self,
        app,
        store: Optional[RateLimitStore] = None,
        requests_per_minute: int = 60,
        capacity: Optional[int] = None,
        identifier: Callable[[Request], Optional[str]] = default_identifier,
        skip: Optional[Callable[[Request], bool]] = None,
        headers: bool = True,
        message: str = "Too many requests, please try again later.",
    ):
        super().__init__(app)
        self.store = store if store is not None else create_store()
        self.config = BucketConfig.from_requests_per_minute(
            requests_per_minute, capacity=capacity
        )
        self.identifier = identifier
        self.skip = skip
        self.headers = headers
        self.message = message

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if self.skip is not None and self.skip(request):
            return await call_next(request)

        client_id = self.identifier(request)
        if not client_id:
            logger.warning(f"No rate limit identifier for {request.method} {request.url.path}")
            return await call_next(request)

        result = await self.store.check_limit(client_id, self.config)
        rate_headers = result.to_headers() if self.headers else {}

        if not result.allowed:
            logger.info(
                f"Rate limit exceeded on {request.method} {request.url.path}",
                extra=get_log_context(
                    identifier=client_id,
                    store=self.store.name,
                    retry_after_ms=result.retry_after_millis,
                ),
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": self.message,
                    "retry_after": result.retry_after_seconds,
                    "limit": result.limit,
                    "remaining": 0,
                },
                headers=rate_headers,
            )

        response = await call_next(request)
        for name, value in rate_headers.items():
            response.headers[name] = value
        return response
