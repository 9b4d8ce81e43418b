"""Tests for rate limit middleware."""

import hashlib

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from tokengate.middleware import PRESETS, RateLimitMiddleware, default_identifier, preset
from tokengate.storage import MemoryStore


def _make_app(**middleware_options) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, **middleware_options)

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


def _request(headers=None, client=("198.51.100.4", 1234)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestRateLimitMiddleware:
    """Tests for RateLimitMiddleware."""

    @pytest.fixture
    def store(self, clock):
        return MemoryStore(clock=clock)

    def test_allows_and_sets_headers(self, store):
        client = TestClient(_make_app(store=store, requests_per_minute=2))

        response = client.get("/ping")

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"
        assert "X-RateLimit-Reset" in response.headers
        assert "Retry-After" not in response.headers

    def test_blocks_over_limit(self, store):
        client = TestClient(_make_app(store=store, requests_per_minute=2))
        client.get("/ping")
        client.get("/ping")

        response = client.get("/ping")

        assert response.status_code == 429
        # 2 requests per minute refill one token every 30 seconds
        assert response.headers["Retry-After"] == "30"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        body = response.json()
        assert body["error"] == "rate_limit_exceeded"
        assert body["retry_after"] == 30
        assert body["limit"] == 2
        assert body["remaining"] == 0

    def test_recovers_after_refill(self, store, clock):
        client = TestClient(_make_app(store=store, requests_per_minute=2))
        client.get("/ping")
        client.get("/ping")
        assert client.get("/ping").status_code == 429

        clock.advance(31)

        assert client.get("/ping").status_code == 200

    def test_capacity_allows_burst(self, store):
        client = TestClient(_make_app(store=store, requests_per_minute=60, capacity=1))

        assert client.get("/ping").status_code == 200
        assert client.get("/ping").status_code == 429

    def test_skip_bypasses_limit(self, store):
        client = TestClient(_make_app(
            store=store,
            requests_per_minute=1,
            skip=lambda request: request.url.path == "/health",
        ))
        client.get("/ping")

        for _ in range(3):
            assert client.get("/health").status_code == 200
        assert client.get("/ping").status_code == 429

    def test_custom_identifier(self, store):
        client = TestClient(_make_app(
            store=store,
            requests_per_minute=1,
            identifier=lambda request: request.headers.get("X-Tenant"),
        ))

        assert client.get("/ping", headers={"X-Tenant": "a"}).status_code == 200
        assert client.get("/ping", headers={"X-Tenant": "b"}).status_code == 200
        assert client.get("/ping", headers={"X-Tenant": "a"}).status_code == 429

    def test_missing_identifier_passes_through(self, store):
        client = TestClient(_make_app(
            store=store,
            requests_per_minute=1,
            identifier=lambda request: None,
        ))

        for _ in range(3):
            response = client.get("/ping")
            assert response.status_code == 200
            assert "X-RateLimit-Limit" not in response.headers

    def test_headers_disabled(self, store):
        client = TestClient(_make_app(store=store, requests_per_minute=1, headers=False))

        assert "X-RateLimit-Limit" not in client.get("/ping").headers
        response = client.get("/ping")
        assert response.status_code == 429
        assert "Retry-After" not in response.headers

    def test_custom_message(self, store):
        client = TestClient(_make_app(store=store, requests_per_minute=1, message="Slow down"))
        client.get("/ping")

        assert client.get("/ping").json()["message"] == "Slow down"


class TestDefaultIdentifier:
    """Tests for client identifier resolution."""

    def test_uses_hashed_api_key(self):
        identifier = default_identifier(_request({"Authorization": "Bearer sk-test"}))

        expected = hashlib.sha256(b"sk-test").hexdigest()[:32]
        assert identifier == f"apikey:{expected}"

    def test_falls_back_to_forwarded_ip(self):
        identifier = default_identifier(
            _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        )

        expected = hashlib.sha256(b"203.0.113.7").hexdigest()[:32]
        assert identifier == f"ip:{expected}"

    def test_uses_client_host(self):
        identifier = default_identifier(_request())

        expected = hashlib.sha256(b"198.51.100.4").hexdigest()[:32]
        assert identifier == f"ip:{expected}"

    def test_oversized_api_key_falls_back_to_ip(self):
        identifier = default_identifier(
            _request({"Authorization": "Bearer " + "x" * 1000})
        )

        assert identifier.startswith("ip:")

    def test_no_client(self):
        assert default_identifier(_request(client=None)) is None


class TestPresets:

    def test_known_presets(self):
        assert PRESETS["strict"]["requests_per_minute"] == 10
        assert PRESETS["relaxed"]["requests_per_minute"] == 120
        assert preset("api") == {"requests_per_minute": 1000, "capacity": 100}

    def test_overrides(self):
        options = preset("moderate", requests_per_minute=30, headers=False)

        assert options == {"requests_per_minute": 30, "headers": False}

    def test_unknown_preset(self):
        with pytest.raises(ValueError):
            preset("extreme")

    def test_preset_applies_to_app(self, clock):
        store = MemoryStore(clock=clock)
        client = TestClient(_make_app(**preset("strict", store=store)))

        response = client.get("/ping")

        assert response.headers["X-RateLimit-Limit"] == "10"
