"""Tests for CORS, security headers, and rate limiting middleware."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request
from starlette.responses import Response

from smartgeocode.api.middleware import RateLimitMiddleware, SecurityHeadersMiddleware, get_client_ip, setup_cors
from smartgeocode.core.config import Settings

PROXY_HEADERS = ["CF-Connecting-IP", "X-Forwarded-For", "X-Real-IP"]


def _create_test_app() -> FastAPI:
    """Create a minimal FastAPI app for middleware testing."""
    app = FastAPI()

    @app.get("/test")
    async def test_route() -> dict:
        return {"ok": True}

    @app.get("/health")
    async def health_route() -> dict:
        return {"status": "ok"}

    return app


def _make_request(headers: dict[str, str] | None = None, client_host: str | None = "127.0.0.1") -> Request:
    scope: dict = {
        "type": "http",
        "method": "GET",
        "path": "/test",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
    }
    if client_host is not None:
        scope["client"] = (client_host, 0)
    return Request(scope)


class TestSecurityHeadersMiddleware:
    """Tests for SecurityHeadersMiddleware."""

    @pytest.fixture
    def client(self) -> TestClient:
        app = _create_test_app()
        app.add_middleware(SecurityHeadersMiddleware)
        return TestClient(app)

    def test_all_security_headers_present(self, client: TestClient) -> None:
        response = client.get("/test")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Referrer-Policy"] == "no-referrer"
        assert "max-age=31536000" in response.headers["Strict-Transport-Security"]


class TestRateLimitMiddleware:
    """Tests for RateLimitMiddleware."""

    @pytest.fixture
    def client(self) -> TestClient:
        app = _create_test_app()
        app.add_middleware(
            RateLimitMiddleware,
            requests_per_minute=3,
            trusted_proxy_headers=PROXY_HEADERS,
            exempt_paths=("/health",),
        )
        return TestClient(app)

    def test_requests_within_limit_succeed(self, client: TestClient) -> None:
        for _ in range(3):
            assert client.get("/test").status_code == 200

    def test_request_over_limit_returns_429(self, client: TestClient) -> None:
        for _ in range(3):
            client.get("/test")

        response = client.get("/test")
        assert response.status_code == 429
        assert response.json() == {"detail": "Rate limit exceeded", "code": "rate_limited"}
        assert int(response.headers["Retry-After"]) >= 1

    def test_exempt_path_never_limited(self, client: TestClient) -> None:
        for _ in range(10):
            assert client.get("/health").status_code == 200

    def test_clients_limited_separately(self, client: TestClient) -> None:
        for _ in range(3):
            client.get("/test", headers={"X-Forwarded-For": "203.0.113.1, 10.0.0.1"})

        assert client.get("/test", headers={"X-Forwarded-For": "203.0.113.1"}).status_code == 429
        assert client.get("/test", headers={"X-Forwarded-For": "203.0.113.2"}).status_code == 200

    def test_window_expires(self) -> None:
        now = [1000.0]
        app = _create_test_app()
        app.add_middleware(RateLimitMiddleware, requests_per_minute=2, clock=lambda: now[0])
        client = TestClient(app)

        assert client.get("/test").status_code == 200
        assert client.get("/test").status_code == 200
        response = client.get("/test")
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "61"

        now[0] = 1061.0
        assert client.get("/test").status_code == 200

    @pytest.mark.asyncio
    async def test_idle_clients_are_forgotten(self) -> None:
        now = [1000.0]
        middleware = RateLimitMiddleware(_create_test_app(), requests_per_minute=5, clock=lambda: now[0])

        async def call_next(request: Request) -> Response:
            return Response("ok")

        for i in range(50):
            await middleware.dispatch(_make_request(client_host=f"198.51.100.{i}"), call_next)
        assert len(middleware._hits) == 50

        now[0] = 1061.0
        response = await middleware.dispatch(_make_request(client_host="203.0.113.9"), call_next)

        assert response.status_code == 200
        assert set(middleware._hits) == {"203.0.113.9"}


class TestGetClientIp:
    """Tests for the get_client_ip helper function."""

    def test_first_trusted_header_wins(self) -> None:
        request = _make_request(headers={"CF-Connecting-IP": "203.0.113.1", "X-Real-IP": "192.0.2.1"})
        assert get_client_ip(request, PROXY_HEADERS) == "203.0.113.1"

    def test_x_forwarded_for_uses_leftmost_ip(self) -> None:
        request = _make_request(headers={"X-Forwarded-For": "203.0.113.1, 10.0.0.1"})
        assert get_client_ip(request, PROXY_HEADERS) == "203.0.113.1"

    def test_headers_ignored_when_not_trusted(self) -> None:
        request = _make_request(headers={"X-Real-IP": "203.0.113.1"}, client_host="10.0.0.1")
        assert get_client_ip(request) == "10.0.0.1"

    def test_empty_header_value_skipped(self) -> None:
        request = _make_request(headers={"CF-Connecting-IP": "  ", "X-Real-IP": "203.0.113.1"})
        assert get_client_ip(request, PROXY_HEADERS) == "203.0.113.1"

    def test_returns_unknown_when_no_client(self) -> None:
        assert get_client_ip(_make_request(client_host=None)) == "unknown"


class TestCors:
    """Tests for CORS configuration."""

    def _client(self, settings: Settings) -> TestClient:
        app = _create_test_app()
        setup_cors(app, settings)
        return TestClient(app)

    def test_configured_origin_allowed(self, settings: Settings) -> None:
        client = self._client(settings.model_copy(update={"cors_origins": "https://app.example.com"}))
        response = client.options(
            "/test",
            headers={"Origin": "https://app.example.com", "Access-Control-Request-Method": "GET"},
        )
        assert response.headers["access-control-allow-origin"] == "https://app.example.com"

    def test_unconfigured_origin_refused(self, settings: Settings) -> None:
        client = self._client(settings)
        response = client.get("/test", headers={"Origin": "https://evil.example.com"})
        assert "access-control-allow-origin" not in response.headers
