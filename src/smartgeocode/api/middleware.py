"""CORS, per-IP rate limiting, and security headers middleware."""

import time
from collections import deque
from collections.abc import Callable
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from smartgeocode.core.config import Settings

_WINDOW_SECONDS = 60.0


def get_client_ip(request: Request, trusted_headers: list[str] | None = None) -> str:
    """Return the caller's IP, preferring the first trusted proxy header present.

    For ``X-Forwarded-For`` the leftmost address (the original client) is used.
    Falls back to the socket peer, or "unknown".
    """
    for header in trusted_headers or []:
        value = request.headers.get(header, "").strip()
        if not value:
            continue
        if header.lower() == "x-forwarded-for":
            return value.split(",")[0].strip()
        return value

    if request.client:
        return request.client.host
    return "unknown"


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the dashboard origins configured in settings.

    Credentials are allowed because the dashboard sends the bearer token;
    with no configured origin, cross-origin requests are refused.
    """
    kwargs: dict[str, Any] = {
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": ["Authorization", "Content-Type"],
        "expose_headers": ["Content-Disposition", "Retry-After"],
    }
    if settings.cors_origin_list:
        kwargs["allow_origins"] = settings.cors_origin_list
    if settings.cors_origin_regex.strip():
        kwargs["allow_origin_regex"] = settings.cors_origin_regex.strip()
    app.add_middleware(CORSMiddleware, **kwargs)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to every response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory sliding-window rate limit per client IP.

    Status polling every couple of seconds stays well below the default
    limit; the limit guards against runaway clients, not against quota use.
    Paths in ``exempt_paths`` (e.g. the health check) are never limited.
    """

    def __init__(
        self,
        app: ASGIApp,
        requests_per_minute: int = 200,
        trusted_proxy_headers: list[str] | None = None,
        exempt_paths: tuple[str, ...] = (),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(app)
        self._clock = clock
        self.requests_per_minute = requests_per_minute
        self.trusted_proxy_headers = trusted_proxy_headers
        self.exempt_paths = exempt_paths
        self._hits: dict[str, deque[float]] = {}
        self._next_sweep = clock() + _WINDOW_SECONDS

    def _sweep(self, now: float) -> None:
        """Forget clients with no hit inside the window."""
        stale = [ip for ip, hits in self._hits.items() if not hits or hits[-1] <= now - _WINDOW_SECONDS]
        for ip in stale:
            del self._hits[ip]
        self._next_sweep = now + _WINDOW_SECONDS

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        client_ip = get_client_ip(request, self.trusted_proxy_headers)
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)
        hits = self._hits.setdefault(client_ip, deque())
        while hits and hits[0] <= now - _WINDOW_SECONDS:
            hits.popleft()

        if len(hits) >= self.requests_per_minute:
            retry_after = max(int(hits[0] + _WINDOW_SECONDS - now) + 1, 1)
            return Response(
                content='{"detail":"Rate limit exceeded","code":"rate_limited"}',
                status_code=429,
                media_type="application/json",
                headers={"Retry-After": str(retry_after)},
            )

        hits.append(now)
        return await call_next(request)
