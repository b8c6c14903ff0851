"""Request policy middleware for the CutMatch gateway.

Four pieces of policy are applied around every route:

SecurityHeadersMiddleware
    Adds a fixed set of browser hardening headers to every response.
RateLimitMiddleware
    Per-client sliding-window limit on ``/api`` routes, backed by
    :class:`SlidingWindowRateLimiter`.
RequestLoggingMiddleware
    Optional access log, one line per request.
UnhandledErrorMiddleware
    Turns exceptions that escaped the route handlers into a JSON 500.

CORS is handled by Starlette's ``CORSMiddleware``; the ordering of all five
is decided in :func:`cutmatch.api.main.create_app`.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from cutmatch.core.errors import RateLimitExceeded

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("cutmatch.access")

ErrorHandler = Callable[[Request, Exception], Awaitable[Response]]

SECURITY_HEADERS: dict[str, str] = {
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "cross-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach :data:`SECURITY_HEADERS` without overriding route-set values."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


# ---------------------------------------------------------------------------
# Rate limiting.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of recording one request against a client's window."""

    allowed: bool
    limit: int
    remaining: int
    reset_after: float

    def headers(self) -> dict[str, str]:
        """Standard ``RateLimit-*`` headers (no legacy ``X-RateLimit-*``)."""
        headers = {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(math.ceil(self.reset_after)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(math.ceil(self.reset_after))
        return headers


class SlidingWindowRateLimiter:
    """In-memory sliding-window request counter keyed by client.

    Each key keeps the timestamps of its accepted requests inside the
    current window.  A request is accepted while fewer than ``limit``
    timestamps remain after expired ones are dropped.  Rejected requests are
    not recorded, so a client that backs off regains capacity as soon as its
    oldest accepted request leaves the window.  Keys whose window has fully
    expired are swept at most once per window, so idle clients do not
    accumulate.

    Args:
        limit: Maximum accepted requests per window.
        window_seconds: Window length.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def hit(self, key: str) -> RateLimitDecision:
        """Record a request for ``key`` and decide whether it may proceed."""
        now = self._clock()
        cutoff = now - self.window_seconds

        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = now

            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.limit:
                reset_after = hits[0] + self.window_seconds - now
                return RateLimitDecision(False, self.limit, 0, max(reset_after, 0.0))

            hits.append(now)
            reset_after = hits[0] + self.window_seconds - now
            return RateLimitDecision(True, self.limit, self.limit - len(hits), reset_after)

    def _sweep(self, cutoff: float) -> None:
        # The newest timestamp is last; a key is stale once it has expired.
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]
        if stale:
            logger.debug(f"Rate limiter dropped {len(stale)} idle client(s)")

    def __len__(self) -> int:
        """Number of clients currently tracked."""
        with self._lock:
            return len(self._hits)

    def reset(self, key: str | None = None) -> None:
        """Forget one client's window, or every window when ``key`` is None."""
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)


def client_key(request: Request) -> str:
    """Identify the caller by remote address."""
    if request.client is None:
        return "unknown"
    return request.client.host


def is_rate_limited_path(path: str, prefix: str = "/api") -> bool:
    return path == prefix or path.startswith(prefix + "/")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply a :class:`SlidingWindowRateLimiter` to ``/api`` routes.

    Rejected requests get HTTP 429 with the fixed
    ``{"error", "message"}`` payload and a ``Retry-After`` header.  The
    gateway never retries on the client's behalf.
    """

    def __init__(
        self,
        app: ASGIApp,
        limiter: SlidingWindowRateLimiter,
        prefix: str = "/api",
    ) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.prefix = prefix

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not is_rate_limited_path(request.url.path, self.prefix):
            return await call_next(request)

        key = client_key(request)
        decision = self.limiter.hit(key)
        if not decision.allowed:
            logger.warning(f"Rate limit exceeded for {key} on {request.url.path}")
            return JSONResponse(
                status_code=RateLimitExceeded.status_code,
                content={
                    "error": RateLimitExceeded.error,
                    "message": RateLimitExceeded.default_message,
                },
                headers=decision.headers(),
            )

        response = await call_next(request)
        response.headers.update(decision.headers())
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log one combined-format line per request on ``cutmatch.access``."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        access_logger.info(
            '%s "%s %s HTTP/%s" %d %s %.1fms "%s"',
            client_key(request),
            request.method,
            request.url.path,
            request.scope.get("http_version", "1.1"),
            response.status_code,
            response.headers.get("content-length", "-"),
            elapsed_ms,
            request.headers.get("user-agent", "-"),
        )
        return response


class UnhandledErrorMiddleware(BaseHTTPMiddleware):
    """Convert exceptions no route handler dealt with into a response.

    Installed innermost, so the response it builds still passes through the
    security header and CORS middleware on the way out.

    Args:
        app: The wrapped ASGI app.
        handler: Builds the error response; it is also responsible for logging.
    """

    def __init__(self, app: ASGIApp, handler: ErrorHandler) -> None:
        super().__init__(app)
        self.handler = handler

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            return await self.handler(request, e)
