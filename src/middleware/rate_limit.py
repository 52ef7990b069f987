"""Per-IP sliding-window rate limiter for the public JSON API.

Only ``/api/...`` routes are limited, 100 requests per 15 minutes per
client by default.  One dashboard view costs a handful of calls (metrics,
history, district list), so the budget covers normal browsing while a
scraper looping over districts is throttled long before it can drain the
data.gov.in quota that cache misses spend.  Both numbers come from
``RATE_LIMIT_MAX_REQUESTS`` and ``RATE_LIMIT_WINDOW_SECONDS``.

Request timestamps live in one :class:`collections.deque` per IP inside
the process.  Behind several workers each enforces its own budget.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Final

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_LIMITED_PREFIX: Final[str] = "/api/"
_EXEMPT_PATHS: Final[frozenset[str]] = frozenset({
    "/api/v1/health",
    "/api/v1/health/ready",
})
_TOO_MANY_MESSAGE: Final[str] = "Too many requests from this IP, please try again later."

# Idle IPs are swept once every this many limited requests.
_SWEEP_EVERY: Final[int] = 1000


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limiter keyed by client IP address.

    Parameters
    ----------
    app:
        The ASGI application.
    max_requests:
        Requests allowed per IP within one window.
    window_seconds:
        Length of the sliding window.
    trusted_proxy_count:
        Reverse proxies in front of the app.  The client address is the
        ``X-Forwarded-For`` entry just left of the last
        *trusted_proxy_count* entries.  0 trusts no proxy.
    """

    def __init__(
        self,
        app: object,
        max_requests: int = 100,
        window_seconds: float = 900.0,
        trusted_proxy_count: int = 1,
    ) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self._max_requests = max_requests
        self._window_seconds = float(window_seconds)
        self._trusted_proxy_count = trusted_proxy_count
        self._hits: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()
        self._since_sweep = 0

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if not path.startswith(_LIMITED_PREFIX) or path in _EXEMPT_PATHS:
            return await call_next(request)

        client_ip = self._client_ip(request)
        async with self._lock:
            allowed, value = self._record(client_ip, time.monotonic())

        if not allowed:
            logger.warning(
                "rate_limit.exceeded",
                client_ip=client_ip,
                max_requests=self._max_requests,
                window_seconds=self._window_seconds,
            )
            return self._too_many(retry_after=value)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self._max_requests)
        response.headers["X-RateLimit-Remaining"] = str(value)
        return response

    # ------------------------------------------------------------------
    # Window bookkeeping (caller holds the lock)
    # ------------------------------------------------------------------

    def _record(self, client_ip: str, now: float) -> tuple[bool, int]:
        """Count a request for *client_ip*.

        Returns ``(True, remaining)`` when admitted, or
        ``(False, retry_after_seconds)`` when the window is full.
        """
        self._since_sweep += 1
        if self._since_sweep >= _SWEEP_EVERY:
            self._since_sweep = 0
            self._sweep(now)

        hits = self._hits.setdefault(client_ip, deque())
        cutoff = now - self._window_seconds
        while hits and hits[0] < cutoff:
            hits.popleft()

        if len(hits) >= self._max_requests:
            oldest_expires_in = self._window_seconds - (now - hits[0])
            return False, max(1, int(oldest_expires_in) + 1)

        hits.append(now)
        return True, self._max_requests - len(hits)

    def _sweep(self, now: float) -> None:
        cutoff = now - self._window_seconds
        idle = [ip for ip, hits in self._hits.items() if not hits or hits[-1] < cutoff]
        for ip in idle:
            del self._hits[ip]
        if idle:
            logger.debug("rate_limit.swept", removed_ips=len(idle))

    def _too_many(self, retry_after: int) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={"detail": _TOO_MANY_MESSAGE, "retry_after_seconds": retry_after},
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(self._max_requests),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(retry_after),
            },
        )

    # ------------------------------------------------------------------
    # Client identification
    # ------------------------------------------------------------------

    def _client_ip(self, request: Request) -> str:
        """Resolve the caller's address from proxy headers or the socket.

        With ``"client, proxy"`` and one trusted proxy the client is
        ``ips[-2]``.  A header shorter than expected yields its leftmost
        entry.
        """
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            ips = [ip.strip() for ip in forwarded_for.split(",") if ip.strip()]
            if ips:
                depth = self._trusted_proxy_count + 1
                return ips[-depth] if self._trusted_proxy_count > 0 and depth <= len(ips) else ips[0]

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

        return request.client.host if request.client else "unknown"
