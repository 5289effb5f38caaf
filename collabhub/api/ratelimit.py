"""
Rate Limiting

Fixed-window request counters per client and route, applied by an HTTP
middleware. A limiter failure lets the request through.
"""

import asyncio
import logging
import math
import time
from typing import Callable, Dict, Optional, Tuple

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from collabhub.api.audit.middleware import get_client_ip
from collabhub.api.auth.jwt import verify_token
from collabhub.api.errors import RateLimitError, error_body

logger = logging.getLogger(__name__)


class FixedWindowCounter:
    """
    Counts hits per key within fixed windows.

    A key's window starts at its first hit and lasts ``window_seconds``;
    expired keys are dropped lazily on the next hit or sweep.
    """

    def __init__(
        self,
        window_seconds: float,
        max_hits: int,
        time_source: Callable[[], float] = time.time,
        sweep_every: int = 1000,
    ):
        self.window_seconds = window_seconds
        self.max_hits = max_hits
        self.time_source = time_source
        self.sweep_every = sweep_every

        self._windows: Dict[str, Tuple[int, float]] = {}
        self._lock = asyncio.Lock()
        self._hits_since_sweep = 0

    async def hit(self, key: str) -> Tuple[bool, int, float]:
        """
        Count one hit for ``key``.

        Returns:
            (allowed, remaining, reset_at) with reset_at in the time_source's units
        """
        async with self._lock:
            now = self.time_source()

            self._hits_since_sweep += 1
            if self._hits_since_sweep >= self.sweep_every:
                self._sweep(now)

            count, reset_at = self._windows.get(key, (0, 0.0))
            if reset_at <= now:
                count, reset_at = 0, now + self.window_seconds

            count += 1
            self._windows[key] = (count, reset_at)

        return count <= self.max_hits, max(0, self.max_hits - count), reset_at

    async def reset(self, prefix: str = "") -> int:
        """Forget every key starting with ``prefix``. Returns how many were cleared."""
        async with self._lock:
            keys = [k for k in self._windows if k.startswith(prefix)]
            for key in keys:
                del self._windows[key]
        return len(keys)

    def __len__(self) -> int:
        return len(self._windows)

    def _sweep(self, now: float) -> None:
        self._hits_since_sweep = 0
        for key in [k for k, (_, reset_at) in self._windows.items() if reset_at <= now]:
            del self._windows[key]


def route_class(path: str) -> str:
    """Rate-limit class for a request path."""
    if "/auth/login" in path or "/auth/federated" in path:
        return "auth"
    if "/ai/" in path:
        return "ai"
    if "/export" in path or "/download" in path:
        return "export"
    if path.startswith("/api/"):
        return "api"
    return "default"


def build_counters(settings) -> Dict[str, FixedWindowCounter]:
    """One counter per route class from settings."""
    limits = {
        "default": settings.RATE_LIMIT_DEFAULT,
        "auth": settings.RATE_LIMIT_AUTH,
        "api": settings.RATE_LIMIT_API,
        "ai": settings.RATE_LIMIT_AI,
        "export": settings.RATE_LIMIT_EXPORT,
    }
    return {name: FixedWindowCounter(window, max_hits) for name, (window, max_hits) in limits.items()}


def client_key(request: Request) -> str:
    """``user:<id>`` for a valid Bearer token, else ``ip:<addr>``."""
    authorization = request.headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        payload = verify_token(authorization[7:].strip(), "access")
        if payload and payload.get("sub"):
            return f"user:{payload['sub']}"
    return f"ip:{get_client_ip(request)}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply per-route-class limits and set X-RateLimit-* headers."""

    def __init__(
        self,
        app: ASGIApp,
        counters: Dict[str, FixedWindowCounter],
        exempt_paths: Optional[set] = None,
    ) -> None:
        super().__init__(app)
        self.counters = counters
        self.exempt_paths = exempt_paths or {"/api/health"}

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in self.exempt_paths:
            return await call_next(request)

        try:
            counter = self.counters[route_class(path)]
            client = client_key(request)
            allowed, remaining, reset_at = await counter.hit(f"ratelimit:{path}:{client}")
        except Exception as e:
            logger.error(f"Rate limiter error on {path}: {e}")
            return await call_next(request)

        headers = {
            "X-RateLimit-Limit": str(counter.max_hits),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(math.ceil(reset_at)),
        }

        if not allowed:
            retry_after = max(1, math.ceil(reset_at - counter.time_source()))
            logger.warning(f"Rate limit exceeded for {client} on {path}")
            error = RateLimitError(retry_after)
            return JSONResponse(
                status_code=error.status_code,
                content=error_body(error),
                headers={**headers, "Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
