"""
Ganttium - Rate Limiting
========================
Fixed-window attempt counters keyed by client address.

Used twice: the login throttle (5 attempts per 15 minutes per client, every
attempt counts whether or not the password was right) and the optional
per-client budget for the whole ``/api`` surface.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Window:
    started_at: float
    count: int = 0


class RateLimiter:
    """
    ``max_requests`` per client per ``window_seconds``.

    A client's window opens on its first request; once the budget is spent
    every request is refused until the window expires, and the refusal
    reports the seconds left.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, Window] = {}

    def _window(self, client_id: str, now: float) -> Window:
        window = self._windows.get(client_id)
        if window is None or now - window.started_at >= self.window_seconds:
            window = Window(started_at=now)
            self._windows[client_id] = window
        return window

    def check_rate_limit(self, client_id: str) -> Tuple[bool, Optional[float]]:
        """
        Count one request for ``client_id``.

        Returns:
            ``(True, None)`` when allowed, ``(False, retry_after_seconds)`` otherwise
        """
        now = self._clock()
        window = self._window(client_id, now)

        if window.count >= self.max_requests:
            retry_after = self.window_seconds - (now - window.started_at)
            logger.warning("Client rate limit exceeded", client_id=client_id, retry_after=round(retry_after, 1))
            return False, retry_after

        window.count += 1
        return True, None

    def remaining(self, client_id: str) -> int:
        window = self._windows.get(client_id)
        if window is None or self._clock() - window.started_at >= self.window_seconds:
            return self.max_requests
        return max(self.max_requests - window.count, 0)

    def reset(self, client_id: Optional[str] = None) -> None:
        """Forget one client's window, or all of them."""
        if client_id is None:
            self._windows.clear()
        else:
            self._windows.pop(client_id, None)

    def cleanup_expired(self) -> int:
        """Drop windows that have run out; returns how many were dropped."""
        now = self._clock()
        expired = [
            client_id
            for client_id, window in self._windows.items()
            if now - window.started_at >= self.window_seconds
        ]
        for client_id in expired:
            del self._windows[client_id]
        return len(expired)


def get_client_ip(request: Request) -> str:
    """Client address, honouring the first X-Forwarded-For hop behind a proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client request budget for the /api surface."""

    CLEANUP_INTERVAL = 300.0

    def __init__(self, app, requests_per_minute: int = 600):
        super().__init__(app)
        self.limiter = RateLimiter(max_requests=requests_per_minute, window_seconds=60.0)
        self._last_cleanup = time.monotonic()

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith("/api/"):
            return await call_next(request)

        client_id = get_client_ip(request)
        allowed, retry_after = self.limiter.check_rate_limit(client_id)

        if not allowed:
            # Runs outside the app's exception handlers; same envelope they produce
            return JSONResponse(
                status_code=429,
                content={
                    "error": {
                        "error_type": "RateLimitExceededError",
                        "message": "Too many requests, please try again later",
                        "context": {"retry_after": round(retry_after or 0.0, 1)},
                        "request_id": getattr(request.state, "request_id", None),
                    },
                    "path": request.url.path,
                },
                headers={"Retry-After": str(int(retry_after or 0) + 1)},
            )

        now = time.monotonic()
        if now - self._last_cleanup > self.CLEANUP_INTERVAL:
            self.limiter.cleanup_expired()
            self._last_cleanup = now

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.limiter.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(self.limiter.remaining(client_id))
        return response
