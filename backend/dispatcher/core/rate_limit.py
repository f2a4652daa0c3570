"""
Per-client rate limiting for the public prompt endpoints.

Each client IP gets a sliding window of request timestamps held in memory.
Only paths under /api/ and /chat are limited; health, metrics and docs
are never throttled.

Environment configuration (see core/config.py):
- RATE_LIMIT_REQUESTS: Requests allowed per IP per window (0 disables)
- RATE_LIMIT_WINDOW_SECONDS: Window length
"""
import math
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from dispatcher.core.config import get_settings
from dispatcher.core.logging import get_logger, get_trace_id
from dispatcher.core.metrics import record_rate_limit_hit
from dispatcher.models.responses import ErrorResponse

logger = get_logger(__name__)

LIMITED_PATH_PREFIXES = ("/api/", "/chat")


def get_client_ip(request: Request) -> str:
    """Extract client IP from request headers."""
    # Check X-Forwarded-For header (for proxies/load balancers)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def _mask(identifier: str) -> str:
    return identifier[:10] + "..." if len(identifier) > 10 else identifier


class SlidingWindowLimiter:
    """
    In-memory sliding window counter keyed by client identifier.

    Rejected requests are not counted, so a client that keeps retrying
    regains access once its oldest accepted request leaves the window.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    def hit(self, identifier: str) -> Tuple[bool, int, float]:
        """
        Count one request for ``identifier``.

        Returns:
            (allowed, remaining, seconds until the window frees a slot)
        """
        now = self._clock()
        self._sweep_idle(now)

        window = self._hits.setdefault(identifier, deque())
        cutoff = now - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()

        if len(window) >= self.limit:
            reset_in = window[0] + self.window_seconds - now
            return False, 0, reset_in

        window.append(now)
        reset_in = window[0] + self.window_seconds - now
        return True, self.limit - len(window), reset_in

    def _sweep_idle(self, now: float) -> None:
        # drop clients with no request inside the window, at most once per window
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        cutoff = now - self.window_seconds
        idle = [key for key, window in self._hits.items() if not window or window[-1] <= cutoff]
        for key in idle:
            del self._hits[key]

    def __len__(self) -> int:
        return len(self._hits)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Reject clients that exceed the per-IP request budget with HTTP 429.

    The limiter is resolved per request through ``get_rate_limiter`` so its
    configuration follows the current settings.
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith(LIMITED_PATH_PREFIXES):
            return await call_next(request)

        limiter = get_rate_limiter()
        if limiter is None:
            return await call_next(request)

        client_ip = get_client_ip(request)
        allowed, remaining, reset_in = limiter.hit(client_ip)

        if not allowed:
            record_rate_limit_hit(path)
            retry_after = max(1, math.ceil(reset_in))
            logger.warning(
                "rate_limit_exceeded",
                ip=_mask(client_ip),
                endpoint=path,
                limit=limiter.limit,
                retry_after=retry_after,
            )
            response = _rate_limited_response(limiter.window_seconds, retry_after)
            response.headers["Retry-After"] = str(retry_after)
            response.headers["X-RateLimit-Limit"] = str(limiter.limit)
            response.headers["X-RateLimit-Remaining"] = "0"
            response.headers["X-RateLimit-Reset"] = str(retry_after)
            return response

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limiter.limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(max(0, math.ceil(reset_in)))
        return response


def _rate_limited_response(window_seconds: float, retry_after: int) -> JSONResponse:
    minutes = max(1, round(window_seconds / 60))
    unit = "minute" if minutes == 1 else "minutes"
    body = ErrorResponse(
        detail=f"Too many requests from this IP, please try again after {minutes} {unit}.",
        error="rate_limited",
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        trace_id=get_trace_id(),
        retry_after=retry_after,
    )
    return JSONResponse(status_code=status.HTTP_429_TOO_MANY_REQUESTS, content=body.model_dump())


_rate_limiter: Optional[SlidingWindowLimiter] = None


def get_rate_limiter() -> Optional[SlidingWindowLimiter]:
    """Global limiter accessor; None when rate limiting is disabled."""
    global _rate_limiter
    settings = get_settings()
    if settings.rate_limit_requests <= 0:
        return None
    if _rate_limiter is None:
        _rate_limiter = SlidingWindowLimiter(
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _rate_limiter
