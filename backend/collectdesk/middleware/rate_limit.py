"""Rate limiting middleware for the CollectDesk API.

Provides in-memory rate limiting to protect against brute force attacks
and accidental resubmission floods. Uses a sliding window per bucket.

Rate limits:
- Admin login: 5 attempts per IP per 15 minutes
- Report creation: 20 reports per IP per hour
- Meter ingestion: 120 batches per IP per machine per minute
"""

import logging
import os
import time
from collections import deque
from dataclasses import dataclass
from functools import wraps
from threading import Lock
from typing import Callable

from fastapi import HTTPException, Request, status

logger = logging.getLogger("collectdesk.middleware.rate_limit")


def _is_rate_limiting_disabled() -> bool:
    """Check if rate limiting should be disabled (e.g., in test environment)."""
    return os.getenv("TESTING", "").lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for a rate limit rule."""
    max_requests: int
    window_seconds: int


RATE_LIMITS = {
    "admin_login": RateLimitConfig(max_requests=5, window_seconds=15 * 60),
    "report_create": RateLimitConfig(max_requests=20, window_seconds=60 * 60),
    "meter_ingest": RateLimitConfig(max_requests=120, window_seconds=60),
}


def client_ip(request: Request) -> str:
    """Extract the client IP, honouring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        # First entry is the original client
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return "unknown"


class InMemoryRateLimiter:
    """Thread-safe sliding-window rate limiter keyed by rule, IP and extra key."""

    def __init__(self, cleanup_interval: int = 300) -> None:
        self._hits: dict[str, deque[float]] = {}
        self._lock = Lock()
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = time.monotonic()

    def _prune(self, now: float) -> None:
        """Drop buckets whose newest hit is older than the longest window."""
        if now - self._last_cleanup < self._cleanup_interval:
            return
        horizon = now - max(cfg.window_seconds for cfg in RATE_LIMITS.values())
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= horizon]
        for key in stale:
            del self._hits[key]
        self._last_cleanup = now
        if stale:
            logger.debug("Pruned %d idle rate limit buckets", len(stale))

    def hit(self, key: str, config: RateLimitConfig) -> int:
        """Register a request on a bucket.

        Returns:
            0 if the request is allowed, otherwise the seconds to wait.
        """
        now = time.monotonic()
        with self._lock:
            self._prune(now)
            hits = self._hits.setdefault(key, deque())
            window_start = now - config.window_seconds
            while hits and hits[0] <= window_start:
                hits.popleft()
            if len(hits) >= config.max_requests:
                return int(hits[0] + config.window_seconds - now) + 1
            hits.append(now)
            return 0

    def check_rate_limit(
        self,
        request: Request,
        limit_name: str,
        extra_key: str = "",
    ) -> None:
        """Check a named rule for this request.

        Raises:
            HTTPException: 429 Too Many Requests if the rule is exceeded.
        """
        if _is_rate_limiting_disabled():
            return

        config = RATE_LIMITS.get(limit_name)
        if config is None:
            logger.warning("Unknown rate limit name: %s", limit_name)
            return

        ip = client_ip(request)
        key = f"{limit_name}:{ip}:{extra_key}" if extra_key else f"{limit_name}:{ip}"
        retry_after = self.hit(key, config)
        if retry_after:
            logger.warning(
                "Rate limit exceeded: %s from %s (retry after %ds)",
                limit_name, ip, retry_after,
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "error": "RATE_LIMIT_EXCEEDED",
                    "message": "Too many requests. Please try again later.",
                    "retry_after": retry_after,
                },
                headers={"Retry-After": str(retry_after)},
            )

    def reset(self) -> None:
        """Reset all buckets. Used for testing."""
        with self._lock:
            self._hits.clear()


# Global rate limiter instance
rate_limiter = InMemoryRateLimiter()


def rate_limit(limit_name: str, extra_key_func: Callable[[Request], str] | None = None):
    """Decorator applying a named rule to an endpoint that takes a Request.

    Example:
        @router.post("/machines/{machine_id}/meters")
        @rate_limit("meter_ingest", lambda r: r.path_params["machine_id"])
        async def ingest(request: Request, ...):
            ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            request = kwargs.get("request")
            if request is None:
                request = next((a for a in args if isinstance(a, Request)), None)
            if request is None:
                logger.warning(
                    "Rate limit decorator on %s: no Request object found",
                    func.__name__,
                )
                return await func(*args, **kwargs)

            extra_key = extra_key_func(request) if extra_key_func else ""
            rate_limiter.check_rate_limit(request, limit_name, extra_key)
            return await func(*args, **kwargs)

        return wrapper
    return decorator
