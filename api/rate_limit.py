"""
Per-client fixed-window rate limiting.

Each limiter is a FastAPI dependency backed by ``limits`` with in-memory
storage, so idle client windows expire on their own. A request over the
limit gets a 429 envelope with ``retryAfter`` and the ``X-RateLimit-*``
headers.
"""

import time
from dataclasses import dataclass

from fastapi import HTTPException, Request, Response, status
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from core.config import settings
from core.logging import log_rate_limit_exceeded


@dataclass
class RateLimitStatus:
    """Current rate limit status."""
    allowed: bool
    limit: int
    remaining: int
    reset_time: int
    retry_after: int = 0


def get_client_ip(request: Request) -> str:
    """Peer address, or the first X-Forwarded-For hop when proxies are trusted"""
    if settings.TRUST_PROXY_HEADERS:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimiter:
    """
    Args:
        name: Limiter name used in logs and as the storage namespace
        max_requests: Requests allowed per window
        window_seconds: Window length
        message: Error text returned on 429
        window_label: Human-readable window, e.g. "15 minutes"
    """

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_seconds: int,
        message: str,
        window_label: str
    ):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.message = message
        self.window_label = window_label
        self._item = RateLimitItemPerSecond(max_requests, window_seconds)
        self._storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    def hit(self, client_id: str) -> RateLimitStatus:
        allowed = self._strategy.hit(self._item, self.name, client_id)
        stats = self._strategy.get_window_stats(self._item, self.name, client_id)
        reset_time = int(stats.reset_time)

        if not allowed:
            return RateLimitStatus(
                allowed=False,
                limit=self.max_requests,
                remaining=0,
                reset_time=reset_time,
                retry_after=max(1, int(stats.reset_time - time.time())),
            )

        return RateLimitStatus(
            allowed=True,
            limit=self.max_requests,
            remaining=stats.remaining,
            reset_time=reset_time,
        )

    def reset(self):
        self._storage.reset()

    async def __call__(self, request: Request, response: Response):
        client_ip = get_client_ip(request)
        result = self.hit(client_ip)

        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(result.reset_time),
        }

        if not result.allowed:
            log_rate_limit_exceeded(self.name, client_ip, request.url.path)
            headers["Retry-After"] = str(result.retry_after)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "error": self.message,
                    "retryAfter": self.window_label,
                    "limit": f"{self.max_requests} requests per {self.window_label}",
                },
                headers=headers,
            )

        for key, value in headers.items():
            response.headers[key] = value


api_limiter = RateLimiter(
    "api", 1000, 15 * 60, "Too many requests, please try again later", "15 minutes"
)
traffic_limiter = RateLimiter(
    "traffic", 30, 60, "Traffic data rate limit exceeded", "1 minute"
)
expensive_limiter = RateLimiter(
    "expensive", 60, 60, "Rate limit exceeded for this endpoint", "1 minute"
)
report_limiter = RateLimiter(
    "report", 10, 5 * 60, "Too many reports submitted, please wait before reporting again", "5 minutes"
)
auth_limiter = RateLimiter(
    "auth", 5, 15 * 60, "Too many authentication attempts, please try again later", "15 minutes"
)

ALL_LIMITERS = (api_limiter, traffic_limiter, expensive_limiter, report_limiter, auth_limiter)
