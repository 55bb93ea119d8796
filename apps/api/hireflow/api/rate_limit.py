from __future__ import annotations

import time
from collections.abc import Callable
from typing import Annotated

import structlog
from fastapi import Depends, HTTPException
from redis import Redis
from redis.exceptions import RedisError

from hireflow.auth.deps import CurrentUser
from hireflow.core.config import settings
from hireflow.redis_client import get_redis

logger = structlog.get_logger(__name__)


def parse_rate(rate: str) -> tuple[int, int]:
    """
    Parse formats like:
      - "10/minute"
      - "120/hour"
      - "5/second"
    Returns: (limit, window_seconds)
    """
    raw = rate.strip().lower()
    if "/" not in raw:
        raise ValueError(f"Invalid rate format: {rate}")

    limit_str, window_str = raw.split("/", 1)
    limit = int(limit_str)

    window_str = window_str.strip()
    if window_str in {"sec", "second", "seconds"}:
        return limit, 1
    if window_str in {"min", "minute", "minutes"}:
        return limit, 60
    if window_str in {"hour", "hours"}:
        return limit, 3600
    if window_str in {"day", "days"}:
        return limit, 86400

    raise ValueError(f"Invalid rate window: {window_str}")


class UploadRateLimiter:
    """Fixed-window per-user counter kept in Redis."""

    key_prefix = "rate:upload"

    def __init__(
        self,
        rate: str,
        redis_factory: Callable[[], Redis] = get_redis,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.limit, self.window_seconds = parse_rate(rate)
        self._redis_factory = redis_factory
        self._clock = clock

    def check(self, user_id: str) -> None:
        now = int(self._clock())
        bucket = now // self.window_seconds
        key = f"{self.key_prefix}:{user_id}:{bucket}"

        try:
            r = self._redis_factory()
            count = int(r.incr(key))
            if count == 1:
                r.expire(key, self.window_seconds)
        except RedisError:
            # Fail open if Redis is unavailable
            logger.warning("upload_rate_limit_unavailable", user_id=user_id)
            return

        if count > self.limit:
            reset = (bucket + 1) * self.window_seconds
            raise HTTPException(
                status_code=429,
                detail={"code": "RATE_LIMITED", "message": "upload rate limit exceeded"},
                headers={
                    "X-RateLimit-Limit": str(self.limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset),
                    "Retry-After": str(max(0, reset - now)),
                },
            )


def get_upload_rate_limiter() -> UploadRateLimiter | None:
    if not settings.upload_rate_limit_enabled:
        return None
    try:
        return UploadRateLimiter(settings.upload_rate_limit)
    except ValueError:
        # Misconfigured rate => fail open
        logger.warning("upload_rate_limit_misconfigured", rate=settings.upload_rate_limit)
        return None


def enforce_upload_rate_limit(
    user: CurrentUser,
    limiter: Annotated[UploadRateLimiter | None, Depends(get_upload_rate_limiter)],
) -> None:
    if limiter is not None:
        limiter.check(str(user.id))


UploadRateLimit = Depends(enforce_upload_rate_limit)
