from __future__ import annotations

import pytest
from fastapi import HTTPException
from redis.exceptions import ConnectionError as RedisConnectionError

from hireflow.api.rate_limit import UploadRateLimiter, parse_rate


class CountingRedis:
    def __init__(self) -> None:
        self.counts: dict[str, int] = {}
        self.expiries: dict[str, int] = {}
        self.down = False

    def incr(self, key: str) -> int:
        if self.down:
            raise RedisConnectionError("connection refused")
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    def expire(self, key: str, seconds: int) -> bool:
        self.expiries[key] = seconds
        return True


@pytest.mark.parametrize(
    ("rate", "expected"),
    [("10/minute", (10, 60)), ("5/second", (5, 1)), ("100/hour", (100, 3600)), ("1/day", (1, 86400))],
)
def test_parse_rate(rate, expected):
    assert parse_rate(rate) == expected


@pytest.mark.parametrize("rate", ["10", "10/fortnight"])
def test_parse_rate_rejects_garbage(rate):
    with pytest.raises(ValueError):
        parse_rate(rate)


def test_eleventh_upload_in_window_is_rejected():
    redis = CountingRedis()
    limiter = UploadRateLimiter("10/minute", redis_factory=lambda: redis, clock=lambda: 120.0)

    for _ in range(10):
        limiter.check("u1")
    with pytest.raises(HTTPException) as excinfo:
        limiter.check("u1")

    assert excinfo.value.status_code == 429
    assert excinfo.value.headers["X-RateLimit-Limit"] == "10"
    assert excinfo.value.headers["Retry-After"] == "60"
    assert redis.expiries == {"rate:upload:u1:2": 60}


def test_limit_is_per_user_and_per_window():
    redis = CountingRedis()
    now = [0.0]
    limiter = UploadRateLimiter("1/minute", redis_factory=lambda: redis, clock=lambda: now[0])

    limiter.check("u1")
    limiter.check("u2")
    now[0] = 60.0
    limiter.check("u1")


def test_redis_outage_fails_open():
    redis = CountingRedis()
    redis.down = True
    limiter = UploadRateLimiter("1/minute", redis_factory=lambda: redis)

    for _ in range(3):
        limiter.check("u1")
