from __future__ import annotations

from redis import Redis
from redis.connection import ConnectionPool

from hireflow.core.config import settings

_pool: ConnectionPool | None = None


def get_redis() -> Redis:
    global _pool
    if _pool is None:
        _pool = ConnectionPool.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_socket_timeout,
            health_check_interval=30,
        )
    return Redis(connection_pool=_pool)


def reset_redis_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.disconnect()
    _pool = None
