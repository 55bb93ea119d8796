"""Process-wide wiring of the event bus and its subscribers.

The API process owns webhook delivery and the dashboard. Events raised in
Celery workers reach it through the Redis relay (see ``events.relay``).
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass

import httpx
import structlog
from redis import Redis
from sqlalchemy.orm import Session

from hireflow.core.config import settings
from hireflow.dashboard.broadcaster import DashboardBroadcaster
from hireflow.events.bus import EventBus
from hireflow.events.relay import RedisEventListener
from hireflow.webhooks.dispatcher import RetryPolicy, WebhookDispatcher
from hireflow.webhooks.repository import SqlWebhookRepository

logger = structlog.get_logger(__name__)


@dataclass
class PipelineRuntime:
    bus: EventBus
    dispatcher: WebhookDispatcher
    broadcaster: DashboardBroadcaster
    relay: RedisEventListener | None = None

    def wait_idle(self, timeout: float = 5.0) -> bool:
        return self.bus.wait_idle(timeout) and self.dispatcher.wait_idle(timeout)

    def close(self) -> None:
        if self.relay is not None:
            self.relay.stop()
        self.broadcaster.close()
        self.bus.close()
        self.dispatcher.close()
        logger.info("runtime_stopped")


def build_runtime(
    session_factory: Callable[[], Session] | None = None,
    *,
    http_client: httpx.Client | None = None,
    policy: RetryPolicy | None = None,
    failure_threshold: int | None = None,
    relay_redis: Callable[[], Redis] | None = None,
) -> PipelineRuntime:
    if session_factory is None:
        from hireflow.db import SessionLocal

        session_factory = SessionLocal

    bus = EventBus(queue_size=settings.event_bus_queue_size)
    dispatcher = WebhookDispatcher(
        SqlWebhookRepository(session_factory),
        client=http_client,
        policy=policy or RetryPolicy.from_settings(),
        failure_threshold=failure_threshold or settings.webhook_failure_threshold,
        timeout=settings.webhook_timeout_seconds,
        lanes=settings.webhook_lanes,
        user_agent=settings.webhook_user_agent,
    )
    broadcaster = DashboardBroadcaster(
        buffer_size=settings.dashboard_buffer_size,
        heartbeat_seconds=settings.dashboard_heartbeat_seconds,
    )

    bus.subscribe("*", dispatcher.handle_event, name="webhooks")
    broadcaster.attach(bus)

    relay = None
    if relay_redis is None and settings.event_relay_enabled:
        from hireflow.redis_client import get_redis

        relay_redis = get_redis
    if relay_redis is not None:
        relay = RedisEventListener(bus, relay_redis, settings.event_relay_channel).start()

    logger.info(
        "runtime_started",
        subscribers=len(bus.subscriptions),
        relay=relay is not None,
    )
    return PipelineRuntime(bus=bus, dispatcher=dispatcher, broadcaster=broadcaster, relay=relay)


_runtime: PipelineRuntime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> PipelineRuntime:
    """Lazily build the runtime for this process."""
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = build_runtime()
        return _runtime


def set_runtime(runtime: PipelineRuntime | None) -> PipelineRuntime | None:
    global _runtime
    with _runtime_lock:
        previous, _runtime = _runtime, runtime
        return previous


def shutdown_runtime() -> None:
    runtime = set_runtime(None)
    if runtime is not None:
        runtime.close()
