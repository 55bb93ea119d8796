"""Carry domain events between processes over Redis pub/sub.

Parse workers run in Celery processes, while webhook delivery and dashboard
viewers live in the API process. Workers forward their bus traffic to one
Redis channel; the API process listens on it and re-publishes each event on
its local bus, so every subscriber sees worker events as if published there.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from redis import Redis
from redis.exceptions import RedisError

from hireflow.events.bus import EventBus
from hireflow.events.types import DomainEvent, EventType

logger = structlog.get_logger(__name__)

RedisFactory = Callable[[], Redis]


def event_to_message(event: DomainEvent) -> str:
    return json.dumps(
        {
            "event_id": event.event_id,
            "event_type": event.type_code,
            "timestamp": event.timestamp.isoformat(),
            "payload": dict(event.payload),
        },
        separators=(",", ":"),
        default=str,
    )


def event_from_message(raw: str | bytes) -> DomainEvent | None:
    try:
        data: dict[str, Any] = json.loads(raw)
        event_type = EventType.from_code(data["event_type"])
        if event_type is None:
            logger.warning("relay_unknown_event_type", event_type=data["event_type"])
            return None
        return DomainEvent(
            event_type=event_type,
            payload=data.get("payload") or {},
            event_id=data["event_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )
    except (ValueError, KeyError, TypeError):
        logger.warning("relay_message_malformed", raw=str(raw)[:200])
        return None


class RedisEventForwarder:
    """Bus handler that publishes every event it sees to the relay channel."""

    def __init__(self, redis_factory: RedisFactory, channel: str) -> None:
        self._redis_factory = redis_factory
        self.channel = channel

    def __call__(self, event: DomainEvent) -> None:
        receivers = self._redis_factory().publish(self.channel, event_to_message(event))
        logger.debug(
            "relay_event_forwarded",
            event_id=event.event_id,
            event_type=event.type_code,
            receivers=receivers,
        )


class RedisEventListener:
    """Re-publishes relay channel messages on a local bus, reconnecting on errors."""

    def __init__(
        self,
        bus: EventBus,
        redis_factory: RedisFactory,
        channel: str,
        *,
        poll_timeout: float = 1.0,
        reconnect_delay: float = 2.0,
    ) -> None:
        self._bus = bus
        self._redis_factory = redis_factory
        self.channel = channel
        self._poll_timeout = poll_timeout
        self._reconnect_delay = reconnect_delay
        self._stopped = threading.Event()
        self._subscribed = threading.Event()
        self._thread = threading.Thread(target=self._run, name="event-relay-listener", daemon=True)

    def start(self) -> RedisEventListener:
        self._thread.start()
        return self

    def wait_subscribed(self, timeout: float = 5.0) -> bool:
        return self._subscribed.wait(timeout)

    def _run(self) -> None:
        while not self._stopped.is_set():
            pubsub = None
            try:
                pubsub = self._redis_factory().pubsub(ignore_subscribe_messages=True)
                pubsub.subscribe(self.channel)
                self._subscribed.set()
                logger.info("relay_listener_subscribed", channel=self.channel)
                while not self._stopped.is_set():
                    message = pubsub.get_message(timeout=self._poll_timeout)
                    if not message or message.get("type") != "message":
                        continue
                    event = event_from_message(message["data"])
                    if event is not None:
                        self._bus.publish(event)
            except RedisError as exc:
                self._subscribed.clear()
                logger.warning("relay_listener_disconnected", channel=self.channel, error=str(exc))
                self._stopped.wait(self._reconnect_delay)
            finally:
                if pubsub is not None:
                    try:
                        pubsub.close()
                    except RedisError:
                        logger.debug("relay_pubsub_close_failed", exc_info=True)

    def stop(self) -> None:
        self._stopped.set()
        if self._thread.is_alive():
            self._thread.join(timeout=self._poll_timeout + 5)
