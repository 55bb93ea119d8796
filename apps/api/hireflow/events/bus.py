"""In-process publish/subscribe for domain events.

Every subscription owns a bounded queue drained by its own daemon thread, so a
slow handler only delays its own backlog. Publishing never waits on handlers.
When a subscription's queue is full the oldest pending event is dropped.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from collections.abc import Callable
from fnmatch import fnmatchcase

import structlog
from prometheus_client import Counter

from hireflow.events.types import DomainEvent

logger = structlog.get_logger(__name__)

EventHandler = Callable[[DomainEvent], None]

DROPPED_EVENTS = Counter(
    "hireflow_event_bus_dropped_events_total",
    "Events dropped because a subscriber queue was full",
    ["subscriber"],
)

_subscription_ids = itertools.count(1)


class Subscription:
    def __init__(
        self,
        pattern: str,
        handler: EventHandler,
        *,
        name: str | None = None,
        maxsize: int = 1000,
    ) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self.pattern = pattern
        self.handler = handler
        self.name = name or f"subscriber-{next(_subscription_ids)}"
        self.maxsize = maxsize
        self.dropped = 0
        self.delivered = 0

        self._pending: deque[DomainEvent] = deque()
        self._cond = threading.Condition()
        self._busy = False
        self._closed = False
        self._thread = threading.Thread(
            target=self._run, name=f"event-bus:{self.name}", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def matches(self, event_type: str) -> bool:
        return fnmatchcase(event_type, self.pattern)

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._pending)

    def offer(self, event: DomainEvent) -> bool:
        with self._cond:
            if self._closed:
                return False
            if len(self._pending) >= self.maxsize:
                evicted = self._pending.popleft()
                self.dropped += 1
                DROPPED_EVENTS.labels(subscriber=self.name).inc()
                logger.warning(
                    "event_dropped",
                    subscriber=self.name,
                    event_id=evicted.event_id,
                    event_type=evicted.type_code,
                    dropped_total=self.dropped,
                )
            self._pending.append(event)
            self._cond.notify_all()
            return True

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._pending and not self._closed:
                    self._cond.wait()
                if not self._pending:
                    return
                event = self._pending.popleft()
                self._busy = True

            try:
                self.handler(event)
            except Exception:
                logger.exception(
                    "event_handler_failed",
                    subscriber=self.name,
                    event_id=event.event_id,
                    event_type=event.type_code,
                )
            finally:
                with self._cond:
                    self._busy = False
                    self.delivered += 1
                    self._cond.notify_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        with self._cond:
            return self._cond.wait_for(
                lambda: not self._pending and not self._busy, timeout=timeout
            )

    def close(self, timeout: float | None = 5.0) -> None:
        """Stop accepting events; the worker drains what is already queued."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)


class EventBus:
    def __init__(self, queue_size: int = 1000) -> None:
        self._queue_size = queue_size
        self._lock = threading.Lock()
        self._subscriptions: tuple[Subscription, ...] = ()
        self._closed = False

    def subscribe(
        self,
        pattern: str,
        handler: EventHandler,
        *,
        name: str | None = None,
        maxsize: int | None = None,
    ) -> Subscription:
        subscription = Subscription(
            pattern, handler, name=name, maxsize=maxsize or self._queue_size
        )
        with self._lock:
            if self._closed:
                raise RuntimeError("event bus is closed")
            self._subscriptions = self._subscriptions + (subscription,)
        subscription.start()
        logger.info("event_subscriber_added", subscriber=subscription.name, pattern=pattern)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions = tuple(s for s in self._subscriptions if s is not subscription)
        subscription.close()

    @property
    def subscriptions(self) -> tuple[Subscription, ...]:
        return self._subscriptions

    def publish(self, event: DomainEvent) -> int:
        """Queue event for every matching subscriber and return how many matched."""
        subscribers = self._subscriptions
        delivered = 0
        for subscription in subscribers:
            if subscription.matches(event.type_code) and subscription.offer(event):
                delivered += 1
        logger.debug(
            "event_published",
            event_id=event.event_id,
            event_type=event.type_code,
            subscribers=delivered,
        )
        return delivered

    def wait_idle(self, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        for subscription in self._subscriptions:
            remaining = max(0.0, deadline - time.monotonic())
            if not subscription.wait_idle(remaining):
                return False
        return True

    def close(self) -> None:
        with self._lock:
            self._closed = True
            subscriptions, self._subscriptions = self._subscriptions, ()
        for subscription in subscriptions:
            subscription.close()
