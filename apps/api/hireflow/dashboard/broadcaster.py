"""Live dashboard push over server-sent events.

Each viewer gets a ``DashboardConnection`` with a bounded outbound buffer. The
broadcaster only ever enqueues, from whatever thread the event bus runs it
on; the HTTP response drains the buffer with the async ``stream()`` generator
on the event loop and is the single writer to the socket. A connection whose
buffer is full or closed is removed on the spot without affecting the others.
"""

from __future__ import annotations

import asyncio
import json
import threading
import uuid
from collections import deque
from collections.abc import AsyncIterator, Mapping
from fnmatch import fnmatchcase
from typing import Any

import structlog
from prometheus_client import Gauge

from hireflow.events.bus import EventBus, Subscription
from hireflow.events.types import DomainEvent

logger = structlog.get_logger(__name__)

DASHBOARD_CONNECTIONS = Gauge(
    "hireflow_dashboard_connections",
    "Open dashboard event streams",
)

# Pipeline state changes worth showing on a live dashboard.
DASHBOARD_EVENT_PATTERNS = (
    "application.*",
    "interview.*",
    "candidate.created",
    "resume.parse_completed",
)

UPDATE_EVENT_NAME = "analytics_update"
HEARTBEAT_FRAME = ": heartbeat\n\n"


def format_sse(event: str, data: Mapping[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False, separators=(',', ':'))}\n\n"


def notice_for(event: DomainEvent) -> dict[str, Any]:
    return {
        "eventType": event.type_code,
        "message": event.description,
        "timestamp": int(event.timestamp.timestamp() * 1000),
    }


def is_dashboard_event(event_type: str) -> bool:
    return any(fnmatchcase(event_type, pattern) for pattern in DASHBOARD_EVENT_PATTERNS)


class DashboardConnection:
    def __init__(self, connection_id: str, buffer_size: int = 100) -> None:
        self.id = connection_id
        self.buffer_size = buffer_size
        self._lock = threading.Lock()
        self._frames: deque[str] = deque()
        self._closed = False
        # Bound to the loop of whichever response is currently draining us.
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup: asyncio.Event | None = None

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def offer(self, frame: str) -> bool:
        with self._lock:
            if self._closed or len(self._frames) >= self.buffer_size:
                return False
            self._frames.append(frame)
        self._wake()
        return True

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._wake()

    def _wake(self) -> None:
        with self._lock:
            loop, wakeup = self._loop, self._wakeup
        if loop is None or wakeup is None:
            return
        try:
            loop.call_soon_threadsafe(wakeup.set)
        except RuntimeError:
            # Loop already shut down; the frame stays buffered.
            pass

    def _drain(self) -> list[str] | None:
        with self._lock:
            if self._closed:
                return None
            frames = list(self._frames)
            self._frames.clear()
            return frames

    async def stream(self, heartbeat_seconds: float = 30.0) -> AsyncIterator[str]:
        """Yield SSE frames until closed, with a heartbeat comment when idle."""
        wakeup = asyncio.Event()
        with self._lock:
            self._loop = asyncio.get_running_loop()
            self._wakeup = wakeup
        try:
            while True:
                wakeup.clear()
                frames = self._drain()
                if frames is None:
                    return
                if frames:
                    for frame in frames:
                        yield frame
                    continue
                try:
                    await asyncio.wait_for(wakeup.wait(), timeout=heartbeat_seconds)
                except asyncio.TimeoutError:
                    yield HEARTBEAT_FRAME
        finally:
            with self._lock:
                if self._wakeup is wakeup:
                    self._loop = None
                    self._wakeup = None


class DashboardBroadcaster:
    def __init__(self, *, buffer_size: int = 100, heartbeat_seconds: float = 30.0) -> None:
        self.buffer_size = buffer_size
        self.heartbeat_seconds = heartbeat_seconds
        self._lock = threading.Lock()
        self._connections: dict[str, DashboardConnection] = {}

    def connect(self) -> DashboardConnection:
        connection = DashboardConnection(uuid.uuid4().hex, self.buffer_size)
        connection.offer(
            format_sse(
                "connected",
                {"message": "dashboard stream established", "connectionId": connection.id},
            )
        )
        with self._lock:
            self._connections[connection.id] = connection
            count = len(self._connections)
        DASHBOARD_CONNECTIONS.set(count)
        logger.info("dashboard_connected", connection_id=connection.id, active=count)
        return connection

    def disconnect(self, connection_id: str) -> None:
        with self._lock:
            connection = self._connections.pop(connection_id, None)
            count = len(self._connections)
        if connection is None:
            return
        connection.close()
        DASHBOARD_CONNECTIONS.set(count)
        logger.info("dashboard_disconnected", connection_id=connection_id, active=count)

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def broadcast(self, event_name: str, data: Mapping[str, Any]) -> int:
        """Queue one frame on every live connection. Returns how many accepted it."""
        frame = format_sse(event_name, data)
        with self._lock:
            connections = list(self._connections.values())

        accepted = 0
        for connection in connections:
            if connection.offer(frame):
                accepted += 1
            else:
                logger.info("dashboard_connection_dropped", connection_id=connection.id)
                self.disconnect(connection.id)
        return accepted

    def handle_event(self, event: DomainEvent) -> None:
        if not is_dashboard_event(event.type_code) or not self.active_count:
            return
        accepted = self.broadcast(UPDATE_EVENT_NAME, notice_for(event))
        logger.debug("dashboard_broadcast", event_type=event.type_code, connections=accepted)

    def attach(self, bus: EventBus) -> Subscription:
        # One subscription keeps notices in publish order.
        return bus.subscribe("*", self.handle_event, name="dashboard")

    def close(self) -> None:
        with self._lock:
            connections, self._connections = list(self._connections.values()), {}
        for connection in connections:
            connection.close()
        DASHBOARD_CONNECTIONS.set(0)
