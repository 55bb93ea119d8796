from __future__ import annotations

import asyncio
import json
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import aclosing

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from hireflow.core.config import settings
from hireflow.db import SessionLocal
from hireflow.events.bus import EventBus
from hireflow.events.relay import (
    RedisEventForwarder,
    RedisEventListener,
    event_from_message,
    event_to_message,
)
from hireflow.events.types import DomainEvent, EventType, new_event
from hireflow.models import User, WebhookConfig
from hireflow.pipeline.extractor import ResumeExtractor
from hireflow.pipeline.task_state import TaskState, TaskStatus
from hireflow.pipeline.worker import ParseJob, ParseWorker
from hireflow.runtime import build_runtime
from hireflow.webhooks.dispatcher import RetryPolicy

CHANNEL = settings.event_relay_channel
FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0.01, multiplier=1.0, max_delay=0.01)


class StubExtractor(ResumeExtractor):
    def extract(self, data: bytes, *, filename: str | None = None):
        return {"name": "Ada Lovelace", "email": "ada@example.com", "skills": ["analysis"]}


class FakePubSub:
    def __init__(self, server: FakeRedis) -> None:
        self._server = server
        self.messages: queue.Queue[dict] = queue.Queue()
        self.closed = False

    def subscribe(self, channel: str) -> None:
        self._server.attach(channel, self)

    def get_message(self, timeout: float = 0.0):
        try:
            return self.messages.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self.closed = True
        self._server.detach(self)


class FakeRedis:
    """Just enough of redis-py pub/sub for one channel fan-out."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[FakePubSub]] = {}
        self.published: list[tuple[str, str]] = []

    def pubsub(self, ignore_subscribe_messages: bool = False) -> FakePubSub:
        return FakePubSub(self)

    def attach(self, channel: str, pubsub: FakePubSub) -> None:
        with self._lock:
            self._subscribers.setdefault(channel, []).append(pubsub)

    def detach(self, pubsub: FakePubSub) -> None:
        with self._lock:
            for subscribers in self._subscribers.values():
                if pubsub in subscribers:
                    subscribers.remove(pubsub)

    def publish(self, channel: str, data: str) -> int:
        with self._lock:
            self.published.append((channel, data))
            subscribers = list(self._subscribers.get(channel, []))
        for pubsub in subscribers:
            pubsub.messages.put({"type": "message", "channel": channel, "data": data})
        return len(subscribers)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


def test_message_keeps_event_identity():
    event = new_event(EventType.INTERVIEW_SCHEDULED, {"interview_id": 7})

    decoded = event_from_message(event_to_message(event).encode())

    assert decoded.event_id == event.event_id
    assert decoded.event_type is EventType.INTERVIEW_SCHEDULED
    assert decoded.timestamp == event.timestamp
    assert dict(decoded.payload) == {"interview_id": 7}


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        json.dumps({"event_type": "resume.uploaded"}),
        json.dumps({"event_id": "x", "event_type": "resume.exploded", "timestamp": "2024-01-01T00:00:00"}),
        json.dumps({"event_id": "x", "event_type": "resume.uploaded", "timestamp": "yesterday"}),
    ],
)
def test_unusable_messages_are_dropped(raw):
    assert event_from_message(raw) is None


def test_listener_republishes_on_local_bus(fake_redis: FakeRedis):
    bus = EventBus()
    seen: list[DomainEvent] = []
    arrived = threading.Event()

    def record(event: DomainEvent) -> None:
        seen.append(event)
        arrived.set()

    bus.subscribe("*", record, name="recorder")
    listener = RedisEventListener(bus, lambda: fake_redis, CHANNEL, poll_timeout=0.05).start()
    try:
        assert listener.wait_subscribed(2)
        event = new_event(EventType.CANDIDATE_CREATED, {"candidate_id": 3})
        RedisEventForwarder(lambda: fake_redis, CHANNEL)(event)
        fake_redis.publish(CHANNEL, "garbage")
        fake_redis.publish("some:other:channel", event_to_message(event))

        assert arrived.wait(2)
        assert bus.wait_idle(2)
    finally:
        listener.stop()
        bus.close()

    assert [e.event_id for e in seen] == [event.event_id]


def test_listener_reconnects_after_redis_error(fake_redis: FakeRedis):
    calls = {"n": 0}

    def flaky_factory():
        calls["n"] += 1
        if calls["n"] == 1:
            raise RedisConnectionError("connection refused")
        return fake_redis

    bus = EventBus()
    listener = RedisEventListener(
        bus, flaky_factory, CHANNEL, poll_timeout=0.05, reconnect_delay=0.01
    ).start()
    try:
        assert listener.wait_subscribed(2)
    finally:
        listener.stop()
        bus.close()

    assert calls["n"] >= 2


def _first_update(connection, timeout: float = 5.0) -> dict:
    async def read() -> dict:
        async with aclosing(connection.stream(heartbeat_seconds=0.05)) as stream:
            async for frame in stream:
                if frame.startswith("event: analytics_update\n"):
                    line = next(p for p in frame.splitlines() if p.startswith("data: "))
                    return json.loads(line.removeprefix("data: "))
        raise AssertionError("stream ended without an update")

    async def main() -> dict:
        return await asyncio.wait_for(read(), timeout)

    return asyncio.run(main())


def test_worker_event_reaches_api_webhooks_and_dashboard(
    fake_redis: FakeRedis, receiver, db_session, storage, task_store
):
    user = User(email="relay@example.com")
    db_session.add(user)
    db_session.flush()
    config = WebhookConfig(
        user_id=user.id,
        url="http://hooks.test/receive",
        secret="relay-secret-relay-secret",
        enabled=True,
    )
    config.event_types = ("resume.parse_completed",)
    db_session.add(config)
    db_session.commit()

    # API process
    runtime = build_runtime(
        SessionLocal,
        http_client=receiver.client(),
        policy=FAST_RETRY,
        relay_redis=lambda: fake_redis,
    )
    # Worker process
    worker_bus = EventBus()
    worker_bus.subscribe("*", RedisEventForwarder(lambda: fake_redis, CHANNEL), name="relay")
    worker = ParseWorker(
        task_store,
        storage,
        StubExtractor(),
        worker_bus,
        extractor_timeout=5,
        executor=ThreadPoolExecutor(max_workers=1),
    )
    try:
        assert runtime.relay is not None
        assert runtime.relay.channel == CHANNEL
        assert runtime.relay.wait_subscribed(2)
        connection = runtime.broadcaster.connect()

        storage.put_bytes("resumes/1/r9/cv.pdf", b"%PDF-1.4 resume")
        job = ParseJob(task_id="t-relay", resume_id="r9", storage_key="resumes/1/r9/cv.pdf")
        task_store.put(job.task_id, TaskState.queued(resume_id=job.resume_id))

        assert worker.handle(job).status is TaskStatus.COMPLETED
        assert worker_bus.wait_idle(2)

        notice = _first_update(connection)
        assert notice["eventType"] == "resume.parse_completed"
        assert runtime.wait_idle(5)
    finally:
        worker.shutdown()
        worker_bus.close()
        runtime.close()

    assert len(receiver.requests) == 1
    body = json.loads(receiver.requests[0].content)
    assert body["event_type"] == "resume.parse_completed"
    assert body["data"]["resume_id"] == "r9"
