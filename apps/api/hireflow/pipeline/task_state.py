"""Durable, TTL-bound progress records for resume parse tasks.

A record is always written whole. Every write resets its expiry to the
retention window, so a record that disappears after having been observed
QUEUED or PARSING has expired rather than never existed.
"""

from __future__ import annotations

import json
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from redis import Redis
from redis.exceptions import RedisError

from hireflow.core.errors import TaskStatusUnavailable, TransientInfraError

logger = structlog.get_logger(__name__)

TASK_KEY_PREFIX = "task:resume:"
DEFAULT_TTL_SECONDS = 24 * 60 * 60


class TaskStatus(str, Enum):
    QUEUED = "QUEUED"
    PARSING = "PARSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TaskState:
    status: TaskStatus
    progress: int = 0
    message: str = ""
    result: dict[str, Any] | None = None
    error: str | None = None
    resume_id: str | None = None
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not 0 <= self.progress <= 100:
            raise ValueError(f"progress must be within 0..100, got {self.progress}")
        if self.result is not None and self.status is not TaskStatus.COMPLETED:
            raise ValueError("result is only allowed on COMPLETED tasks")
        if self.error is not None and self.status is not TaskStatus.FAILED:
            raise ValueError("error is only allowed on FAILED tasks")

    @classmethod
    def queued(cls, resume_id: str | None = None) -> TaskState:
        return cls(TaskStatus.QUEUED, 0, "queued for parsing", resume_id=resume_id)

    @classmethod
    def parsing(cls, progress: int, message: str, resume_id: str | None = None) -> TaskState:
        return cls(TaskStatus.PARSING, progress, message, resume_id=resume_id)

    @classmethod
    def completed(cls, result: dict[str, Any], resume_id: str | None = None) -> TaskState:
        return cls(TaskStatus.COMPLETED, 100, "parsing completed", result=result, resume_id=resume_id)

    @classmethod
    def failed(cls, error: str, resume_id: str | None = None) -> TaskState:
        return cls(TaskStatus.FAILED, 0, "parsing failed", error=error, resume_id=resume_id)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


def encode_task_state(state: TaskState) -> str:
    doc: dict[str, Any] = {
        "status": state.status.value,
        "progress": state.progress,
        "message": state.message,
        "resume_id": state.resume_id,
        "updated_at": state.updated_at.isoformat(),
    }
    if state.result is not None:
        doc["result"] = state.result
    if state.error is not None:
        doc["error"] = state.error
    return json.dumps(doc, separators=(",", ":"), ensure_ascii=False)


def decode_task_state(raw: str | bytes) -> TaskState:
    doc = json.loads(raw)
    result = doc.get("result")
    if result is not None and not isinstance(result, dict):
        raise ValueError("task result must be an object")
    return TaskState(
        status=TaskStatus(doc["status"]),
        progress=int(doc.get("progress", 0)),
        message=str(doc.get("message") or ""),
        result=result,
        error=doc.get("error"),
        resume_id=doc.get("resume_id"),
        updated_at=datetime.fromisoformat(doc["updated_at"]) if doc.get("updated_at") else _utcnow(),
    )


class TaskStateStore(ABC):
    @abstractmethod
    def put(self, task_id: str, state: TaskState) -> None:
        """Overwrite the record and reset its expiry. Raises TransientInfraError."""

    @abstractmethod
    def get(self, task_id: str) -> TaskState | None:
        """Return the current record, or None. Raises TaskStatusUnavailable."""


class RedisTaskStateStore(TaskStateStore):
    def __init__(
        self,
        redis: Redis,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        key_prefix: str = TASK_KEY_PREFIX,
    ) -> None:
        self._redis = redis
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix

    def key_for(self, task_id: str) -> str:
        return f"{self._key_prefix}{task_id}"

    def put(self, task_id: str, state: TaskState) -> None:
        key = self.key_for(task_id)
        try:
            self._redis.set(key, encode_task_state(state), ex=self._ttl_seconds)
        except RedisError as exc:
            logger.error("task_state_write_failed", task_id=task_id, status=state.status.value)
            raise TransientInfraError(f"task state store unavailable: {exc}") from exc
        logger.info(
            "task_state_updated",
            task_id=task_id,
            status=state.status.value,
            progress=state.progress,
        )

    def get(self, task_id: str) -> TaskState | None:
        key = self.key_for(task_id)
        try:
            raw = self._redis.get(key)
        except RedisError as exc:
            logger.warning("task_state_read_failed", task_id=task_id, error=str(exc))
            raise TaskStatusUnavailable() from exc
        if raw is None:
            return None
        try:
            return decode_task_state(raw)
        except (ValueError, KeyError) as exc:
            logger.error("task_state_corrupt", task_id=task_id, error=str(exc))
            raise TaskStatusUnavailable("task status record is unreadable") from exc


class InMemoryTaskStateStore(TaskStateStore):
    """Process-local store with the same expiry semantics, for local runs and tests."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._records: dict[str, tuple[str, float]] = {}

    def put(self, task_id: str, state: TaskState) -> None:
        expires_at = self._clock() + self._ttl_seconds
        with self._lock:
            self._records[task_id] = (encode_task_state(state), expires_at)

    def get(self, task_id: str) -> TaskState | None:
        with self._lock:
            record = self._records.get(task_id)
            if record is None:
                return None
            raw, expires_at = record
            if self._clock() >= expires_at:
                del self._records[task_id]
                return None
        return decode_task_state(raw)
