from __future__ import annotations

from collections.abc import Mapping
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Any

import structlog

from hireflow.core.errors import ExtractionFailure, TransientInfraError
from hireflow.events.bus import EventBus
from hireflow.events.types import EventType, new_event
from hireflow.pipeline.extractor import ResumeExtractor, call_with_timeout
from hireflow.pipeline.task_state import TaskState, TaskStateStore
from hireflow.storage.base import StorageAdapter

logger = structlog.get_logger(__name__)

PROGRESS_STARTED = 0
PROGRESS_FILE_LOADED = 30


@dataclass(frozen=True)
class ParseJob:
    task_id: str
    resume_id: str
    storage_key: str
    filename: str | None = None

    def to_message(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_message(cls, message: Mapping[str, Any]) -> ParseJob:
        return cls(
            task_id=str(message["task_id"]),
            resume_id=str(message["resume_id"]),
            storage_key=str(message["storage_key"]),
            filename=message.get("filename"),
        )


def summarize_result(result: Mapping[str, Any]) -> dict[str, Any]:
    """Compact view of an extraction for event payloads."""
    skills = result.get("skills") or []
    return {
        "name": result.get("name"),
        "email": result.get("email"),
        "skill_count": len(skills) if isinstance(skills, list) else 0,
    }


class ParseWorker:
    """Drives one parse task from QUEUED to a terminal state.

    The queue transport owns delivery; this class only guarantees that a
    redelivered job for a finished task is acknowledged without re-running the
    extractor, and that the terminal state is written once.
    """

    def __init__(
        self,
        store: TaskStateStore,
        storage: StorageAdapter,
        extractor: ResumeExtractor,
        bus: EventBus,
        *,
        extractor_timeout: float = 60.0,
        executor: Executor | None = None,
    ) -> None:
        self._store = store
        self._storage = storage
        self._extractor = extractor
        self._bus = bus
        self._extractor_timeout = extractor_timeout
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="extractor"
        )

    def handle(self, job: ParseJob) -> TaskState:
        log = logger.bind(task_id=job.task_id, resume_id=job.resume_id)

        current = self._store.get(job.task_id)
        if current is not None and current.is_terminal:
            log.info("parse_job_skipped_terminal", status=current.status.value)
            return current

        self._store.put(
            job.task_id,
            TaskState.parsing(PROGRESS_STARTED, "parsing started", resume_id=job.resume_id),
        )
        log.info("parse_job_started")

        try:
            data = self._load_resume(job)
            self._store.put(
                job.task_id,
                TaskState.parsing(PROGRESS_FILE_LOADED, "extracting fields", resume_id=job.resume_id),
            )
            fields = call_with_timeout(
                self._executor,
                self._extractor.extract,
                data,
                filename=job.filename,
                timeout=self._extractor_timeout,
            )
        except ExtractionFailure as exc:
            log.warning("parse_job_failed", reason=exc.reason)
            return self._record_failure(job, exc.reason)

        state = TaskState.completed(fields, resume_id=job.resume_id)
        self._store.put(job.task_id, state)
        self._bus.publish(
            new_event(
                EventType.RESUME_PARSE_COMPLETED,
                {
                    "task_id": job.task_id,
                    "resume_id": job.resume_id,
                    "summary": summarize_result(fields),
                },
            )
        )
        log.info("parse_job_completed")
        return state

    def fail(self, job: ParseJob, reason: str) -> TaskState:
        """Record a terminal failure after the transport gave up retrying."""
        current = self._store.get(job.task_id)
        if current is not None and current.is_terminal:
            return current
        logger.error("parse_job_abandoned", task_id=job.task_id, reason=reason)
        return self._record_failure(job, reason)

    def note_retry(
        self, job: ParseJob, retry: int, max_retries: int, countdown: int, reason: str
    ) -> None:
        """Show a polling client that the task is waiting on a retry, not stalled."""
        message = f"retry {retry} of {max_retries} in {countdown}s: {reason}"
        try:
            current = self._store.get(job.task_id)
            if current is not None and current.is_terminal:
                return
            progress = current.progress if current is not None else PROGRESS_STARTED
            self._store.put(
                job.task_id,
                TaskState.parsing(progress, message, resume_id=job.resume_id),
            )
        except TransientInfraError as exc:
            # The retry itself still goes ahead; only the progress note is lost.
            logger.warning("parse_retry_note_failed", task_id=job.task_id, error=exc.message)

    def _record_failure(self, job: ParseJob, reason: str) -> TaskState:
        state = TaskState.failed(reason, resume_id=job.resume_id)
        self._store.put(job.task_id, state)
        self._bus.publish(
            new_event(
                EventType.RESUME_PARSE_FAILED,
                {"task_id": job.task_id, "resume_id": job.resume_id, "error": reason},
            )
        )
        return state

    def _load_resume(self, job: ParseJob) -> bytes:
        try:
            return self._storage.get_bytes(job.storage_key)
        except (FileNotFoundError, ValueError) as exc:
            raise ExtractionFailure(f"resume file unavailable: {job.storage_key}") from exc
        except OSError as exc:
            raise TransientInfraError(f"storage read failed: {exc}") from exc

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
