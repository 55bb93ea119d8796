from __future__ import annotations

import threading
from typing import Any

from celery.utils.log import get_task_logger

from hireflow.core.config import settings
from hireflow.core.errors import TransientInfraError
from hireflow.events.bus import EventBus
from hireflow.events.relay import RedisEventForwarder
from hireflow.pipeline.extractor import create_extractor
from hireflow.pipeline.task_state import RedisTaskStateStore
from hireflow.pipeline.worker import ParseJob, ParseWorker
from hireflow.redis_client import get_redis
from hireflow.storage.factory import get_storage
from hireflow.worker.celery_app import PARSE_RESUME_TASK, celery_app

logger = get_task_logger(__name__)

RETRY_BACKOFF_SECONDS = 5
RETRY_BACKOFF_MAX_SECONDS = 120

_worker: ParseWorker | None = None
_bus: EventBus | None = None
_worker_lock = threading.Lock()


def _worker_bus() -> EventBus:
    """Events raised here are forwarded to the API process when the relay is on."""
    if not settings.event_relay_enabled:
        from hireflow.runtime import get_runtime

        return get_runtime().bus

    bus = EventBus(queue_size=settings.event_bus_queue_size)
    bus.subscribe(
        "*",
        RedisEventForwarder(get_redis, settings.event_relay_channel),
        name="relay",
    )
    return bus


def get_parse_worker() -> ParseWorker:
    global _worker, _bus
    with _worker_lock:
        if _worker is None:
            _bus = _worker_bus()
            _worker = ParseWorker(
                RedisTaskStateStore(get_redis(), ttl_seconds=settings.task_state_ttl_seconds),
                get_storage(),
                create_extractor(),
                _bus,
                extractor_timeout=settings.extractor_timeout_seconds,
            )
        return _worker


def shutdown_parse_worker() -> None:
    global _worker, _bus
    with _worker_lock:
        worker, bus = _worker, _bus
        _worker = _bus = None
    if bus is not None:
        bus.wait_idle()
        if settings.event_relay_enabled:
            bus.close()
    if worker is not None:
        worker.shutdown()


def _retry_countdown(retries: int) -> int:
    return min(RETRY_BACKOFF_SECONDS * (2**retries), RETRY_BACKOFF_MAX_SECONDS)


@celery_app.task(bind=True, name=PARSE_RESUME_TASK, max_retries=None)
def parse_resume(self, message: dict[str, Any]) -> dict[str, Any]:
    job = ParseJob.from_message(message)
    worker = get_parse_worker()
    logger.info("parse_resume received task_id=%s attempt=%s", job.task_id, self.request.retries + 1)

    try:
        state = worker.handle(job)
    except TransientInfraError as exc:
        max_retries = settings.celery_task_max_retries
        if self.request.retries >= max_retries:
            logger.error(
                "parse_resume giving up task_id=%s retries=%s error=%s",
                job.task_id,
                self.request.retries,
                exc.message,
            )
            try:
                state = worker.fail(job, f"gave up after retries: {exc.message}")
            except TransientInfraError:
                # Store still down: leave the message for redelivery.
                raise exc from None
            return {"task_id": job.task_id, "status": state.status.value}

        countdown = _retry_countdown(self.request.retries)
        logger.warning(
            "parse_resume retrying task_id=%s in %ss error=%s", job.task_id, countdown, exc.message
        )
        worker.note_retry(job, self.request.retries + 1, max_retries, countdown, exc.message)
        raise self.retry(exc=exc, countdown=countdown)

    return {"task_id": job.task_id, "status": state.status.value}
