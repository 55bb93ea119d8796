from __future__ import annotations

from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown

from hireflow.core.config import settings
from hireflow.core.logging import configure_logging
from hireflow.pipeline.worker import ParseJob

PARSE_RESUME_TASK = "parse_resume"

celery_app = Celery(
    "hireflow",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["hireflow.worker.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Acknowledge only after the task body returns so a crashed worker's job is redelivered.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_routes={PARSE_RESUME_TASK: {"queue": "resume-parse"}},
)


def enqueue_parse_job(job: ParseJob) -> str:
    """Hand a parse job to the queue without importing the task module."""
    result = celery_app.send_task(PARSE_RESUME_TASK, args=[job.to_message()])
    return result.id


@worker_process_init.connect
def _init_worker_process(**_: object) -> None:
    configure_logging()


@worker_process_shutdown.connect
def _shutdown_worker_process(**_: object) -> None:
    from hireflow.runtime import shutdown_runtime
    from hireflow.worker.tasks import shutdown_parse_worker

    shutdown_parse_worker()
    shutdown_runtime()
