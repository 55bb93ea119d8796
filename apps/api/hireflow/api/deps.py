from __future__ import annotations

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Request

from hireflow.core.config import settings
from hireflow.events.bus import EventBus
from hireflow.pipeline.task_state import RedisTaskStateStore, TaskStateStore
from hireflow.pipeline.worker import ParseJob
from hireflow.redis_client import get_redis
from hireflow.runtime import PipelineRuntime, get_runtime
from hireflow.storage.base import StorageAdapter
from hireflow.storage.factory import get_storage

JobEnqueuer = Callable[[ParseJob], str]


def get_pipeline_runtime(request: Request) -> PipelineRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    return runtime if runtime is not None else get_runtime()


def get_event_bus(runtime: Annotated[PipelineRuntime, Depends(get_pipeline_runtime)]) -> EventBus:
    return runtime.bus


def get_task_store() -> TaskStateStore:
    return RedisTaskStateStore(get_redis(), ttl_seconds=settings.task_state_ttl_seconds)


def get_job_enqueuer() -> JobEnqueuer:
    from hireflow.worker.celery_app import enqueue_parse_job

    return enqueue_parse_job


def get_file_storage() -> StorageAdapter:
    return get_storage()


Runtime = Annotated[PipelineRuntime, Depends(get_pipeline_runtime)]
Bus = Annotated[EventBus, Depends(get_event_bus)]
TaskStore = Annotated[TaskStateStore, Depends(get_task_store)]
Enqueuer = Annotated[JobEnqueuer, Depends(get_job_enqueuer)]
FileStorage = Annotated[StorageAdapter, Depends(get_file_storage)]
