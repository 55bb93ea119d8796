from hireflow.pipeline.task_state import (
    InMemoryTaskStateStore,
    RedisTaskStateStore,
    TaskState,
    TaskStateStore,
    TaskStatus,
)
from hireflow.pipeline.worker import ParseJob, ParseWorker

__all__ = [
    "InMemoryTaskStateStore",
    "ParseJob",
    "ParseWorker",
    "RedisTaskStateStore",
    "TaskState",
    "TaskStateStore",
    "TaskStatus",
]
