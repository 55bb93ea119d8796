from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from hireflow.pipeline.task_state import TaskState, TaskStatus


class ResumeUploadOut(BaseModel):
    task_id: str
    resume_id: str
    status: TaskStatus
    sha256: str
    size_bytes: int
    file_url: str
    message: str


class TaskStatusOut(BaseModel):
    task_id: str
    status: TaskStatus
    progress: int
    message: str
    result: dict[str, Any] | None = None
    error: str | None = None
    resume_id: str | None = None
    updated_at: datetime

    @classmethod
    def from_state(cls, task_id: str, state: TaskState) -> TaskStatusOut:
        return cls(
            task_id=task_id,
            status=state.status,
            progress=state.progress,
            message=state.message,
            result=state.result,
            error=state.error,
            resume_id=state.resume_id,
            updated_at=state.updated_at,
        )
