from __future__ import annotations

import hashlib
import tempfile
import uuid
from pathlib import Path

import structlog
from fastapi import APIRouter, File, HTTPException, UploadFile

from hireflow.api.deps import Bus, Enqueuer, FileStorage, TaskStore
from hireflow.api.errors import http_error_from_service
from hireflow.api.rate_limit import UploadRateLimit
from hireflow.api.v1.schemas.resumes import ResumeUploadOut, TaskStatusOut
from hireflow.auth.deps import CurrentUser
from hireflow.core.config import settings
from hireflow.core.errors import TaskStatusUnavailable, TransientInfraError
from hireflow.events.types import EventType, new_event
from hireflow.pipeline.task_state import TaskState, TaskStatus
from hireflow.pipeline.worker import ParseJob
from hireflow.storage.keys import resume_key, safe_filename

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/resumes", tags=["resumes"])

ALLOWED_MIME_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
ALLOWED_EXTENSIONS = {".pdf", ".doc", ".docx"}


def _validation_error(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=422, detail={"code": code, "message": message})


@router.post("", response_model=ResumeUploadOut, status_code=202, dependencies=[UploadRateLimit])
def upload_resume(
    user: CurrentUser,
    store: TaskStore,
    storage: FileStorage,
    enqueue: Enqueuer,
    bus: Bus,
    file: UploadFile = File(...),
):
    if file.content_type and file.content_type.lower() not in ALLOWED_MIME_TYPES:
        raise _validation_error("INVALID_MIME_TYPE", "only pdf/doc/docx files are allowed")

    filename = safe_filename(file.filename)
    file_ext = Path(filename).suffix.lower()
    if file_ext not in ALLOWED_EXTENSIONS:
        raise _validation_error("INVALID_FILE_EXTENSION", "only .pdf, .doc and .docx are allowed")

    hasher = hashlib.sha256()
    total_size = 0
    max_size = settings.resume_max_upload_bytes
    buffered = tempfile.SpooledTemporaryFile(max_size=8 * 1024 * 1024, mode="w+b")
    try:
        while True:
            chunk = file.file.read(1024 * 1024)
            if not chunk:
                break
            total_size += len(chunk)
            if total_size > max_size:
                raise _validation_error(
                    "FILE_TOO_LARGE",
                    f"file exceeds max size of {max_size} bytes",
                )
            hasher.update(chunk)
            buffered.write(chunk)
    except Exception:
        buffered.close()
        raise
    finally:
        file.file.close()

    if total_size == 0:
        buffered.close()
        raise _validation_error("EMPTY_FILE", "uploaded file is empty")

    buffered.seek(0)
    sha256 = hasher.hexdigest()

    resume_id = str(uuid.uuid4())
    task_id = uuid.uuid4().hex
    key = resume_key(user.id, resume_id, filename)
    log = logger.bind(task_id=task_id, resume_id=resume_id)

    try:
        storage.put_file(key, buffered)
    except Exception as exc:
        log.exception("resume_storage_failed")
        raise HTTPException(
            status_code=500,
            detail={"code": "STORAGE_WRITE_FAILED", "message": "failed to store uploaded file"},
        ) from exc
    finally:
        buffered.close()

    try:
        store.put(task_id, TaskState.queued(resume_id=resume_id))
    except TransientInfraError as exc:
        raise http_error_from_service(exc) from exc

    job = ParseJob(task_id=task_id, resume_id=resume_id, storage_key=key, filename=filename)
    try:
        enqueue(job)
    except Exception as exc:
        log.exception("resume_enqueue_failed")
        try:
            store.put(task_id, TaskState.failed(f"failed to enqueue parse job: {exc}", resume_id=resume_id))
        except TransientInfraError:
            log.warning("resume_enqueue_failure_not_recorded")
        raise HTTPException(
            status_code=500,
            detail={"code": "QUEUE_ERROR", "message": "failed to enqueue parse job"},
        ) from exc

    bus.publish(
        new_event(
            EventType.RESUME_UPLOADED,
            {
                "task_id": task_id,
                "resume_id": resume_id,
                "user_id": str(user.id),
                "filename": filename,
                "size_bytes": total_size,
                "sha256": sha256,
            },
        )
    )
    log.info("resume_upload_accepted", size_bytes=total_size)

    return ResumeUploadOut(
        task_id=task_id,
        resume_id=resume_id,
        status=TaskStatus.QUEUED,
        sha256=sha256,
        size_bytes=total_size,
        file_url=storage.url_for(key),
        message="resume queued for parsing",
    )


@router.get("/tasks/{task_id}", response_model=TaskStatusOut, response_model_exclude_none=True)
def get_task_status(
    task_id: str,
    user: CurrentUser,
    store: TaskStore,
):
    try:
        state = store.get(task_id)
    except TaskStatusUnavailable as exc:
        raise http_error_from_service(exc) from exc

    if state is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "TASK_NOT_FOUND", "message": "task not found or expired"},
        )
    return TaskStatusOut.from_state(task_id, state)
