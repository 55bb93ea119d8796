from __future__ import annotations

import os
import tempfile
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

# Configure the app before it is imported
_TMP_DIR = Path(tempfile.mkdtemp(prefix="hireflow-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'test.db'}"
os.environ["STORAGE_ROOT"] = str(_TMP_DIR / "storage")
os.environ["EVENT_RELAY_ENABLED"] = "false"
os.environ.setdefault("ENV", "local")
os.environ.setdefault("AUTH_MODE", "dev")
os.environ.setdefault("DEV_AUTH_PREFIX", "dev_")
os.environ.setdefault("UPLOAD_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_JSON", "false")

from hireflow.api.deps import (  # noqa: E402
    get_file_storage,
    get_job_enqueuer,
    get_pipeline_runtime,
    get_task_store,
)
from hireflow.audit import AuditRecord, set_audit_sink  # noqa: E402
from hireflow.db import SessionLocal, engine, init_db  # noqa: E402
from hireflow.main import app  # noqa: E402
from hireflow.models import Base  # noqa: E402
from hireflow.pipeline.task_state import InMemoryTaskStateStore  # noqa: E402
from hireflow.pipeline.worker import ParseJob  # noqa: E402
from hireflow.runtime import PipelineRuntime, build_runtime  # noqa: E402
from hireflow.storage.local import LocalStorageAdapter  # noqa: E402
from hireflow.webhooks.dispatcher import RetryPolicy  # noqa: E402

init_db(engine)

FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0.01, multiplier=1.0, max_delay=0.01)


class WebhookReceiver:
    """Scripted endpoint for httpx.MockTransport that records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.statuses: list[int] = []
        self.default_status = 200
        self.raise_error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        status = self.statuses.pop(0) if self.statuses else self.default_status
        return httpx.Response(status, text="ok" if status < 300 else "boom")

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture(autouse=True)
def clean_db():
    # Ensure a clean slate for each test
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def audit_records():
    records: list[AuditRecord] = []
    previous = set_audit_sink(records.append)
    yield records
    set_audit_sink(previous)


@pytest.fixture
def receiver() -> WebhookReceiver:
    return WebhookReceiver()


@pytest.fixture
def runtime(receiver: WebhookReceiver):
    rt = build_runtime(
        SessionLocal,
        http_client=receiver.client(),
        policy=FAST_RETRY,
        failure_threshold=5,
    )
    yield rt
    rt.close()


@pytest.fixture
def task_store() -> InMemoryTaskStateStore:
    return InMemoryTaskStateStore()


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorageAdapter:
    return LocalStorageAdapter(tmp_path / "files", "http://files.test")


@pytest.fixture
def enqueued() -> list[ParseJob]:
    return []


@pytest.fixture
def enqueuer(enqueued: list[ParseJob]) -> Callable[[ParseJob], str]:
    def _enqueue(job: ParseJob) -> str:
        enqueued.append(job)
        return f"celery-{job.task_id}"

    return _enqueue


@pytest.fixture
def client(
    runtime: PipelineRuntime,
    task_store: InMemoryTaskStateStore,
    storage: LocalStorageAdapter,
    enqueuer: Callable[[ParseJob], str],
):
    app.dependency_overrides[get_pipeline_runtime] = lambda: runtime
    app.dependency_overrides[get_task_store] = lambda: task_store
    app.dependency_overrides[get_file_storage] = lambda: storage
    app.dependency_overrides[get_job_enqueuer] = lambda: enqueuer
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
