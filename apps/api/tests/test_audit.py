from __future__ import annotations

import pytest
import structlog
from fastapi.testclient import TestClient

from hireflow.audit import OperationDescriptor, audited, set_audit_sink


class Caller:
    id = "user-7"


@audited(OperationDescriptor("reports", "export", "export a report"))
def export_report(user, fmt: str) -> str:
    if fmt == "bad":
        raise ValueError("unsupported format")
    return f"report.{fmt}"


def test_successful_operation_is_recorded(audit_records):
    structlog.contextvars.bind_contextvars(request_id="req-1")
    try:
        assert export_report(Caller(), "csv") == "report.csv"
    finally:
        structlog.contextvars.clear_contextvars()

    [record] = audit_records
    assert (record.module, record.action, record.status) == ("reports", "export", "success")
    assert record.user_id == "user-7"
    assert record.request_id == "req-1"
    assert record.error is None


def test_failed_operation_is_recorded_and_reraised(audit_records):
    with pytest.raises(ValueError, match="unsupported format"):
        export_report(user=Caller(), fmt="bad")

    [record] = audit_records
    assert record.status == "error"
    assert record.error == "unsupported format"


def test_sink_failure_does_not_break_operation():
    def broken(record):
        raise RuntimeError("audit store down")

    previous = set_audit_sink(broken)
    try:
        assert export_report(Caller(), "pdf") == "report.pdf"
    finally:
        set_audit_sink(previous)


def test_webhook_writes_are_audited(client: TestClient, audit_records):
    headers = {"Authorization": "Bearer dev_auditor@example.com"}
    created = client.post(
        "/v1/webhooks",
        json={"url": "https://hooks.example.com/a", "events": ["candidate.created"]},
        headers=headers,
    ).json()
    client.post(f"/v1/webhooks/{created['id']}/disable", headers=headers)
    client.get("/v1/webhooks", headers=headers)

    actions = [(r.module, r.action, r.status) for r in audit_records]
    assert actions == [("webhook", "create", "success"), ("webhook", "set_enabled", "success")]
    assert all(r.user_id for r in audit_records)
    assert all(r.request_id for r in audit_records)
