from __future__ import annotations

import uuid

from fastapi.testclient import TestClient
from sqlalchemy import select

from hireflow.models import WebhookConfig, WebhookDeliveryLog
from hireflow.webhooks.signing import verify


def _auth_headers(email: str = "owner@example.com") -> dict[str, str]:
    return {"Authorization": f"Bearer dev_{email}"}


def _create(client: TestClient, email: str = "owner@example.com", **overrides):
    payload = {
        "url": "https://hooks.example.com/hireflow",
        "events": ["resume.parse_completed", "interview.scheduled"],
        "description": "ATS sync",
    }
    payload.update(overrides)
    return client.post("/v1/webhooks", json=payload, headers=_auth_headers(email))


def test_create_returns_secret_once(client: TestClient):
    resp = _create(client)
    assert resp.status_code == 201
    created = resp.json()
    assert len(created["secret"]) == 32
    assert created["enabled"] is True
    assert created["failure_count"] == 0
    assert sorted(created["events"]) == ["interview.scheduled", "resume.parse_completed"]
    assert created["secret_hint"] == f"{created['secret'][:4]}****{created['secret'][-4:]}"

    fetched = client.get(f"/v1/webhooks/{created['id']}", headers=_auth_headers()).json()
    assert "secret" not in fetched
    assert fetched["secret_hint"] == created["secret_hint"]

    listed = client.get("/v1/webhooks", headers=_auth_headers()).json()
    assert [w["id"] for w in listed] == [created["id"]]
    assert "secret" not in listed[0]


def test_create_rejects_bad_url_and_unknown_events(client: TestClient):
    bad_url = _create(client, url="ftp://hooks.example.com/x")
    assert bad_url.status_code == 422
    assert bad_url.json()["detail"]["code"] == "INVALID_WEBHOOK_URL"

    bad_event = _create(client, events=["resume.parse_completed", "payroll.run"])
    assert bad_event.status_code == 422
    assert bad_event.json()["detail"]["code"] == "INVALID_EVENT_TYPES"
    assert "payroll.run" in bad_event.json()["detail"]["message"]


def test_other_users_cannot_touch_webhook(client: TestClient):
    webhook_id = _create(client).json()["id"]
    other = _auth_headers("intruder@example.com")

    assert client.get(f"/v1/webhooks/{webhook_id}", headers=other).status_code == 403
    assert client.delete(f"/v1/webhooks/{webhook_id}", headers=other).status_code == 403
    assert client.get("/v1/webhooks", headers=other).json() == []


def test_missing_webhook_is_404(client: TestClient):
    resp = client.get(f"/v1/webhooks/{uuid.uuid4()}", headers=_auth_headers())
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "WEBHOOK_NOT_FOUND"


def test_update_and_delete(client: TestClient, db_session):
    webhook_id = _create(client).json()["id"]

    patched = client.patch(
        f"/v1/webhooks/{webhook_id}",
        json={"events": ["candidate.created"], "description": None},
        headers=_auth_headers(),
    )
    assert patched.status_code == 200
    assert patched.json()["events"] == ["candidate.created"]
    assert patched.json()["description"] is None
    assert patched.json()["url"] == "https://hooks.example.com/hireflow"

    assert client.delete(f"/v1/webhooks/{webhook_id}", headers=_auth_headers()).status_code == 204
    assert db_session.get(WebhookConfig, uuid.UUID(webhook_id)) is None


def test_reenable_resets_failure_count(client: TestClient, db_session):
    webhook_id = _create(client).json()["id"]
    config = db_session.get(WebhookConfig, uuid.UUID(webhook_id))
    config.enabled = False
    config.failure_count = 5
    db_session.commit()

    disabled = client.post(f"/v1/webhooks/{webhook_id}/disable", headers=_auth_headers()).json()
    assert disabled["enabled"] is False
    assert disabled["failure_count"] == 5

    enabled = client.post(f"/v1/webhooks/{webhook_id}/enable", headers=_auth_headers()).json()
    assert enabled["enabled"] is True
    assert enabled["failure_count"] == 0


def test_test_endpoint_sends_signed_test_event(client: TestClient, receiver, db_session):
    created = _create(client).json()

    resp = client.post(f"/v1/webhooks/{created['id']}/test", headers=_auth_headers())

    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["status_code"] == 200
    request = receiver.requests[-1]
    assert request.headers["X-Webhook-Test"] == "true"
    assert verify(request.content, created["secret"])
    logs = db_session.scalars(select(WebhookDeliveryLog)).all()
    assert logs == []


def test_published_event_is_delivered_and_listed(client: TestClient, receiver, runtime):
    created = _create(client, events=["interview.scheduled"]).json()

    resp = client.post(
        "/dev/events",
        json={"event_type": "interview.scheduled", "payload": {"interview_id": 42}},
    )
    assert resp.status_code == 202
    assert runtime.wait_idle(5)

    assert len(receiver.requests) == 1
    assert verify(receiver.requests[0].content, created["secret"])

    deliveries = client.get(
        f"/v1/webhooks/{created['id']}/deliveries", headers=_auth_headers()
    ).json()
    assert len(deliveries) == 1
    assert deliveries[0]["outcome"] == "SUCCESS"
    assert deliveries[0]["event_type"] == "interview.scheduled"
    assert deliveries[0]["event_id"] == resp.json()["event_id"]


def test_dev_events_rejects_unknown_type(client: TestClient):
    resp = client.post("/dev/events", json={"event_type": "nope"})
    assert resp.status_code == 422


def test_event_type_catalog(client: TestClient):
    catalog = client.get("/v1/webhooks/event-types").json()
    codes = {item["code"] for item in catalog}
    assert {"resume.uploaded", "resume.parse_completed", "interview.cancelled"} <= codes
    assert len(codes) == 12


def test_dashboard_connection_count(client: TestClient, runtime):
    runtime.broadcaster.connect()
    resp = client.get("/v1/dashboard/connections", headers=_auth_headers())
    assert resp.json() == {"active": 1}
