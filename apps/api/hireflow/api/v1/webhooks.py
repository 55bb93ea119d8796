from __future__ import annotations

import uuid

from fastapi import APIRouter, Query, Response

from hireflow.api.deps import Runtime
from hireflow.api.errors import http_error_from_service
from hireflow.api.v1.schemas.webhooks import (
    DeliveryLogOut,
    EventTypeOut,
    WebhookCreate,
    WebhookCreatedOut,
    WebhookOut,
    WebhookTestOut,
    WebhookUpdate,
)
from hireflow.auth.deps import CurrentUser, DBSession
from hireflow.core.errors import ServiceError
from hireflow.events.types import EVENT_DESCRIPTIONS
from hireflow.webhooks import service as webhook_service

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.get("/event-types", response_model=list[EventTypeOut])
def list_event_types():
    return [
        EventTypeOut(code=event_type.value, description=description)
        for event_type, description in EVENT_DESCRIPTIONS.items()
    ]


@router.post("", response_model=WebhookCreatedOut, status_code=201)
def create_webhook(payload: WebhookCreate, user: CurrentUser, db: DBSession):
    try:
        config = webhook_service.create_webhook(db, user, payload)
    except ServiceError as exc:
        raise http_error_from_service(exc) from exc
    # The only response that carries the full secret.
    return WebhookCreatedOut.model_validate(config)


@router.get("", response_model=list[WebhookOut])
def list_webhooks(user: CurrentUser, db: DBSession):
    return webhook_service.list_webhooks(db, user)


@router.get("/{webhook_id}", response_model=WebhookOut)
def get_webhook(webhook_id: uuid.UUID, user: CurrentUser, db: DBSession):
    try:
        return webhook_service.get_webhook(db, user, webhook_id)
    except ServiceError as exc:
        raise http_error_from_service(exc) from exc


@router.patch("/{webhook_id}", response_model=WebhookOut)
def update_webhook(webhook_id: uuid.UUID, patch: WebhookUpdate, user: CurrentUser, db: DBSession):
    try:
        return webhook_service.update_webhook(db, user, webhook_id, patch)
    except ServiceError as exc:
        raise http_error_from_service(exc) from exc


@router.delete("/{webhook_id}", status_code=204)
def delete_webhook(webhook_id: uuid.UUID, user: CurrentUser, db: DBSession):
    try:
        webhook_service.delete_webhook(db, user, webhook_id)
    except ServiceError as exc:
        raise http_error_from_service(exc) from exc
    return Response(status_code=204)


@router.post("/{webhook_id}/enable", response_model=WebhookOut)
def enable_webhook(webhook_id: uuid.UUID, user: CurrentUser, db: DBSession):
    try:
        return webhook_service.set_enabled(db, user, webhook_id, True)
    except ServiceError as exc:
        raise http_error_from_service(exc) from exc


@router.post("/{webhook_id}/disable", response_model=WebhookOut)
def disable_webhook(webhook_id: uuid.UUID, user: CurrentUser, db: DBSession):
    try:
        return webhook_service.set_enabled(db, user, webhook_id, False)
    except ServiceError as exc:
        raise http_error_from_service(exc) from exc


@router.post("/{webhook_id}/test", response_model=WebhookTestOut)
def test_webhook(webhook_id: uuid.UUID, user: CurrentUser, db: DBSession, runtime: Runtime):
    try:
        result = webhook_service.send_test_event(db, user, webhook_id, runtime.dispatcher)
    except ServiceError as exc:
        raise http_error_from_service(exc) from exc
    return WebhookTestOut(
        success=result.ok,
        status_code=result.status_code,
        duration_ms=result.duration_ms,
        error=result.error,
    )


@router.get("/{webhook_id}/deliveries", response_model=list[DeliveryLogOut])
def list_deliveries(
    webhook_id: uuid.UUID,
    user: CurrentUser,
    db: DBSession,
    limit: int = Query(default=webhook_service.DEFAULT_DELIVERY_LIMIT, ge=1, le=200),
):
    try:
        return webhook_service.list_deliveries(db, user, webhook_id, limit=limit)
    except ServiceError as exc:
        raise http_error_from_service(exc) from exc
