from __future__ import annotations

import secrets
from typing import Any
from urllib.parse import urlsplit

from sqlalchemy import select
from sqlalchemy.orm import Session

from hireflow.api.v1.schemas.webhooks import WebhookCreate, WebhookUpdate
from hireflow.audit import OperationDescriptor, audited
from hireflow.core.errors import ConfigurationError, NotFoundError, PermissionDeniedError
from hireflow.events.types import EventType
from hireflow.models import User, WebhookConfig, WebhookDeliveryLog
from hireflow.webhooks.dispatcher import DeliveryResult, WebhookDispatcher
from hireflow.webhooks.repository import WebhookTarget

SECRET_BYTES = 16
DEFAULT_DELIVERY_LIMIT = 50
MAX_DELIVERY_LIMIT = 200


def _validate_url(url: str) -> str:
    url = url.strip()
    parts = urlsplit(url)
    if parts.scheme not in {"http", "https"} or not parts.hostname:
        raise ConfigurationError("INVALID_WEBHOOK_URL", "url must be an absolute http(s) URL")
    return url


def _validate_events(events: list[str]) -> list[str]:
    cleaned = [e.strip() for e in events if e and e.strip()]
    if not cleaned:
        raise ConfigurationError("INVALID_EVENT_TYPES", "at least one event type is required")
    unknown = sorted({e for e in cleaned if EventType.from_code(e) is None})
    if unknown:
        raise ConfigurationError(
            "INVALID_EVENT_TYPES", f"unknown event types: {', '.join(unknown)}"
        )
    return cleaned


def _owned_webhook(db: Session, user: User, webhook_id: Any) -> WebhookConfig:
    config = db.get(WebhookConfig, webhook_id)
    if config is None:
        raise NotFoundError("WEBHOOK_NOT_FOUND", "webhook not found")
    if config.user_id != user.id:
        raise PermissionDeniedError("FORBIDDEN", "not the owner of this webhook")
    return config


@audited(OperationDescriptor("webhook", "create", "create webhook configuration"))
def create_webhook(db: Session, user: User, payload: WebhookCreate) -> WebhookConfig:
    config = WebhookConfig(
        user_id=user.id,
        url=_validate_url(payload.url),
        secret=secrets.token_hex(SECRET_BYTES),
        description=payload.description,
        enabled=True,
        failure_count=0,
    )
    config.event_types = _validate_events(payload.events)
    db.add(config)
    db.commit()
    db.refresh(config)
    return config


def list_webhooks(db: Session, user: User) -> list[WebhookConfig]:
    return list(
        db.scalars(
            select(WebhookConfig)
            .where(WebhookConfig.user_id == user.id)
            .order_by(WebhookConfig.created_at.desc())
        ).all()
    )


def get_webhook(db: Session, user: User, webhook_id: Any) -> WebhookConfig:
    return _owned_webhook(db, user, webhook_id)


@audited(OperationDescriptor("webhook", "update", "update webhook configuration"))
def update_webhook(db: Session, user: User, webhook_id: Any, patch: WebhookUpdate) -> WebhookConfig:
    config = _owned_webhook(db, user, webhook_id)
    patch_data = patch.model_dump(exclude_unset=True)

    if patch_data.get("url") is not None:
        config.url = _validate_url(patch_data["url"])
    if patch_data.get("events") is not None:
        config.event_types = _validate_events(patch_data["events"])
    if "description" in patch_data:
        config.description = patch_data["description"]

    db.commit()
    db.refresh(config)
    return config


@audited(OperationDescriptor("webhook", "delete", "delete webhook configuration"))
def delete_webhook(db: Session, user: User, webhook_id: Any) -> None:
    config = _owned_webhook(db, user, webhook_id)
    db.delete(config)
    db.commit()


@audited(OperationDescriptor("webhook", "set_enabled", "enable or disable webhook"))
def set_enabled(db: Session, user: User, webhook_id: Any, enabled: bool) -> WebhookConfig:
    config = _owned_webhook(db, user, webhook_id)
    if enabled:
        config.failure_count = 0
    config.enabled = enabled
    db.commit()
    db.refresh(config)
    return config


@audited(OperationDescriptor("webhook", "test", "send test event to webhook"))
def send_test_event(
    db: Session, user: User, webhook_id: Any, dispatcher: WebhookDispatcher
) -> DeliveryResult:
    config = _owned_webhook(db, user, webhook_id)
    return dispatcher.send_test(WebhookTarget.from_model(config))


def list_deliveries(
    db: Session, user: User, webhook_id: Any, limit: int = DEFAULT_DELIVERY_LIMIT
) -> list[WebhookDeliveryLog]:
    config = _owned_webhook(db, user, webhook_id)
    limit = max(1, min(limit, MAX_DELIVERY_LIMIT))
    return list(
        db.scalars(
            select(WebhookDeliveryLog)
            .where(WebhookDeliveryLog.webhook_id == config.id)
            .order_by(WebhookDeliveryLog.created_at.desc())
            .limit(limit)
        ).all()
    )
