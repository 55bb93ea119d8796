from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from hireflow.models.base import utcnow
from hireflow.models.webhook import DeliveryOutcome, WebhookConfig, WebhookDeliveryLog

RESPONSE_BODY_LIMIT = 2000


@dataclass(frozen=True)
class WebhookTarget:
    """Detached view of a webhook config, safe to pass between threads."""

    id: uuid.UUID
    url: str
    secret: str
    enabled: bool
    failure_count: int
    event_types: tuple[str, ...]

    @classmethod
    def from_model(cls, config: WebhookConfig) -> WebhookTarget:
        return cls(
            id=config.id,
            url=config.url,
            secret=config.secret,
            enabled=config.enabled,
            failure_count=config.failure_count,
            event_types=config.event_types,
        )


@dataclass(frozen=True)
class DeliveryRecord:
    event_id: str
    event_type: str
    payload: str | None
    attempt: int
    duration_ms: int
    response_status: int | None = None
    response_body: str | None = None
    error_message: str | None = None


def _log_from_record(
    webhook_id: uuid.UUID, record: DeliveryRecord, outcome: DeliveryOutcome
) -> WebhookDeliveryLog:
    body = record.response_body
    if body is not None and len(body) > RESPONSE_BODY_LIMIT:
        body = body[:RESPONSE_BODY_LIMIT]
    return WebhookDeliveryLog(
        webhook_id=webhook_id,
        event_id=record.event_id,
        event_type=record.event_type,
        payload=record.payload,
        response_status=record.response_status,
        response_body=body,
        error_message=record.error_message,
        outcome=outcome,
        attempt=record.attempt,
        duration_ms=record.duration_ms,
    )


class SqlWebhookRepository:
    """Bookkeeping used by the dispatcher. One short transaction per call."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get(self, webhook_id: uuid.UUID) -> WebhookTarget | None:
        with self._session_factory() as db:
            config = db.get(WebhookConfig, webhook_id)
            return WebhookTarget.from_model(config) if config else None

    def list_subscribed(self, event_type: str) -> list[WebhookTarget]:
        with self._session_factory() as db:
            configs = db.scalars(
                select(WebhookConfig)
                .where(WebhookConfig.enabled.is_(True))
                .order_by(WebhookConfig.created_at)
            ).all()
            return [WebhookTarget.from_model(c) for c in configs if c.subscribes_to(event_type)]

    def record_success(self, webhook_id: uuid.UUID, record: DeliveryRecord) -> WebhookTarget | None:
        with self._session_factory() as db:
            config = db.get(WebhookConfig, webhook_id, with_for_update=True)
            if config is None:
                return None
            config.failure_count = 0
            config.last_success_at = utcnow()
            db.add(_log_from_record(webhook_id, record, DeliveryOutcome.SUCCESS))
            db.commit()
            return WebhookTarget.from_model(config)

    def record_failure(
        self,
        webhook_id: uuid.UUID,
        record: DeliveryRecord,
        failure_threshold: int,
    ) -> tuple[WebhookTarget | None, bool]:
        """Count a failed attempt. Returns the updated target and whether it was just disabled."""
        with self._session_factory() as db:
            config = db.get(WebhookConfig, webhook_id, with_for_update=True)
            if config is None:
                return None, False
            config.failure_count = (config.failure_count or 0) + 1
            config.last_failure_at = utcnow()
            just_disabled = config.enabled and config.failure_count >= failure_threshold
            if just_disabled:
                config.enabled = False
            db.add(_log_from_record(webhook_id, record, DeliveryOutcome.FAILED))
            db.commit()
            return WebhookTarget.from_model(config), just_disabled
