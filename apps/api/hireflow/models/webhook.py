from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from hireflow.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class DeliveryOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    RETRYING = "RETRYING"


def encode_event_types(event_types: Iterable[str]) -> str:
    """Store subscribed event types as a sorted, comma-separated column."""
    return ",".join(sorted({t.strip() for t in event_types if t.strip()}))


def decode_event_types(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(t for t in raw.split(",") if t)


def secret_hint(secret: str | None) -> str:
    if not secret or len(secret) <= 8:
        return ""
    return f"{secret[:4]}****{secret[-4:]}"


class WebhookConfig(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "webhook_configs"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    events: Mapped[str] = mapped_column(Text, nullable=False, default="")
    secret: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=sa.true(), index=True
    )
    failure_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_failure_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def event_types(self) -> tuple[str, ...]:
        return decode_event_types(self.events)

    @event_types.setter
    def event_types(self, value: Iterable[str]) -> None:
        self.events = encode_event_types(value)

    @property
    def secret_hint(self) -> str:
        return secret_hint(self.secret)

    def subscribes_to(self, event_type: str) -> bool:
        return event_type in self.event_types


class WebhookDeliveryLog(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "webhook_delivery_logs"
    __table_args__ = (
        sa.Index("ix_webhook_delivery_logs_webhook_created", "webhook_id", "created_at"),
    )

    webhook_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("webhook_configs.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[str | None] = mapped_column(Text, nullable=True)

    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    outcome: Mapped[DeliveryOutcome] = mapped_column(
        sa.Enum(DeliveryOutcome, name="webhook_delivery_outcome"),
        nullable=False,
    )
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
