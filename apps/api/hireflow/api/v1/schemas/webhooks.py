from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from hireflow.models.webhook import DeliveryOutcome


class WebhookCreate(BaseModel):
    url: str = Field(min_length=1, max_length=2048)
    events: list[str] = Field(min_length=1)
    description: str | None = Field(default=None, max_length=500)


class WebhookUpdate(BaseModel):
    url: str | None = Field(default=None, min_length=1, max_length=2048)
    events: list[str] | None = Field(default=None, min_length=1)
    description: str | None = Field(default=None, max_length=500)


class WebhookOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    url: str
    events: list[str] = Field(validation_alias="event_types")
    description: str | None = None
    enabled: bool
    failure_count: int
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    secret_hint: str


class WebhookCreatedOut(WebhookOut):
    secret: str


class WebhookTestOut(BaseModel):
    success: bool
    status_code: int | None = None
    duration_ms: int
    error: str | None = None


class DeliveryLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_id: str
    event_type: str
    outcome: DeliveryOutcome
    attempt: int
    response_status: int | None = None
    error_message: str | None = None
    duration_ms: int
    created_at: datetime


class EventTypeOut(BaseModel):
    code: str
    description: str
