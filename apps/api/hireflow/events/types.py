"""Domain event kinds published on the in-process event bus."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any


class EventType(str, Enum):
    RESUME_UPLOADED = "resume.uploaded"
    RESUME_PARSE_COMPLETED = "resume.parse_completed"
    RESUME_PARSE_FAILED = "resume.parse_failed"

    CANDIDATE_CREATED = "candidate.created"
    CANDIDATE_UPDATED = "candidate.updated"

    APPLICATION_SUBMITTED = "application.submitted"
    APPLICATION_STATUS_CHANGED = "application.status_changed"

    INTERVIEW_SCHEDULED = "interview.scheduled"
    INTERVIEW_COMPLETED = "interview.completed"
    INTERVIEW_CANCELLED = "interview.cancelled"

    SYSTEM_ERROR = "system.error"
    SYSTEM_MAINTENANCE = "system.maintenance"

    @classmethod
    def from_code(cls, code: str) -> EventType | None:
        try:
            return cls(code)
        except ValueError:
            return None


# Carried only by the owner-triggered test delivery. Never published on the bus
# and not accepted as a subscription, so it stays out of EventType.
TEST_EVENT_CODE = "webhook.test"
TEST_EVENT_DESCRIPTION = "Webhook connectivity test"

EVENT_DESCRIPTIONS: dict[EventType, str] = {
    EventType.RESUME_UPLOADED: "Resume uploaded",
    EventType.RESUME_PARSE_COMPLETED: "Resume parsed",
    EventType.RESUME_PARSE_FAILED: "Resume parsing failed",
    EventType.CANDIDATE_CREATED: "Candidate created",
    EventType.CANDIDATE_UPDATED: "Candidate updated",
    EventType.APPLICATION_SUBMITTED: "Application submitted",
    EventType.APPLICATION_STATUS_CHANGED: "Application status changed",
    EventType.INTERVIEW_SCHEDULED: "Interview scheduled",
    EventType.INTERVIEW_COMPLETED: "Interview completed",
    EventType.INTERVIEW_CANCELLED: "Interview cancelled",
    EventType.SYSTEM_ERROR: "System error",
    EventType.SYSTEM_MAINTENANCE: "System maintenance",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_event_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class DomainEvent:
    """Immutable notice that something of business significance happened."""

    event_type: EventType
    payload: Mapping[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=_new_event_id)
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        # Freeze the payload so subscribers cannot mutate what others see.
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    @property
    def type_code(self) -> str:
        return self.event_type.value

    @property
    def description(self) -> str:
        return EVENT_DESCRIPTIONS.get(self.event_type, self.event_type.value)


def new_event(event_type: EventType | str, payload: Mapping[str, Any] | None = None) -> DomainEvent:
    return DomainEvent(event_type=EventType(event_type), payload=payload or {})
