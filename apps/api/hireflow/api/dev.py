from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from hireflow.api.deps import Bus
from hireflow.events.types import EventType, new_event

router = APIRouter(prefix="/dev", tags=["dev"])


class PublishEventIn(BaseModel):
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)


@router.post("/events", status_code=202)
def dev_publish_event(body: PublishEventIn, bus: Bus):
    event_type = EventType.from_code(body.event_type)
    if event_type is None:
        raise HTTPException(
            status_code=422,
            detail={"code": "UNKNOWN_EVENT_TYPE", "message": f"unknown event type {body.event_type}"},
        )

    event = new_event(event_type, body.payload)
    subscribers = bus.publish(event)
    return {"event_id": event.event_id, "event_type": event.type_code, "subscribers": subscribers}
