from hireflow.api.v1.schemas.resumes import ResumeUploadOut, TaskStatusOut
from hireflow.api.v1.schemas.webhooks import (
    DeliveryLogOut,
    EventTypeOut,
    WebhookCreate,
    WebhookCreatedOut,
    WebhookOut,
    WebhookTestOut,
    WebhookUpdate,
)

__all__ = [
    "DeliveryLogOut",
    "EventTypeOut",
    "ResumeUploadOut",
    "TaskStatusOut",
    "WebhookCreate",
    "WebhookCreatedOut",
    "WebhookOut",
    "WebhookTestOut",
    "WebhookUpdate",
]
