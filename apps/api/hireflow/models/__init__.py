from hireflow.models.base import Base
from hireflow.models.user import User
from hireflow.models.webhook import WebhookConfig, WebhookDeliveryLog

__all__ = ["Base", "User", "WebhookConfig", "WebhookDeliveryLog"]
