from hireflow.webhooks.dispatcher import DeliveryResult, RetryPolicy, WebhookDispatcher
from hireflow.webhooks.repository import SqlWebhookRepository, WebhookTarget

__all__ = [
    "DeliveryResult",
    "RetryPolicy",
    "SqlWebhookRepository",
    "WebhookDispatcher",
    "WebhookTarget",
]
