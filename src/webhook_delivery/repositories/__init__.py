from webhook_delivery.repositories.deliveries import WebhookDeliveryRepository
from webhook_delivery.repositories.subscribers import WebhookSubscriberRepository

__all__ = [
    "WebhookDeliveryRepository",
    "WebhookSubscriberRepository",
]
