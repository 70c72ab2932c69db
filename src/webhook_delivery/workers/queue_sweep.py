"""Worker: dispatch pending and due scheduled deliveries."""
from __future__ import annotations

from datetime import datetime

from webhook_delivery.db.pool import get_pool
from webhook_delivery.repositories import WebhookDeliveryRepository, WebhookSubscriberRepository
from webhook_delivery.webhooks_dispatcher import WebhookDispatcher, get_http_session


async def webhook_queue_sweep(now: datetime) -> str | None:
    """Claim one batch of due deliveries and send them."""
    pool = await get_pool()
    dispatcher = WebhookDispatcher(
        get_http_session(),
        WebhookSubscriberRepository(pool),
        WebhookDeliveryRepository(pool),
    )
    outcomes = await dispatcher.process_due_deliveries(now)
    if not outcomes:
        return None
    return " ".join(f"{status}={count}" for status, count in sorted(outcomes.items()))
