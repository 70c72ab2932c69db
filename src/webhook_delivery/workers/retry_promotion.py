"""Worker: requeue failed deliveries that are due again."""
from __future__ import annotations

from datetime import datetime

from webhook_delivery.db.pool import get_pool
from webhook_delivery.repositories import WebhookDeliveryRepository, WebhookSubscriberRepository
from webhook_delivery.webhooks_dispatcher import WebhookDispatcher, get_http_session


async def webhook_retry_promotion(now: datetime) -> str | None:
    pool = await get_pool()
    dispatcher = WebhookDispatcher(
        get_http_session(),
        WebhookSubscriberRepository(pool),
        WebhookDeliveryRepository(pool),
    )
    counts = await dispatcher.promote_retries(now)
    if not any(counts.values()):
        return None
    return f"promoted={counts['promoted']} finalized={counts['finalized']}"
