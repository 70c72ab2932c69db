"""Worker: reclaim stuck webhook deliveries."""
from __future__ import annotations

from datetime import datetime, timedelta

from webhook_delivery.db.pool import get_pool
from webhook_delivery.repositories import WebhookDeliveryRepository
from webhook_delivery.settings import settings


async def webhook_reclaim_stuck(now: datetime) -> str | None:
    """Release deliveries stuck in ``in_progress`` longer than ``webhook_stuck_minutes``."""
    pool = await get_pool()
    cutoff = now - timedelta(minutes=settings.webhook_stuck_minutes)
    reclaimed = await WebhookDeliveryRepository(pool).reclaim_stuck(cutoff, now=now)
    return f"reclaimed={reclaimed}" if reclaimed else None
