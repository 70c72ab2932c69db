"""Worker: purge delivery logs past the retention horizon."""
from __future__ import annotations

from datetime import datetime, timedelta

import structlog

from webhook_delivery.db.pool import get_pool
from webhook_delivery.repositories import WebhookDeliveryRepository
from webhook_delivery.settings import settings

logger = structlog.get_logger(__name__)


async def cleanup(older_than: datetime) -> int:
    """Delete deliveries requested before ``older_than``; returns the number removed."""
    pool = await get_pool()
    removed = await WebhookDeliveryRepository(pool).delete_older_than(older_than)
    logger.info("delivery logs purged", removed=removed, older_than=older_than.isoformat())
    return removed


async def webhook_cleanup(now: datetime) -> str | None:
    """Delete deliveries older than ``webhook_retention_days``."""
    removed = await cleanup(now - timedelta(days=settings.webhook_retention_days))
    return f"removed={removed}"
