"""Per-subscriber daily delivery quota."""
from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import structlog

from webhook_delivery.domain.models import Subscriber
from webhook_delivery.repositories.subscribers import WebhookSubscriberRepository

logger = structlog.get_logger(__name__)


def next_reset_boundary(now: datetime, tz: ZoneInfo) -> datetime:
    """First local midnight strictly after ``now``, as an aware UTC datetime."""
    local = now.astimezone(tz)
    midnight = datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=tz)
    return midnight.astimezone(timezone.utc)


class QuotaTracker:
    def __init__(self, subscriber_repository: WebhookSubscriberRepository, tz: ZoneInfo):
        self._subscribers = subscriber_repository
        self._tz = tz

    async def has_capacity(self, subscriber: Subscriber, now: datetime) -> bool:
        """Roll the counter over when the reset boundary has passed, then compare to the limit."""
        if subscriber.daily_limit is None:
            return True
        usage = subscriber.daily_usage
        if subscriber.daily_reset_at is None or now > subscriber.daily_reset_at:
            usage = await self._subscribers.reset_daily_usage_if_due(
                subscriber.id,
                now=now,
                next_reset_at=next_reset_boundary(now, self._tz),
            )
        if usage >= subscriber.daily_limit:
            logger.debug(
                "daily limit reached",
                subscriber_id=str(subscriber.id),
                daily_usage=usage,
                daily_limit=subscriber.daily_limit,
            )
            return False
        return True

    async def consume(self, subscriber: Subscriber) -> bool:
        """Reserve one delivery; False when a concurrent enqueue took the last slot."""
        if subscriber.daily_limit is None:
            return True
        return await self._subscribers.increment_usage_if_under_limit(subscriber.id)
