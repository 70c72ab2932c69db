"""Delivery status transitions and retry backoff."""
from __future__ import annotations

from webhook_delivery.core.exceptions import InvalidStatusTransitionError
from webhook_delivery.domain.enums import DeliveryStatus

MAX_BACKOFF_SECONDS = 86400

DELIVERY_TRANSITIONS: dict[DeliveryStatus, set[DeliveryStatus]] = {
    DeliveryStatus.PENDING: {DeliveryStatus.IN_PROGRESS, DeliveryStatus.FAILED},
    DeliveryStatus.SCHEDULED: {DeliveryStatus.IN_PROGRESS, DeliveryStatus.FAILED},
    DeliveryStatus.IN_PROGRESS: {
        DeliveryStatus.SUCCESS,
        DeliveryStatus.SCHEDULED,
        DeliveryStatus.FAILED,
    },
    # promotion, manual retry
    DeliveryStatus.FAILED: {DeliveryStatus.SCHEDULED, DeliveryStatus.IN_PROGRESS},
    DeliveryStatus.SUCCESS: set(),
}


def validate_delivery_transition(current: DeliveryStatus, new: DeliveryStatus) -> None:
    if current == new:
        return
    allowed = DELIVERY_TRANSITIONS.get(current, set())
    if new not in allowed:
        raise InvalidStatusTransitionError(
            f"Invalid delivery status transition: {current.value} → {new.value}"
        )


def backoff_seconds(
    retry_interval: int, attempt_count: int, *, cap: int = MAX_BACKOFF_SECONDS
) -> int:
    """Delay before the next attempt.

    ``attempt_count`` is the count *after* the failed attempt was recorded, so
    the first retry waits ``retry_interval * 2``.
    """
    if attempt_count >= 64:  # already past any cap
        return cap
    return min(retry_interval * 2**attempt_count, cap)


def failure_outcome(attempt_count: int, retry_count: int) -> DeliveryStatus:
    """Status after a failed attempt; ``attempt_count`` already includes it."""
    if attempt_count >= retry_count:
        return DeliveryStatus.FAILED
    return DeliveryStatus.SCHEDULED
