"""Unit tests for delivery transitions and backoff."""
from __future__ import annotations

import pytest

from webhook_delivery.core.exceptions import InvalidStatusTransitionError
from webhook_delivery.domain.enums import DeliveryStatus
from webhook_delivery.services.state_machine import (
    MAX_BACKOFF_SECONDS,
    backoff_seconds,
    failure_outcome,
    validate_delivery_transition,
)


def test_backoff_uses_post_increment_exponent():
    assert [backoff_seconds(60, n) for n in (1, 2, 3)] == [120, 240, 480]


def test_backoff_is_capped_and_monotonic():
    delays = [backoff_seconds(60, n) for n in range(0, 200)]
    assert delays == sorted(delays)
    assert max(delays) == MAX_BACKOFF_SECONDS
    assert backoff_seconds(60, 11) == MAX_BACKOFF_SECONDS


def test_backoff_custom_cap():
    assert backoff_seconds(10, 5, cap=100) == 100


@pytest.mark.parametrize(
    ("attempt_count", "retry_count", "expected"),
    [
        (1, 3, DeliveryStatus.SCHEDULED),
        (2, 3, DeliveryStatus.SCHEDULED),
        (3, 3, DeliveryStatus.FAILED),
        (1, 0, DeliveryStatus.FAILED),
        (4, 3, DeliveryStatus.FAILED),
    ],
)
def test_failure_outcome(attempt_count, retry_count, expected):
    assert failure_outcome(attempt_count, retry_count) == expected


@pytest.mark.parametrize(
    ("current", "new"),
    [
        (DeliveryStatus.PENDING, DeliveryStatus.IN_PROGRESS),
        (DeliveryStatus.IN_PROGRESS, DeliveryStatus.SUCCESS),
        (DeliveryStatus.IN_PROGRESS, DeliveryStatus.SCHEDULED),
        (DeliveryStatus.IN_PROGRESS, DeliveryStatus.FAILED),
        (DeliveryStatus.FAILED, DeliveryStatus.SCHEDULED),
        (DeliveryStatus.SCHEDULED, DeliveryStatus.SCHEDULED),
    ],
)
def test_allowed_transitions(current, new):
    validate_delivery_transition(current, new)


@pytest.mark.parametrize(
    ("current", "new"),
    [
        (DeliveryStatus.SUCCESS, DeliveryStatus.SCHEDULED),
        (DeliveryStatus.SUCCESS, DeliveryStatus.IN_PROGRESS),
        (DeliveryStatus.PENDING, DeliveryStatus.SUCCESS),
    ],
)
def test_rejected_transitions(current, new):
    with pytest.raises(InvalidStatusTransitionError):
        validate_delivery_transition(current, new)
