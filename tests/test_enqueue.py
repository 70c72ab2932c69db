"""Enqueue eligibility gate and event fan-out."""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from webhook_delivery.domain.enums import DeliveryStatus, WebhookEventType
from webhook_delivery.domain.models import WebhookEvent
from webhook_delivery.services.webhooks import WebhookService

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(subscribers, deliveries) -> WebhookService:
    return WebhookService(
        subscribers, deliveries, MagicMock(), tz=ZoneInfo("UTC"), clock=lambda: NOW
    )


def _event(form_id, event_type=WebhookEventType.SUBMISSION_CREATED, **data) -> WebhookEvent:
    return WebhookEvent(
        event_type=event_type,
        form_id=form_id,
        submission_id=uuid4(),
        submission_created_at=NOW,
        submission_status="new",
        data=data,
    )


@pytest.mark.asyncio
async def test_eligible_subscriber_gets_pending_delivery(service, subscribers, deliveries):
    sub = subscribers.add()
    delivery = await service.enqueue(sub, _event(sub.form_id, name="Ann"))

    assert delivery is not None
    assert delivery.status == DeliveryStatus.PENDING
    assert delivery.next_attempt_at == NOW
    assert delivery.attempt_count == 0
    assert delivery.request_body["submission"]["data"] == {"name": "Ann"}
    assert list(deliveries.items) == [delivery.id]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"active": False},
        {"deactivated_by": uuid4()},
        {"admin_approved": None},
        {"admin_approved": False},
        {"event_types": [WebhookEventType.FORM_PUBLISHED]},
    ],
)
async def test_ineligible_subscriber_is_skipped(service, subscribers, deliveries, overrides):
    sub = subscribers.add(**overrides)
    assert await service.enqueue(sub, _event(sub.form_id)) is None
    assert deliveries.items == {}


@pytest.mark.asyncio
async def test_condition_false_is_skipped(service, subscribers, deliveries):
    sub = subscribers.add(
        filter_conditions={"rules": [{"fieldId": "age", "operator": "greaterThan", "value": 18}]}
    )
    assert await service.enqueue(sub, _event(sub.form_id, age=15)) is None
    assert await service.enqueue(sub, _event(sub.form_id, age=30)) is not None
    assert len(deliveries.items) == 1


@pytest.mark.asyncio
async def test_malformed_condition_is_skipped(service, subscribers, deliveries):
    sub = subscribers.add(filter_conditions="{broken")
    assert await service.enqueue(sub, _event(sub.form_id)) is None
    assert deliveries.items == {}


@pytest.mark.asyncio
async def test_daily_limit_counts_only_enqueued(service, subscribers, deliveries):
    sub = subscribers.add(
        daily_limit=2,
        daily_reset_at=datetime(2024, 5, 2, tzinfo=timezone.utc),
        filter_conditions={"rules": [{"fieldId": "ok", "operator": "equals", "value": True}]},
    )

    assert await service.enqueue(sub.id, _event(sub.form_id, ok=False)) is None
    assert await service.enqueue(sub.id, _event(sub.form_id, ok=True)) is not None
    assert await service.enqueue(sub.id, _event(sub.form_id, ok=True)) is not None
    assert await service.enqueue(sub.id, _event(sub.form_id, ok=True)) is None

    assert len(deliveries.items) == 2
    assert (await subscribers.get(sub.id)).daily_usage == 2


@pytest.mark.asyncio
async def test_unknown_subscriber_id_is_skipped(service, deliveries):
    assert await service.enqueue(uuid4(), _event(uuid4())) is None
    assert deliveries.items == {}


@pytest.mark.asyncio
async def test_emit_fans_out_to_eligible_subscribers(service, subscribers, deliveries):
    form_id = uuid4()
    approved = subscribers.add(form_id=form_id)
    subscribers.add(form_id=form_id, admin_approved=None)
    subscribers.add(form_id=form_id, event_types=[WebhookEventType.SUBMISSION_UPDATED])
    subscribers.add()  # other form

    created = await service.emit(_event(form_id))

    assert [d.subscriber_id for d in created] == [approved.id]
    assert len(deliveries.items) == 1
