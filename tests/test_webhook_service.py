"""Test sends, manual retry, delivery logs and statistics."""
from __future__ import annotations

from datetime import timedelta
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from webhook_delivery.core.exceptions import ConflictError, NotFoundError, PayloadValidationError
from webhook_delivery.domain.dto import DeliveryLogFilters
from webhook_delivery.domain.enums import DeliveryStatus, WebhookEventType
from webhook_delivery.services.security import SIGNATURE_HEADER, verify_signature
from webhook_delivery.services.webhooks import WebhookService
from webhook_delivery.webhooks_dispatcher import WebhookDispatcher
from tests.conftest import FIXED_NOW, UNREACHABLE_URL


@pytest.fixture
def service(http_session, subscribers, deliveries) -> WebhookService:
    dispatcher = WebhookDispatcher(
        http_session, subscribers, deliveries, clock=lambda: FIXED_NOW, timeout_s=2.0
    )
    return WebhookService(
        subscribers, deliveries, dispatcher, tz=ZoneInfo("UTC"), clock=lambda: FIXED_NOW
    )


@pytest.mark.asyncio
async def test_test_deliver_sends_sample_payload(service, receiver, subscribers, deliveries):
    sub = subscribers.add(url=receiver.url, secret_key="k")

    outcome = await service.test_deliver(sub.id)

    assert outcome["success"] is True
    assert outcome["response"] == {"status": 200, "data": {"received": True}}
    assert outcome["requestSent"]["url"] == receiver.url
    assert outcome["requestSent"]["payload"]["test"] is True
    headers, raw = receiver.requests[0]
    assert verify_signature(raw, headers[SIGNATURE_HEADER], "k")

    (record,) = deliveries.items.values()
    assert record.status == DeliveryStatus.SUCCESS
    assert record.next_attempt_at is None
    assert (await subscribers.get(sub.id)).daily_usage == 0


@pytest.mark.asyncio
async def test_test_deliver_uses_custom_json_as_submission_data(service, receiver, subscribers):
    sub = subscribers.add(url=receiver.url)

    outcome = await service.test_deliver(sub.id, '{"hello": "world"}')

    assert outcome["success"] is True
    sent = receiver.last_json()
    assert sent["event"] == "SUBMISSION_CREATED"
    assert sent["form"] == {"id": str(sub.form_id)}
    assert sent["submission"]["data"] == {"hello": "world"}
    assert sent["test"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event_type, published",
    [(WebhookEventType.FORM_PUBLISHED, True), (WebhookEventType.FORM_UNPUBLISHED, False)],
)
async def test_test_deliver_form_events_send_form_envelope(
    service, receiver, subscribers, deliveries, event_type, published
):
    sub = subscribers.add(url=receiver.url)

    outcome = await service.test_deliver(sub.id, {"ignored": 1}, event_type=event_type)

    assert outcome["success"] is True
    sent = receiver.last_json()
    assert sent["event"] == event_type.value
    assert sent["form"]["published"] is published
    assert "submission" not in sent
    (record,) = deliveries.items.values()
    assert record.event_type == event_type.value


@pytest.mark.asyncio
async def test_test_deliver_records_submission_updated(service, receiver, subscribers, deliveries):
    sub = subscribers.add(url=receiver.url)

    await service.test_deliver(sub.id, event_type=WebhookEventType.SUBMISSION_UPDATED)

    sent = receiver.last_json()
    assert sent["event"] == "SUBMISSION_UPDATED"
    assert sent["submission"]["data"]["email"] == "test@example.com"
    (record,) = deliveries.items.values()
    assert record.event_type == "SUBMISSION_UPDATED"



@pytest.mark.asyncio
@pytest.mark.parametrize("payload", ["{not json", "[1, 2]"])
async def test_test_deliver_rejects_bad_payload(service, subscribers, payload):
    sub = subscribers.add()
    with pytest.raises(PayloadValidationError):
        await service.test_deliver(sub.id, payload)


@pytest.mark.asyncio
async def test_test_deliver_reports_transport_error(service, subscribers, deliveries):
    sub = subscribers.add(url=UNREACHABLE_URL)

    outcome = await service.test_deliver(sub.id)

    assert outcome["success"] is False
    assert outcome["error"]["message"]
    (record,) = deliveries.items.values()
    assert record.status == DeliveryStatus.FAILED


@pytest.mark.asyncio
async def test_test_deliver_refuses_inactive(service, receiver, subscribers, deliveries):
    sub = subscribers.add(url=receiver.url, active=False)

    outcome = await service.test_deliver(sub.id, is_admin=True)

    assert outcome == {
        "success": False,
        "error": {"message": "Webhook is not active", "status": 400},
    }
    assert receiver.requests == []
    assert deliveries.items == {}


@pytest.mark.asyncio
async def test_test_deliver_requires_approval_for_clients(service, receiver, subscribers):
    sub = subscribers.add(url=receiver.url, admin_approved=None)

    refused = await service.test_deliver(sub.id)
    assert refused["error"]["message"] == "Webhook is not approved by administrator"

    allowed = await service.test_deliver(sub.id, is_admin=True)
    assert allowed["success"] is True


@pytest.mark.asyncio
async def test_retry_delivery_dispatches_immediately(service, receiver, subscribers, deliveries):
    sub = subscribers.add(url=receiver.url)
    delivery = deliveries.add(
        sub.id, status=DeliveryStatus.FAILED, attempt_count=3, next_attempt_at=None
    )

    updated = await service.retry_delivery(sub.id, delivery.id)

    assert updated.status == DeliveryStatus.SUCCESS
    assert updated.attempt_count == 4
    assert len(receiver.requests) == 1


@pytest.mark.asyncio
async def test_retry_delivery_conflicts(service, subscribers, deliveries):
    sub = subscribers.add()
    done = deliveries.add(sub.id, status=DeliveryStatus.SUCCESS, next_attempt_at=None)
    running = deliveries.add(sub.id, status=DeliveryStatus.IN_PROGRESS, locked_at=FIXED_NOW)

    with pytest.raises(ConflictError, match="already succeeded"):
        await service.retry_delivery(sub.id, done.id)
    with pytest.raises(ConflictError, match="already being processed"):
        await service.retry_delivery(sub.id, running.id)


@pytest.mark.asyncio
async def test_retry_delivery_of_other_subscriber_is_not_found(service, subscribers, deliveries):
    owner = subscribers.add()
    other = subscribers.add()
    delivery = deliveries.add(owner.id, status=DeliveryStatus.FAILED)

    with pytest.raises(NotFoundError):
        await service.retry_delivery(other.id, delivery.id)


@pytest.mark.asyncio
async def test_delivery_logs_are_filtered_and_paginated(service, subscribers, deliveries):
    sub = subscribers.add()
    for minutes in range(5):
        deliveries.add(
            sub.id,
            status=DeliveryStatus.SUCCESS,
            request_timestamp=FIXED_NOW - timedelta(minutes=minutes),
        )
    deliveries.add(sub.id, status=DeliveryStatus.FAILED, request_timestamp=FIXED_NOW)

    page, total = await service.get_delivery_logs(
        sub.id, DeliveryLogFilters(status=DeliveryStatus.SUCCESS, limit=2, page=2)
    )

    assert total == 5
    assert [d.request_timestamp for d in page] == [
        FIXED_NOW - timedelta(minutes=2),
        FIXED_NOW - timedelta(minutes=3),
    ]


@pytest.mark.asyncio
async def test_delivery_logs_for_unknown_subscriber(service):
    with pytest.raises(NotFoundError):
        await service.get_delivery_logs(uuid4(), DeliveryLogFilters())


@pytest.mark.asyncio
async def test_delivery_stats(service, subscribers, deliveries):
    sub = subscribers.add()
    today = FIXED_NOW - timedelta(hours=1)
    yesterday = FIXED_NOW - timedelta(days=1)
    for ms in (100, 200, 300):
        deliveries.add(
            sub.id,
            status=DeliveryStatus.SUCCESS,
            request_timestamp=today,
            response_timestamp=today + timedelta(milliseconds=ms),
            response_time_ms=ms,
        )
    deliveries.add(sub.id, status=DeliveryStatus.FAILED, request_timestamp=yesterday)
    deliveries.add(sub.id, status=DeliveryStatus.FAILED, request_timestamp=FIXED_NOW - timedelta(days=30))

    stats = await service.get_delivery_stats(sub.id, days=7)

    assert stats.total_deliveries == 5
    assert stats.overall_stats == {"success": 3, "failed": 2}
    assert stats.success_rate == 60.0
    assert stats.average_response_ms == 200.0
    assert [(d.date, d.status, d.count) for d in stats.daily_stats] == [
        ("2024-05-01", DeliveryStatus.SUCCESS, 3),
        ("2024-04-30", DeliveryStatus.FAILED, 1),
    ]


@pytest.mark.asyncio
async def test_delivery_stats_without_history(service, subscribers):
    sub = subscribers.add()

    stats = await service.get_delivery_stats(sub.id)

    assert stats.total_deliveries == 0
    assert stats.success_rate == 0.0
    assert stats.average_response_ms == 0.0
    assert stats.daily_stats == []
