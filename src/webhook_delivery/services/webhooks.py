"""Webhook delivery service: enqueue, fan-out, test sends, manual retry, logs and stats."""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog

from webhook_delivery.core.exceptions import (
    ConflictError,
    NotFoundError,
    PayloadValidationError,
)
from webhook_delivery.domain.dto import DeliveryLogFilters, DeliveryStats, DeliveryStatsDaily
from webhook_delivery.domain.enums import DeliveryStatus, WebhookEventType
from webhook_delivery.domain.models import Delivery, SendResult, Subscriber, WebhookEvent
from webhook_delivery.repositories.deliveries import WebhookDeliveryRepository
from webhook_delivery.repositories.subscribers import WebhookSubscriberRepository
from webhook_delivery.services.conditions import evaluate_conditions
from webhook_delivery.services.payloads import build_payload, build_test_payload, encode_body
from webhook_delivery.services.quota import QuotaTracker
from webhook_delivery.services.security import build_headers
from webhook_delivery.settings import settings
from webhook_delivery.webhooks_dispatcher import WebhookDispatcher, ineligibility_reason

logger = structlog.get_logger(__name__)

STATS_RESPONSE_SAMPLE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _decode_response(body: str | None) -> Any:
    if not body:
        return body
    try:
        return json.loads(body)
    except ValueError:
        return body


class WebhookService:
    def __init__(
        self,
        subscriber_repository: WebhookSubscriberRepository,
        delivery_repository: WebhookDeliveryRepository,
        dispatcher: WebhookDispatcher,
        *,
        tz: ZoneInfo | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._subscribers = subscriber_repository
        self._deliveries = delivery_repository
        self._dispatcher = dispatcher
        self._tz = tz or ZoneInfo(settings.timezone)
        self._quota = QuotaTracker(subscriber_repository, self._tz)
        self._clock = clock

    async def enqueue(
        self,
        subscriber: Subscriber | UUID,
        event: WebhookEvent,
        now: datetime | None = None,
    ) -> Delivery | None:
        """Create a PENDING delivery if the subscriber is eligible, else return None.

        Ineligibility is never an error; every skip is logged at debug level.
        """
        if isinstance(subscriber, UUID):
            try:
                subscriber = await self._subscribers.get(subscriber)
            except NotFoundError:
                logger.debug("webhook skipped", subscriber_id=str(subscriber), reason="not found")
                return None
        now = now or self._clock()
        log = logger.bind(subscriber_id=str(subscriber.id), event_type=event.event_type.value)

        reason = ineligibility_reason(subscriber)
        if reason is not None:
            log.debug("webhook skipped", reason=reason)
            return None
        if not await self._quota.has_capacity(subscriber, now):
            log.debug("webhook skipped", reason="daily limit reached")
            return None
        if event.event_type not in subscriber.event_types:
            log.debug("webhook skipped", reason="event type not subscribed")
            return None
        if not evaluate_conditions(subscriber.filter_conditions, event.data):
            log.debug("webhook skipped", reason="filter conditions not met")
            return None
        if not await self._quota.consume(subscriber):
            log.debug("webhook skipped", reason="daily limit reached")
            return None

        delivery = await self._deliveries.enqueue(
            subscriber_id=subscriber.id,
            submission_id=event.submission_id,
            event_type=event.event_type.value,
            request_body=build_payload(subscriber, event, now),
            now=now,
        )
        log.info("delivery enqueued", delivery_id=str(delivery.id))
        return delivery

    async def emit(self, event: WebhookEvent) -> List[Delivery]:
        """Fan an event out to every subscriber of its form that listens for it."""
        now = self._clock()
        subscribers = await self._subscribers.list_for_event(event.form_id, event.event_type)
        deliveries: List[Delivery] = []
        for subscriber in subscribers:
            delivery = await self.enqueue(subscriber, event, now)
            if delivery is not None:
                deliveries.append(delivery)
        logger.info(
            "event emitted",
            form_id=str(event.form_id),
            event_type=event.event_type.value,
            subscribers=len(subscribers),
            enqueued=len(deliveries),
        )
        return deliveries

    async def test_deliver(
        self,
        subscriber_id: UUID,
        payload: str | dict[str, Any] | None = None,
        *,
        event_type: WebhookEventType = WebhookEventType.SUBMISSION_CREATED,
        is_admin: bool = False,
    ) -> dict[str, Any]:
        """Send one out-of-band request right now and report what happened.

        The body is the sample ``event_type`` envelope; a custom ``payload``
        becomes its submission data. The attempt is logged as a terminal
        delivery record but does not count against the daily quota.
        """
        subscriber = await self._subscribers.get(subscriber_id)
        if not subscriber.active:
            return _test_refused("Webhook is not active")
        if not is_admin and subscriber.admin_approved is not True:
            return _test_refused("Webhook is not approved by administrator")

        now = self._clock()
        body_payload = build_test_payload(
            subscriber, now, event_type, data=_parse_test_data(payload)
        )
        body = encode_body(body_payload)
        headers = build_headers(subscriber, body, user_agent=settings.webhook_user_agent)
        request_sent = {"url": subscriber.url, "headers": headers, "payload": body_payload}

        blocked = await self._dispatcher.blocked_target_reason(subscriber)
        if blocked is not None:
            result = SendResult(success=False, error_message=blocked, requested_at=now)
        else:
            result = await self._dispatcher.send(subscriber.url, body, headers)

        await self._deliveries.record_completed(
            subscriber_id=subscriber.id,
            event_type=event_type.value,
            request_body=body_payload,
            result=result,
        )
        logger.info(
            "test delivery sent",
            subscriber_id=str(subscriber.id),
            event_type=event_type.value,
            success=result.success,
            status_code=result.status_code,
        )

        outcome: dict[str, Any] = {"success": result.success, "requestSent": request_sent}
        if result.success:
            outcome["response"] = {
                "status": result.status_code,
                "data": _decode_response(result.response_body),
            }
        else:
            outcome["error"] = {
                "message": result.error_message,
                "status": result.status_code,
                "data": _decode_response(result.response_body),
            }
        return outcome

    async def retry_delivery(self, subscriber_id: UUID, delivery_id: UUID) -> Delivery:
        """Dispatch one delivery right now, outside the queue."""
        delivery = await self._deliveries.get(delivery_id, subscriber_id=subscriber_id)
        if delivery.status == DeliveryStatus.SUCCESS:
            raise ConflictError("Delivery already succeeded")
        claimed = await self._deliveries.claim_one(delivery_id, now=self._clock())
        if claimed is None:
            raise ConflictError("Delivery is already being processed")
        subscriber = await self._subscribers.get(subscriber_id)
        outcome = await self._dispatcher.dispatch(claimed, subscriber)
        logger.info(
            "manual retry finished",
            delivery_id=str(delivery_id),
            outcome=outcome.value,
        )
        return await self._deliveries.get(delivery_id)

    async def get_delivery_logs(
        self, subscriber_id: UUID, filters: DeliveryLogFilters
    ) -> tuple[List[Delivery], int]:
        await self._subscribers.get(subscriber_id)
        return await self._deliveries.list_by_subscriber(subscriber_id, filters)

    async def get_delivery_log(self, subscriber_id: UUID, delivery_id: UUID) -> Delivery:
        return await self._deliveries.get(delivery_id, subscriber_id=subscriber_id)

    async def get_delivery_stats(self, subscriber_id: UUID, days: int = 7) -> DeliveryStats:
        await self._subscribers.get(subscriber_id)
        since = self._clock() - timedelta(days=days)
        daily = await self._deliveries.daily_status_counts(
            subscriber_id, since=since, tz=self._tz.key
        )
        overall = await self._deliveries.status_counts(subscriber_id)
        total = sum(overall.values())
        succeeded = overall.get(DeliveryStatus.SUCCESS.value, 0)
        success_rate = round(succeeded / total * 100, 2) if total else 0.0
        average = await self._deliveries.average_response_ms(
            subscriber_id, sample=STATS_RESPONSE_SAMPLE
        )
        return DeliveryStats(
            subscriber_id=subscriber_id,
            days=days,
            daily_stats=[
                DeliveryStatsDaily(date=day, status=DeliveryStatus(status), count=count)
                for day, status, count in daily
            ],
            overall_stats=overall,
            total_deliveries=total,
            success_rate=success_rate,
            average_response_ms=round(average, 2),
        )


def _test_refused(message: str) -> dict[str, Any]:
    return {"success": False, "error": {"message": message, "status": 400}}


def _parse_test_data(payload: str | dict[str, Any] | None) -> dict[str, Any] | None:
    if payload is None or payload == "":
        return None
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError as exc:
            raise PayloadValidationError(f"Invalid JSON payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise PayloadValidationError("Test payload must be a JSON object")
    return payload
