"""Webhook dispatcher: claims due deliveries, POSTs them and records outcomes."""
from __future__ import annotations

import asyncio
import socket
from collections import Counter
from datetime import datetime, timedelta, timezone
from ipaddress import ip_address
from typing import Any, Callable
from urllib.parse import urlsplit

import structlog
from aiohttp import ClientError, ClientSession, ClientTimeout

from webhook_delivery.domain.enums import DeliveryStatus
from webhook_delivery.domain.models import Delivery, SendResult, Subscriber
from webhook_delivery.repositories.deliveries import WebhookDeliveryRepository
from webhook_delivery.repositories.subscribers import WebhookSubscriberRepository
from webhook_delivery.services.payloads import encode_body
from webhook_delivery.services.security import build_headers, is_ip_allowed
from webhook_delivery.services.state_machine import (
    backoff_seconds,
    failure_outcome,
    validate_delivery_transition,
)
from webhook_delivery.settings import settings

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

_session: ClientSession | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def start_http_session(_app: Any = None) -> None:
    """Create the shared outbound HTTP session."""
    global _session
    if _session is None:
        _session = ClientSession(
            timeout=ClientTimeout(total=settings.webhook_request_timeout_seconds)
        )


async def close_http_session(_app: Any = None) -> None:
    global _session
    if _session is not None:
        await _session.close()
        _session = None


def get_http_session() -> ClientSession:
    if _session is None:
        raise RuntimeError("HTTP session not initialized. Call start_http_session() first.")
    return _session


def ineligibility_reason(subscriber: Subscriber | None) -> str | None:
    """Why ``subscriber`` may not receive deliveries right now, or None."""
    if subscriber is None:
        return "Webhook no longer exists"
    if not subscriber.active:
        return "Webhook is currently inactive"
    if subscriber.deactivated_by is not None:
        return "Webhook has been deactivated by administrator"
    if subscriber.admin_approved is not True:
        if subscriber.admin_approved is False:
            return "Webhook has been rejected by administrator"
        return "Webhook is pending administrator approval"
    return None


class WebhookDispatcher:
    """Turns one delivery record into one HTTP attempt and classifies the outcome."""

    def __init__(
        self,
        session: ClientSession,
        subscriber_repository: WebhookSubscriberRepository,
        delivery_repository: WebhookDeliveryRepository,
        *,
        clock: Clock = _utcnow,
        timeout_s: float | None = None,
        max_concurrency: int | None = None,
        batch_size: int | None = None,
        fail_on_error_status: bool | None = None,
    ):
        self._session = session
        self._subscribers = subscriber_repository
        self._deliveries = delivery_repository
        self._clock = clock
        self._timeout_s = timeout_s or settings.webhook_request_timeout_seconds
        self._max_concurrency = max_concurrency or settings.webhook_dispatch_max_concurrency
        self._batch_size = batch_size or settings.webhook_batch_size
        self._fail_on_error_status = (
            settings.webhook_fail_on_error_status
            if fail_on_error_status is None
            else fail_on_error_status
        )

    async def send(self, url: str, body: bytes, headers: dict[str, str]) -> SendResult:
        """POST ``body``; only transport errors count as failure unless configured otherwise."""
        requested_at = self._clock()
        try:
            async with self._session.post(
                url,
                data=body,
                headers=headers,
                timeout=ClientTimeout(total=self._timeout_s),
            ) as resp:
                text = await resp.text(errors="replace")
                responded_at = self._clock()
                success = not (self._fail_on_error_status and resp.status >= 400)
                return SendResult(
                    success=success,
                    status_code=resp.status,
                    response_body=text[: settings.webhook_response_body_max_chars],
                    error_message=None if success else f"HTTP {resp.status}",
                    requested_at=requested_at,
                    responded_at=responded_at,
                )
        except asyncio.TimeoutError:
            return SendResult(
                success=False,
                error_message=f"Request timed out after {self._timeout_s:g}s",
                requested_at=requested_at,
            )
        except ClientError as exc:
            return SendResult(
                success=False,
                error_message=str(exc) or type(exc).__name__,
                requested_at=requested_at,
            )

    async def blocked_target_reason(self, subscriber: Subscriber) -> str | None:
        """Check the resolved target against the subscriber's receiving-address allow-list."""
        if not subscriber.allowed_ip_addresses:
            return None
        host = urlsplit(subscriber.url).hostname or ""
        try:
            addresses = [str(ip_address(host))]
        except ValueError:
            try:
                infos = await asyncio.get_running_loop().getaddrinfo(
                    host, None, type=socket.SOCK_STREAM
                )
            except OSError:
                # DNS failure surfaces as a transport error on send
                return None
            addresses = sorted({info[4][0] for info in infos})
        denied = [a for a in addresses if not is_ip_allowed(a, subscriber.allowed_ip_addresses)]
        if denied:
            return f"Target address {', '.join(denied)} is not in the allowed IP list"
        return None

    async def dispatch(self, delivery: Delivery, subscriber: Subscriber | None) -> DeliveryStatus:
        """Process one claimed delivery. Never raises; system errors end the delivery as FAILED."""
        log = logger.bind(delivery_id=str(delivery.id), subscriber_id=str(delivery.subscriber_id))
        try:
            return await self._dispatch(delivery, subscriber, log)
        except Exception as exc:
            log.exception("delivery processing failed")
            try:
                await self._deliveries.record_attempt(
                    delivery.id,
                    status=DeliveryStatus.FAILED,
                    attempt_count=delivery.attempt_count + 1,
                    next_attempt_at=None,
                    error_message=f"System error: {exc}",
                )
            except Exception:
                log.exception("recording system error failed")
            return DeliveryStatus.FAILED

    async def _dispatch(self, delivery: Delivery, subscriber: Subscriber | None, log) -> DeliveryStatus:
        reason = ineligibility_reason(subscriber)
        if reason is None:
            assert subscriber is not None
            reason = await self.blocked_target_reason(subscriber)
        if reason is not None:
            validate_delivery_transition(delivery.status, DeliveryStatus.FAILED)
            await self._deliveries.record_attempt(
                delivery.id,
                status=DeliveryStatus.FAILED,
                attempt_count=delivery.attempt_count,
                next_attempt_at=None,
                error_message=reason,
            )
            log.info("delivery abandoned", reason=reason)
            return DeliveryStatus.FAILED

        assert subscriber is not None
        body = encode_body(delivery.request_body)
        headers = build_headers(subscriber, body, user_agent=settings.webhook_user_agent)
        result = await self.send(subscriber.url, body, headers)

        attempt_count = delivery.attempt_count + 1
        next_attempt_at: datetime | None = None
        if result.success:
            status = DeliveryStatus.SUCCESS
        else:
            status = failure_outcome(attempt_count, subscriber.retry_count)
            if status == DeliveryStatus.SCHEDULED:
                delay = backoff_seconds(
                    subscriber.retry_interval,
                    attempt_count,
                    cap=settings.webhook_max_backoff_seconds,
                )
                next_attempt_at = self._clock() + timedelta(seconds=delay)

        validate_delivery_transition(delivery.status, status)
        await self._deliveries.record_attempt(
            delivery.id,
            status=status,
            attempt_count=attempt_count,
            next_attempt_at=next_attempt_at,
            result=result,
            error_message=result.error_message,
        )
        if result.success:
            log.info("delivered", status_code=result.status_code, attempt=attempt_count)
        else:
            log.warning(
                "delivery attempt failed",
                error=result.error_message,
                status_code=result.status_code,
                attempt=attempt_count,
                outcome=status.value,
                next_attempt_at=next_attempt_at.isoformat() if next_attempt_at else None,
            )
        return status

    async def process_due_deliveries(self, now: datetime | None = None) -> dict[str, int]:
        """Claim up to one batch of due deliveries and dispatch them with bounded concurrency."""
        now = now or self._clock()
        claimed = await self._deliveries.claim_due(now=now, limit=self._batch_size)
        if not claimed:
            return {}
        subscribers = await self._subscribers.get_many(d.subscriber_id for d in claimed)
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run(delivery: Delivery) -> DeliveryStatus:
            async with semaphore:
                return await self.dispatch(delivery, subscribers.get(delivery.subscriber_id))

        outcomes = await asyncio.gather(*(run(d) for d in claimed))
        return dict(Counter(outcome.value for outcome in outcomes))

    async def promote_retries(self, now: datetime | None = None) -> dict[str, int]:
        """Move due FAILED deliveries back into the queue, or finalize them when out of attempts."""
        now = now or self._clock()
        counts = {"promoted": 0, "finalized": 0}
        for delivery, retry_count in await self._deliveries.list_promotable(now=now):
            try:
                if delivery.attempt_count >= retry_count:
                    await self._deliveries.finalize_failed(
                        delivery.id,
                        error_message=f"Maximum retry attempts ({retry_count}) reached",
                    )
                    counts["finalized"] += 1
                    continue
                validate_delivery_transition(delivery.status, DeliveryStatus.SCHEDULED)
                await self._deliveries.schedule_now(delivery.id, now=now)
                counts["promoted"] += 1
            except Exception:
                logger.exception("retry promotion failed", delivery_id=str(delivery.id))
        return counts
