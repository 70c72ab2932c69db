"""Outbound payload construction."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping, Sequence

from webhook_delivery.domain.enums import WebhookEventType
from webhook_delivery.domain.models import Subscriber, WebhookEvent


def filter_fields(
    data: Mapping[str, Any],
    include_fields: Sequence[str] | None,
    exclude_fields: Sequence[str] | None,
) -> dict[str, Any]:
    """Apply include/exclude lists; include wins when both are set."""
    if include_fields:
        return {name: data[name] for name in include_fields if name in data}
    if exclude_fields:
        excluded = set(exclude_fields)
        return {name: value for name, value in data.items() if name not in excluded}
    return dict(data)


def build_payload(subscriber: Subscriber, event: WebhookEvent, now: datetime) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "event": event.event_type.value,
        "timestamp": now.isoformat(),
        "webhook_id": str(subscriber.id),
        "form": {"id": str(subscriber.form_id)},
    }
    if event.submission_id is not None:
        payload["submission"] = {
            "id": str(event.submission_id),
            "createdAt": event.submission_created_at.isoformat()
            if event.submission_created_at
            else None,
            "status": event.submission_status,
            "data": filter_fields(event.data, subscriber.include_fields, subscriber.exclude_fields),
        }
    return payload


SAMPLE_SUBMISSION_DATA: dict[str, Any] = {
    "name": "Test User",
    "email": "test@example.com",
    "message": "This is a test webhook submission",
}

FORM_EVENTS = frozenset({WebhookEventType.FORM_PUBLISHED, WebhookEventType.FORM_UNPUBLISHED})


def build_test_payload(
    subscriber: Subscriber,
    now: datetime,
    event_type: WebhookEventType = WebhookEventType.SUBMISSION_CREATED,
    data: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Sample body for a manual test send, shaped like a real ``event_type`` delivery.

    ``data`` replaces the sample submission fields; form events carry no
    submission, so it is ignored there.
    """
    timestamp = now.isoformat()
    payload: dict[str, Any] = {
        "event": event_type.value,
        "timestamp": timestamp,
        "webhook_id": str(subscriber.id),
        "form": {"id": str(subscriber.form_id)},
        "test": True,
    }
    if event_type in FORM_EVENTS:
        payload["form"].update(
            published=event_type == WebhookEventType.FORM_PUBLISHED,
            updatedAt=timestamp,
        )
        return payload
    payload["submission"] = {
        "id": "test_submission_id",
        "createdAt": timestamp,
        "updatedAt": timestamp,
        "status": "test",
        "data": dict(data) if data is not None else dict(SAMPLE_SUBMISSION_DATA),
    }
    return payload


def encode_body(payload: Mapping[str, Any]) -> bytes:
    """Canonical wire form; the signature is computed over exactly these bytes."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
