"""Subscriber registry repository."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List, Tuple
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_delivery.core.exceptions import NotFoundError
from webhook_delivery.domain.dto import SubscriberCreateDTO
from webhook_delivery.domain.enums import WebhookEventType
from webhook_delivery.domain.models import Subscriber
from webhook_delivery.repositories.base import BaseRepository

_CREATE_COLUMNS = (
    "name",
    "url",
    "active",
    "secret_key",
    "auth_type",
    "auth_value",
    "allowed_ip_addresses",
    "verification_token",
    "event_types",
    "headers",
    "include_fields",
    "exclude_fields",
    "retry_count",
    "retry_interval",
    "daily_limit",
    "filter_conditions",
)


class WebhookSubscriberRepository(BaseRepository):
    JSONB_COLUMNS = frozenset({"headers", "filter_conditions"})

    def __init__(self, pool: Pool):
        super().__init__(pool)

    @classmethod
    def _to_model(cls, record: Record) -> Subscriber:
        return Subscriber.model_validate(cls._decode_jsonb(dict(record)))

    async def create(
        self,
        *,
        form_id: UUID,
        created_by: UUID | None,
        admin_approved: bool | None,
        data: SubscriberCreateDTO,
    ) -> Subscriber:
        payload = data.model_dump()
        columns = ["form_id", "created_by", "admin_approved", *_CREATE_COLUMNS]
        values: list[Any] = [form_id, created_by, admin_approved]
        values.extend(self._encode_value(column, payload[column]) for column in _CREATE_COLUMNS)
        placeholders = []
        for idx, column in enumerate(columns, start=1):
            cast = "::jsonb" if column in self.JSONB_COLUMNS else ""
            placeholders.append(f"${idx}{cast}")
        record = await self._fetchrow(
            f"""
            INSERT INTO webhook_subscribers ({', '.join(columns)})
            VALUES ({', '.join(placeholders)})
            RETURNING *
            """,
            *values,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, subscriber_id: UUID) -> Subscriber:
        record = await self._fetchrow(
            "SELECT * FROM webhook_subscribers WHERE id = $1",
            subscriber_id,
        )
        if record is None:
            raise NotFoundError("Webhook not found")
        return self._to_model(record)

    async def get_many(self, subscriber_ids: Iterable[UUID]) -> dict[UUID, Subscriber]:
        ids = list(dict.fromkeys(subscriber_ids))
        if not ids:
            return {}
        records = await self._fetch(
            "SELECT * FROM webhook_subscribers WHERE id = ANY($1::uuid[])",
            ids,
        )
        return {r["id"]: self._to_model(r) for r in records}

    async def list_by_form(
        self,
        form_id: UUID,
        *,
        created_by: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Subscriber], int]:
        if created_by is None:
            return await self._list_page("form_id = $1", [form_id], limit=limit, offset=offset)
        return await self._list_page(
            "form_id = $1 AND created_by = $2", [form_id, created_by], limit=limit, offset=offset
        )

    async def list_all(
        self, *, pending_only: bool = False, limit: int = 50, offset: int = 0
    ) -> Tuple[List[Subscriber], int]:
        where = "admin_approved IS NULL" if pending_only else "true"
        return await self._list_page(where, [], limit=limit, offset=offset)

    async def _list_page(
        self, where_sql: str, values: list[Any], *, limit: int, offset: int
    ) -> Tuple[List[Subscriber], int]:
        idx = len(values) + 1
        records = await self._fetch(
            f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_subscribers
            WHERE {where_sql}
            ORDER BY created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
            """,
            *values,
            limit,
            offset,
        )
        items: List[Subscriber] = []
        total: int | None = None
        for rec in records:
            rec_dict = dict(rec)
            total_value = rec_dict.pop("total_count", None)
            if total_value is not None:
                total = int(total_value)
            items.append(Subscriber.model_validate(self._decode_jsonb(rec_dict)))
        if total is None:
            record = await self._fetchrow(
                f"SELECT COUNT(*) AS total FROM webhook_subscribers WHERE {where_sql}",
                *values,
            )
            total = int(record["total"]) if record else 0
        return items, total

    async def list_for_event(
        self, form_id: UUID, event_type: WebhookEventType
    ) -> List[Subscriber]:
        """Subscribers of ``form_id`` listening for ``event_type``; eligibility is checked by the caller."""
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_subscribers
            WHERE form_id = $1
              AND $2 = ANY(event_types)
            ORDER BY created_at ASC
            """,
            form_id,
            event_type.value,
        )
        return [self._to_model(r) for r in records]

    async def update(self, subscriber_id: UUID, fields: dict[str, Any]) -> Subscriber:
        if not fields:
            raise ValueError("No fields provided for update")
        assignments = []
        values: list[Any] = []
        for idx, (column, value) in enumerate(fields.items(), start=1):
            cast = "::jsonb" if column in self.JSONB_COLUMNS else ""
            assignments.append(f"{column} = ${idx}{cast}")
            values.append(self._encode_value(column, value))
        assignments.append("updated_at = now()")
        values.append(subscriber_id)
        record = await self._fetchrow(
            f"""
            UPDATE webhook_subscribers
            SET {', '.join(assignments)}
            WHERE id = ${len(values)}
            RETURNING *
            """,
            *values,
        )
        if record is None:
            raise NotFoundError("Webhook not found")
        return self._to_model(record)

    async def delete(self, subscriber_id: UUID) -> None:
        record = await self._fetchrow(
            "DELETE FROM webhook_subscribers WHERE id = $1 RETURNING id",
            subscriber_id,
        )
        if record is None:
            raise NotFoundError("Webhook not found")

    async def reset_daily_usage_if_due(
        self, subscriber_id: UUID, *, now: datetime, next_reset_at: datetime
    ) -> int:
        """Zero the counter if the reset boundary has passed; return the current usage.

        The boundary test and the reset happen in one statement, so concurrent
        callers crossing the same boundary reset the counter once.
        """
        record = await self._fetchrow(
            """
            UPDATE webhook_subscribers
            SET daily_usage = CASE
                    WHEN daily_reset_at IS NULL OR daily_reset_at < $2 THEN 0
                    ELSE daily_usage
                END,
                daily_reset_at = CASE
                    WHEN daily_reset_at IS NULL OR daily_reset_at < $2 THEN $3
                    ELSE daily_reset_at
                END
            WHERE id = $1
            RETURNING daily_usage
            """,
            subscriber_id,
            now,
            next_reset_at,
        )
        if record is None:
            raise NotFoundError("Webhook not found")
        return int(record["daily_usage"])

    async def increment_usage_if_under_limit(self, subscriber_id: UUID) -> bool:
        record = await self._fetchrow(
            """
            UPDATE webhook_subscribers
            SET daily_usage = daily_usage + 1
            WHERE id = $1
              AND (daily_limit IS NULL OR daily_usage < daily_limit)
            RETURNING daily_usage
            """,
            subscriber_id,
        )
        return record is not None
