"""Delivery store: the persisted attempt log the engine operates on."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List, Tuple
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_delivery.core.exceptions import NotFoundError
from webhook_delivery.domain.dto import DeliveryLogFilters
from webhook_delivery.domain.enums import DeliveryStatus
from webhook_delivery.domain.models import Delivery, SendResult
from webhook_delivery.repositories.base import BaseRepository


class WebhookDeliveryRepository(BaseRepository):
    JSONB_COLUMNS = frozenset({"request_body"})

    def __init__(self, pool: Pool):
        super().__init__(pool)

    @classmethod
    def _to_model(cls, record: Record) -> Delivery:
        return Delivery.model_validate(cls._decode_jsonb(dict(record)))

    async def enqueue(
        self,
        *,
        subscriber_id: UUID,
        submission_id: UUID | None,
        event_type: str,
        request_body: dict[str, Any],
        now: datetime,
    ) -> Delivery:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_deliveries (
                subscriber_id,
                submission_id,
                event_type,
                status,
                request_timestamp,
                request_body,
                attempt_count,
                next_attempt_at
            )
            VALUES ($1, $2, $3, 'pending', $4, $5::jsonb, 0, $4)
            RETURNING *
            """,
            subscriber_id,
            submission_id,
            event_type,
            now,
            json.dumps(request_body),
        )
        assert record is not None
        return self._to_model(record)

    async def record_completed(
        self,
        *,
        subscriber_id: UUID,
        event_type: str,
        request_body: dict[str, Any],
        result: SendResult,
    ) -> Delivery:
        """Persist a one-shot attempt (test deliveries) as a terminal record."""
        status = DeliveryStatus.SUCCESS if result.success else DeliveryStatus.FAILED
        record = await self._fetchrow(
            """
            INSERT INTO webhook_deliveries (
                subscriber_id,
                event_type,
                status,
                request_timestamp,
                response_timestamp,
                request_body,
                response_body,
                status_code,
                error_message,
                response_time_ms,
                attempt_count,
                next_attempt_at
            )
            VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8, $9, $10, 1, NULL)
            RETURNING *
            """,
            subscriber_id,
            event_type,
            status.value,
            result.requested_at,
            result.responded_at,
            json.dumps(request_body),
            result.response_body,
            result.status_code,
            result.error_message,
            result.response_time_ms,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, delivery_id: UUID, *, subscriber_id: UUID | None = None) -> Delivery:
        if subscriber_id is None:
            record = await self._fetchrow(
                "SELECT * FROM webhook_deliveries WHERE id = $1",
                delivery_id,
            )
        else:
            record = await self._fetchrow(
                "SELECT * FROM webhook_deliveries WHERE id = $1 AND subscriber_id = $2",
                delivery_id,
                subscriber_id,
            )
        if record is None:
            raise NotFoundError("Webhook delivery not found")
        return self._to_model(record)

    async def claim_due(self, *, now: datetime, limit: int = 50) -> List[Delivery]:
        """
        Atomically claim due deliveries for processing.

        Uses row-level locking (FOR UPDATE SKIP LOCKED) so overlapping sweeps
        won't process the same delivery concurrently.

        Side-effects:
          - status -> in_progress
          - locked_at -> now
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                records = await conn.fetch(
                    """
                    WITH cte AS (
                        SELECT id
                        FROM webhook_deliveries
                        WHERE status = 'pending'
                           OR (status = 'scheduled' AND next_attempt_at <= $1)
                        ORDER BY next_attempt_at ASC NULLS FIRST, request_timestamp ASC
                        FOR UPDATE SKIP LOCKED
                        LIMIT $2
                    )
                    UPDATE webhook_deliveries d
                    SET status = 'in_progress',
                        locked_at = $1,
                        updated_at = now()
                    FROM cte
                    WHERE d.id = cte.id
                    RETURNING d.*
                    """,
                    now,
                    limit,
                )
        return [self._to_model(r) for r in records]

    async def claim_one(self, delivery_id: UUID, *, now: datetime) -> Delivery | None:
        """Claim a single not-yet-succeeded delivery; None if it is succeeded or already claimed."""
        record = await self._fetchrow(
            """
            UPDATE webhook_deliveries
            SET status = 'in_progress',
                locked_at = $2,
                updated_at = now()
            WHERE id = $1
              AND status IN ('pending', 'scheduled', 'failed')
            RETURNING *
            """,
            delivery_id,
            now,
        )
        return self._to_model(record) if record is not None else None

    async def record_attempt(
        self,
        delivery_id: UUID,
        *,
        status: DeliveryStatus,
        attempt_count: int,
        next_attempt_at: datetime | None,
        result: SendResult | None = None,
        error_message: str | None = None,
    ) -> None:
        """Store an attempt outcome and release the claim.

        With a ``result`` the response columns take this attempt's values, NULL
        included. Without one the request was never sent and they are kept.
        """
        await self._execute(
            """
            UPDATE webhook_deliveries
            SET status = $2,
                attempt_count = $3,
                next_attempt_at = $4,
                response_timestamp = CASE WHEN $10 THEN $5 ELSE response_timestamp END,
                response_body = CASE WHEN $10 THEN $6 ELSE response_body END,
                status_code = CASE WHEN $10 THEN $7 ELSE status_code END,
                error_message = $8,
                response_time_ms = CASE WHEN $10 THEN $9 ELSE response_time_ms END,
                locked_at = NULL,
                updated_at = now()
            WHERE id = $1
            """,
            delivery_id,
            status.value,
            attempt_count,
            next_attempt_at,
            result.responded_at if result else None,
            result.response_body if result else None,
            result.status_code if result else None,
            error_message,
            result.response_time_ms if result else None,
            result is not None,
        )

    async def list_promotable(self, *, now: datetime) -> List[Tuple[Delivery, int]]:
        """FAILED deliveries due again whose subscriber is still deliverable, with its retry count."""
        records = await self._fetch(
            """
            SELECT d.*, s.retry_count AS subscriber_retry_count
            FROM webhook_deliveries d
            JOIN webhook_subscribers s ON s.id = d.subscriber_id
            WHERE d.status = 'failed'
              AND d.next_attempt_at <= $1
              AND s.active = true
              AND s.admin_approved = true
              AND s.deactivated_by IS NULL
            ORDER BY d.next_attempt_at ASC
            """,
            now,
        )
        items: List[Tuple[Delivery, int]] = []
        for rec in records:
            rec_dict = dict(rec)
            retry_count = int(rec_dict.pop("subscriber_retry_count"))
            items.append((Delivery.model_validate(self._decode_jsonb(rec_dict)), retry_count))
        return items

    async def schedule_now(
        self, delivery_id: UUID, *, now: datetime, error_message: str | None = None
    ) -> None:
        await self._execute(
            """
            UPDATE webhook_deliveries
            SET status = 'scheduled',
                next_attempt_at = $2,
                error_message = COALESCE($3, error_message),
                locked_at = NULL,
                updated_at = now()
            WHERE id = $1
            """,
            delivery_id,
            now,
            error_message,
        )

    async def finalize_failed(self, delivery_id: UUID, *, error_message: str) -> None:
        await self._execute(
            """
            UPDATE webhook_deliveries
            SET status = 'failed',
                next_attempt_at = NULL,
                error_message = $2,
                locked_at = NULL,
                updated_at = now()
            WHERE id = $1
            """,
            delivery_id,
            error_message,
        )

    async def reclaim_stuck(self, locked_before: datetime, *, now: datetime) -> int:
        """Release deliveries stuck in ``in_progress`` (e.g. after crash).

        They go back to ``scheduled`` with ``next_attempt_at = now`` so the
        next sweep picks them up. Returns the number of reclaimed rows.
        """
        result = await self._execute(
            """
            UPDATE webhook_deliveries
            SET status = 'scheduled',
                locked_at = NULL,
                next_attempt_at = $2,
                updated_at = now()
            WHERE status = 'in_progress'
              AND locked_at < $1
            """,
            locked_before,
            now,
        )
        return self._affected(result)

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Purge deliveries requested before *cutoff*. Returns count."""
        result = await self._execute(
            "DELETE FROM webhook_deliveries WHERE request_timestamp < $1",
            cutoff,
        )
        return self._affected(result)

    async def list_by_subscriber(
        self, subscriber_id: UUID, filters: DeliveryLogFilters
    ) -> Tuple[List[Delivery], int]:
        where = ["subscriber_id = $1"]
        values: list[Any] = [subscriber_id]
        idx = 2
        if filters.status is not None:
            where.append(f"status = ${idx}")
            values.append(filters.status.value)
            idx += 1
        if filters.start_date is not None:
            where.append(f"request_timestamp >= ${idx}")
            values.append(filters.start_date)
            idx += 1
        if filters.end_date is not None:
            where.append(f"request_timestamp <= ${idx}")
            values.append(filters.end_date)
            idx += 1
        where_sql = " AND ".join(where)
        records = await self._fetch(
            f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_deliveries
            WHERE {where_sql}
            ORDER BY request_timestamp DESC
            LIMIT ${idx} OFFSET ${idx + 1}
            """,
            *values,
            filters.limit,
            filters.offset,
        )
        items: List[Delivery] = []
        total: int | None = None
        for rec in records:
            rec_dict = dict(rec)
            total_value = rec_dict.pop("total_count", None)
            if total_value is not None:
                total = int(total_value)
            items.append(Delivery.model_validate(self._decode_jsonb(rec_dict)))
        if total is None:
            record = await self._fetchrow(
                f"SELECT COUNT(*) AS total FROM webhook_deliveries WHERE {where_sql}",
                *values,
            )
            total = int(record["total"]) if record else 0
        return items, total

    async def daily_status_counts(
        self, subscriber_id: UUID, *, since: datetime, tz: str
    ) -> List[Tuple[str, str, int]]:
        records = await self._fetch(
            """
            SELECT to_char((request_timestamp AT TIME ZONE $3)::date, 'YYYY-MM-DD') AS day,
                   status,
                   COUNT(*) AS count
            FROM webhook_deliveries
            WHERE subscriber_id = $1
              AND request_timestamp >= $2
            GROUP BY day, status
            ORDER BY day DESC, status
            """,
            subscriber_id,
            since,
            tz,
        )
        return [(r["day"], r["status"], int(r["count"])) for r in records]

    async def status_counts(self, subscriber_id: UUID) -> dict[str, int]:
        records = await self._fetch(
            """
            SELECT status, COUNT(*) AS count
            FROM webhook_deliveries
            WHERE subscriber_id = $1
            GROUP BY status
            """,
            subscriber_id,
        )
        return {r["status"]: int(r["count"]) for r in records}

    async def average_response_ms(self, subscriber_id: UUID, *, sample: int = 100) -> float:
        """Mean HTTP round-trip over the latest ``sample`` successful deliveries."""
        record = await self._fetchrow(
            """
            SELECT AVG(response_time_ms) AS avg_ms
            FROM (
                SELECT response_time_ms
                FROM webhook_deliveries
                WHERE subscriber_id = $1
                  AND status = 'success'
                  AND response_time_ms IS NOT NULL
                ORDER BY request_timestamp DESC
                LIMIT $2
            ) recent
            """,
            subscriber_id,
            sample,
        )
        if record is None or record["avg_ms"] is None:
            return 0.0
        return float(record["avg_ms"])
