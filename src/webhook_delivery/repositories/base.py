"""Shared asyncpg helpers for repositories."""
from __future__ import annotations

import json
from enum import Enum
from typing import Any, Iterable

import asyncpg  # type: ignore[import-untyped]


class BaseRepository:
    """Thin wrapper over asyncpg pool operations."""

    JSONB_COLUMNS: frozenset[str] = frozenset()

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self._pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def _fetch(self, query: str, *args: Any) -> Iterable[asyncpg.Record]:
        async with self._pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def _execute(self, query: str, *args: Any) -> str:
        async with self._pool.acquire() as conn:
            return await conn.execute(query, *args)

    @classmethod
    def _decode_jsonb(cls, payload: dict[str, Any]) -> dict[str, Any]:
        for column in cls.JSONB_COLUMNS:
            value = payload.get(column)
            if isinstance(value, str):
                payload[column] = json.loads(value)
        return payload

    @classmethod
    def _encode_value(cls, column: str, value: Any) -> Any:
        if column in cls.JSONB_COLUMNS:
            return None if value is None else json.dumps(value)
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, list):
            return [item.value if isinstance(item, Enum) else item for item in value]
        return value

    @staticmethod
    def _affected(status: str) -> int:
        """Row count from an asyncpg command tag such as ``DELETE 3``."""
        return int(status.split()[-1])
