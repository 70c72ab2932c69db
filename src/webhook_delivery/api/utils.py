"""Helper utilities for API handlers."""
from __future__ import annotations

import math
from typing import Any, Type, TypeVar
from uuid import UUID

from aiohttp import web
from pydantic import BaseModel, ValidationError

TModel = TypeVar("TModel", bound=BaseModel)


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value if isinstance(value, str) else str(value))
    except (ValueError, TypeError) as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc


async def read_json(request: web.Request) -> dict[str, Any]:
    """Parse a JSON object body, raising HTTPBadRequest on invalid input."""
    try:
        data = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return data


def validate_body(model: Type[TModel], data: Any) -> TModel:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise web.HTTPBadRequest(
            text=exc.json(include_url=False), content_type="application/json"
        ) from exc


def pagination_params(
    request: web.Request,
    *,
    default_limit: int = 50,
    max_limit: int = 100,
) -> tuple[int, int]:
    query = request.rel_url.query
    try:
        limit = int(query.get("limit", str(default_limit)))
        offset = int(query.get("offset", "0"))
    except ValueError as exc:
        raise web.HTTPBadRequest(text="limit and offset must be integers") from exc
    if limit <= 0:
        limit = default_limit
    limit = min(limit, max_limit)
    if offset < 0:
        offset = 0
    return limit, offset


def paginated_response(
    items: list[Any],
    *,
    limit: int,
    offset: int,
    key: str,
    total: int,
) -> dict[str, Any]:
    page = offset // limit + 1 if limit else 1
    total_pages = math.ceil(total / limit) if limit else 1
    return {
        key: items,
        "total": total,
        "page": page,
        "page_size": limit,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_previous_page": page > 1,
    }
