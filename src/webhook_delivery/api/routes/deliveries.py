"""Delivery log, manual retry and statistics endpoints."""
from __future__ import annotations

from aiohttp import web

from webhook_delivery.api.routes.webhooks import load_subscriber
from webhook_delivery.api.utils import paginated_response, parse_uuid, validate_body
from webhook_delivery.core.exceptions import ConflictError, NotFoundError
from webhook_delivery.domain.dto import DeliveryLogFilters
from webhook_delivery.services.dependencies import get_webhook_service, require_current_user

routes = web.RouteTableDef()

MAX_STATS_DAYS = 90


@routes.get("/api/v1/webhooks/{webhook_id}/logs")
async def list_delivery_logs(request: web.Request):
    user = await require_current_user(request)
    subscriber = await load_subscriber(request, user)
    query = request.rel_url.query
    filters = validate_body(
        DeliveryLogFilters,
        {
            key: query[key]
            for key in ("status", "start_date", "end_date", "limit", "page")
            if query.get(key)
        },
    )
    service = await get_webhook_service(request)
    items, total = await service.get_delivery_logs(subscriber.id, filters)
    payload = paginated_response(
        [item.model_dump(mode="json") for item in items],
        limit=filters.limit,
        offset=filters.offset,
        key="logs",
        total=total,
    )
    return web.json_response(payload)


@routes.get("/api/v1/webhooks/{webhook_id}/logs/{log_id}")
async def get_delivery_log(request: web.Request):
    user = await require_current_user(request)
    subscriber = await load_subscriber(request, user)
    log_id = parse_uuid(request.match_info["log_id"], "log_id")
    service = await get_webhook_service(request)
    try:
        delivery = await service.get_delivery_log(subscriber.id, log_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(delivery.model_dump(mode="json"))


@routes.post("/api/v1/webhooks/{webhook_id}/logs/{log_id}/retry")
async def retry_delivery(request: web.Request):
    user = await require_current_user(request)
    subscriber = await load_subscriber(request, user)
    log_id = parse_uuid(request.match_info["log_id"], "log_id")
    service = await get_webhook_service(request)
    try:
        delivery = await service.retry_delivery(subscriber.id, log_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except ConflictError as exc:
        raise web.HTTPConflict(text=str(exc)) from exc
    return web.json_response(delivery.model_dump(mode="json"))


@routes.get("/api/v1/webhooks/{webhook_id}/stats")
async def delivery_stats(request: web.Request):
    user = await require_current_user(request)
    subscriber = await load_subscriber(request, user)
    try:
        days = int(request.rel_url.query.get("days", "7"))
    except ValueError as exc:
        raise web.HTTPBadRequest(text="days must be an integer") from exc
    if not 1 <= days <= MAX_STATS_DAYS:
        raise web.HTTPBadRequest(text=f"days must be between 1 and {MAX_STATS_DAYS}")
    service = await get_webhook_service(request)
    stats = await service.get_delivery_stats(subscriber.id, days=days)
    return web.json_response(stats.model_dump(mode="json"))
