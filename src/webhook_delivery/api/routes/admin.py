"""Administrator moderation endpoints."""
from __future__ import annotations

from aiohttp import web
from pydantic import BaseModel, ConfigDict

from webhook_delivery.api.routes.webhooks import serialize_subscriber
from webhook_delivery.api.utils import (
    paginated_response,
    pagination_params,
    parse_uuid,
    read_json,
    validate_body,
)
from webhook_delivery.core.exceptions import NotFoundError
from webhook_delivery.services.dependencies import get_subscriber_service, require_admin

routes = web.RouteTableDef()


class ModerationDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    notes: str | None = None


@routes.get("/api/v1/admin/webhooks")
async def list_all_webhooks(request: web.Request):
    await require_admin(request)
    pending_only = request.rel_url.query.get("pending", "").lower() in ("1", "true", "yes")
    limit, offset = pagination_params(request)
    service = await get_subscriber_service(request)
    items, total = await service.list_all(pending_only=pending_only, limit=limit, offset=offset)
    payload = paginated_response(
        [serialize_subscriber(item) for item in items],
        limit=limit,
        offset=offset,
        key="webhooks",
        total=total,
    )
    return web.json_response(payload)


async def _moderate(request: web.Request, *, approve: bool) -> web.Response:
    await require_admin(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    body = await read_json(request) if request.can_read_body else {}
    dto = validate_body(ModerationDTO, body)
    service = await get_subscriber_service(request)
    try:
        if approve:
            subscriber = await service.approve(webhook_id, notes=dto.notes)
        else:
            subscriber = await service.reject(webhook_id, notes=dto.notes)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    return web.json_response(serialize_subscriber(subscriber))


@routes.patch("/api/v1/admin/webhooks/{webhook_id}/approve")
async def approve_webhook(request: web.Request):
    return await _moderate(request, approve=True)


@routes.patch("/api/v1/admin/webhooks/{webhook_id}/reject")
async def reject_webhook(request: web.Request):
    return await _moderate(request, approve=False)
