"""Webhook subscriber endpoints (owner-facing)."""
from __future__ import annotations

from typing import Any

from aiohttp import web

from webhook_delivery.api.utils import (
    paginated_response,
    pagination_params,
    parse_uuid,
    read_json,
    validate_body,
)
from webhook_delivery.core.exceptions import (
    NotFoundError,
    PayloadValidationError,
    PermissionDeniedError,
)
from webhook_delivery.domain.dto import SubscriberCreateDTO, SubscriberUpdateDTO, WebhookTestDTO
from webhook_delivery.domain.models import Subscriber
from webhook_delivery.services.dependencies import (
    UserContext,
    ensure_subscriber_access,
    get_subscriber_service,
    get_webhook_service,
    require_current_user,
)

routes = web.RouteTableDef()


def serialize_subscriber(subscriber: Subscriber) -> dict[str, Any]:
    payload = subscriber.model_dump(mode="json")
    payload["approval_state"] = subscriber.approval_state
    return payload


async def load_subscriber(request: web.Request, user: UserContext) -> Subscriber:
    """Resolve ``{webhook_id}`` and check the caller may access it."""
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_subscriber_service(request)
    try:
        subscriber = await service.get(webhook_id)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    ensure_subscriber_access(user, subscriber)
    return subscriber


@routes.get("/api/v1/forms/{form_id}/webhooks")
async def list_form_webhooks(request: web.Request):
    user = await require_current_user(request)
    form_id = parse_uuid(request.match_info["form_id"], "form_id")
    limit, offset = pagination_params(request)
    service = await get_subscriber_service(request)
    items, total = await service.list_by_form(
        form_id,
        created_by=None if user.is_admin else user.user_id,
        limit=limit,
        offset=offset,
    )
    payload = paginated_response(
        [serialize_subscriber(item) for item in items],
        limit=limit,
        offset=offset,
        key="webhooks",
        total=total,
    )
    return web.json_response(payload)


@routes.post("/api/v1/forms/{form_id}/webhooks")
async def create_webhook(request: web.Request):
    user = await require_current_user(request)
    form_id = parse_uuid(request.match_info["form_id"], "form_id")
    dto = validate_body(SubscriberCreateDTO, await read_json(request))
    service = await get_subscriber_service(request)
    subscriber = await service.create(
        form_id, dto, user_id=user.user_id, is_admin=user.is_admin
    )
    return web.json_response(serialize_subscriber(subscriber), status=201)


@routes.get("/api/v1/webhooks/{webhook_id}")
async def get_webhook(request: web.Request):
    user = await require_current_user(request)
    subscriber = await load_subscriber(request, user)
    return web.json_response(serialize_subscriber(subscriber))


@routes.patch("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    user = await require_current_user(request)
    subscriber = await load_subscriber(request, user)
    dto = validate_body(SubscriberUpdateDTO, await read_json(request))
    service = await get_subscriber_service(request)
    try:
        updated = await service.update(
            subscriber.id, dto, user_id=user.user_id, is_admin=user.is_admin
        )
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise web.HTTPForbidden(text=str(exc)) from exc
    except PayloadValidationError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return web.json_response(serialize_subscriber(updated))


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    user = await require_current_user(request)
    subscriber = await load_subscriber(request, user)
    service = await get_subscriber_service(request)
    try:
        await service.delete(subscriber.id, is_admin=user.is_admin)
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise web.HTTPForbidden(text=str(exc)) from exc
    return web.Response(status=204)


@routes.post("/api/v1/webhooks/{webhook_id}/test")
async def test_webhook(request: web.Request):
    user = await require_current_user(request)
    subscriber = await load_subscriber(request, user)
    body = await read_json(request) if request.can_read_body else {}
    dto = validate_body(WebhookTestDTO, body)
    service = await get_webhook_service(request)
    try:
        result = await service.test_deliver(
            subscriber.id, dto.payload, event_type=dto.event_type, is_admin=user.is_admin
        )
    except PayloadValidationError as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    return web.json_response(result)
