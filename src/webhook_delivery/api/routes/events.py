"""Event ingestion from the form application."""
from __future__ import annotations

from aiohttp import web

from webhook_delivery.api.utils import read_json, validate_body
from webhook_delivery.domain.models import WebhookEvent
from webhook_delivery.services.dependencies import get_webhook_service, require_admin

routes = web.RouteTableDef()


@routes.post("/api/v1/events")
async def ingest_event(request: web.Request):
    await require_admin(request)
    event = validate_body(WebhookEvent, await read_json(request))
    service = await get_webhook_service(request)
    deliveries = await service.emit(event)
    return web.json_response(
        {
            "enqueued": len(deliveries),
            "delivery_ids": [str(d.id) for d in deliveries],
        },
        status=202,
    )
