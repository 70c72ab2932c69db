"""Shared dependency providers for aiohttp handlers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar
from uuid import UUID

from aiohttp import web

from webhook_delivery.db.pool import get_pool
from webhook_delivery.domain.enums import UserRole
from webhook_delivery.domain.models import Subscriber
from webhook_delivery.repositories import WebhookDeliveryRepository, WebhookSubscriberRepository
from webhook_delivery.services.subscribers import SubscriberService
from webhook_delivery.services.webhooks import WebhookService
from webhook_delivery.webhooks_dispatcher import WebhookDispatcher, get_http_session

TService = TypeVar("TService")

_SUBSCRIBER_SERVICE_KEY = "subscriber_service"
_WEBHOOK_SERVICE_KEY = "webhook_service"

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"


@dataclass
class UserContext:
    user_id: UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


async def require_current_user(request: web.Request) -> UserContext:
    """Temporary auth hook: relies on identity headers set by the API gateway."""
    user_header = request.headers.get(USER_ID_HEADER)
    if user_header is None:
        raise web.HTTPUnauthorized(reason=f"Header {USER_ID_HEADER} is required")
    try:
        user_id = UUID(user_header)
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {USER_ID_HEADER}") from exc
    try:
        role = UserRole(request.headers.get(USER_ROLE_HEADER, UserRole.CLIENT.value).lower())
    except ValueError as exc:
        raise web.HTTPBadRequest(text=f"Invalid {USER_ROLE_HEADER}") from exc
    return UserContext(user_id=user_id, role=role)


async def require_admin(request: web.Request) -> UserContext:
    user = await require_current_user(request)
    if not user.is_admin:
        raise web.HTTPForbidden(reason="Administrator role required")
    return user


def ensure_subscriber_access(user: UserContext, subscriber: Subscriber) -> None:
    """Clients may only manage webhooks they registered."""
    if user.is_admin:
        return
    if subscriber.created_by != user.user_id:
        raise web.HTTPForbidden(reason="Access to this webhook is denied")


async def _get_or_create_service(
    request: web.Request,
    cache_key: str,
    builder: Callable[[web.Request], Awaitable[TService]],
) -> TService:
    service = request.get(cache_key)
    if service is None:
        service = await builder(request)
        request[cache_key] = service
    return service


async def get_subscriber_service(request: web.Request) -> SubscriberService:
    async def builder(_: web.Request) -> SubscriberService:
        pool = await get_pool()
        return SubscriberService(WebhookSubscriberRepository(pool))

    return await _get_or_create_service(request, _SUBSCRIBER_SERVICE_KEY, builder)


async def get_webhook_service(request: web.Request) -> WebhookService:
    async def builder(_: web.Request) -> WebhookService:
        pool = await get_pool()
        subs_repo = WebhookSubscriberRepository(pool)
        deliveries_repo = WebhookDeliveryRepository(pool)
        dispatcher = WebhookDispatcher(get_http_session(), subs_repo, deliveries_repo)
        return WebhookService(subs_repo, deliveries_repo, dispatcher)

    return await _get_or_create_service(request, _WEBHOOK_SERVICE_KEY, builder)
