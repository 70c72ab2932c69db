"""Subscription registry: webhook registration and administration."""
from __future__ import annotations

from typing import Any, List
from uuid import UUID

import structlog

from webhook_delivery.core.exceptions import PayloadValidationError, PermissionDeniedError
from webhook_delivery.domain.dto import (
    ADMIN_ONLY_FIELDS,
    SubscriberCreateDTO,
    SubscriberUpdateDTO,
)
from webhook_delivery.domain.enums import AuthType
from webhook_delivery.domain.models import Subscriber
from webhook_delivery.repositories.subscribers import WebhookSubscriberRepository

logger = structlog.get_logger(__name__)


class SubscriberService:
    def __init__(self, repository: WebhookSubscriberRepository):
        self._repository = repository

    async def create(
        self,
        form_id: UUID,
        data: SubscriberCreateDTO,
        *,
        user_id: UUID | None,
        is_admin: bool = False,
    ) -> Subscriber:
        """Register a subscriber; client-created ones wait for administrator approval."""
        subscriber = await self._repository.create(
            form_id=form_id,
            created_by=user_id,
            admin_approved=True if is_admin else None,
            data=data,
        )
        logger.info(
            "webhook registered",
            subscriber_id=str(subscriber.id),
            form_id=str(form_id),
            approval=subscriber.approval_state,
        )
        return subscriber

    async def get(self, subscriber_id: UUID) -> Subscriber:
        return await self._repository.get(subscriber_id)

    async def list_by_form(
        self,
        form_id: UUID,
        *,
        created_by: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[List[Subscriber], int]:
        return await self._repository.list_by_form(
            form_id, created_by=created_by, limit=limit, offset=offset
        )

    async def list_all(
        self, *, pending_only: bool = False, limit: int = 50, offset: int = 0
    ) -> tuple[List[Subscriber], int]:
        return await self._repository.list_all(
            pending_only=pending_only, limit=limit, offset=offset
        )

    async def update(
        self,
        subscriber_id: UUID,
        data: SubscriberUpdateDTO,
        *,
        user_id: UUID | None,
        is_admin: bool = False,
    ) -> Subscriber:
        """Apply a partial update.

        Owners cannot edit a locked subscriber, cannot touch admin fields and
        cannot re-activate a subscriber an administrator switched off. An
        administrator toggling ``active`` records or clears ``deactivated_by``.
        """
        existing = await self._repository.get(subscriber_id)
        fields: dict[str, Any] = data.model_dump(exclude_unset=True)

        if not is_admin:
            if existing.admin_locked:
                raise PermissionDeniedError("Webhook is locked by an administrator")
            for name in ADMIN_ONLY_FIELDS:
                fields.pop(name, None)
            if fields.get("active") is True and existing.deactivated_by is not None:
                raise PermissionDeniedError(
                    "Webhook has been deactivated by administrator and cannot be re-activated"
                )
        elif fields.get("active") is not None:
            fields["deactivated_by"] = None if fields["active"] else user_id

        auth_type = fields.get("auth_type", existing.auth_type)
        auth_value = fields.get("auth_value", existing.auth_value)
        if auth_type != AuthType.NONE and not auth_value:
            raise PayloadValidationError("auth_value is required when auth_type is set")

        if not fields:
            return existing
        updated = await self._repository.update(subscriber_id, fields)
        logger.info(
            "webhook updated",
            subscriber_id=str(subscriber_id),
            fields=sorted(fields),
            by_admin=is_admin,
        )
        return updated

    async def approve(self, subscriber_id: UUID, *, notes: str | None = None) -> Subscriber:
        return await self._set_approval(subscriber_id, approved=True, notes=notes)

    async def reject(self, subscriber_id: UUID, *, notes: str | None = None) -> Subscriber:
        return await self._set_approval(subscriber_id, approved=False, notes=notes)

    async def _set_approval(
        self, subscriber_id: UUID, *, approved: bool, notes: str | None
    ) -> Subscriber:
        fields: dict[str, Any] = {"admin_approved": approved}
        if notes is not None:
            fields["admin_notes"] = notes
        subscriber = await self._repository.update(subscriber_id, fields)
        logger.info(
            "webhook approval changed",
            subscriber_id=str(subscriber_id),
            approval=subscriber.approval_state,
        )
        return subscriber

    async def delete(self, subscriber_id: UUID, *, is_admin: bool = False) -> None:
        if not is_admin:
            existing = await self._repository.get(subscriber_id)
            if existing.admin_locked:
                raise PermissionDeniedError("Webhook is locked by an administrator")
        await self._repository.delete(subscriber_id)
        logger.info("webhook deleted", subscriber_id=str(subscriber_id))
