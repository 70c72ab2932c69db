"""Webhook domain primitives."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from webhook_delivery.domain.enums import (
    AuthType,
    DeliveryStatus,
    LogicOperator,
    WebhookEventType,
)


class FilterRule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    field_id: str = Field(alias="fieldId", min_length=1)
    operator: str
    value: Any = None


class FilterCondition(BaseModel):
    """Declarative predicate over submitted data (``logicOperator`` + ``rules``)."""

    model_config = ConfigDict(populate_by_name=True)

    logic_operator: LogicOperator = Field(default=LogicOperator.AND, alias="logicOperator")
    rules: list[FilterRule] = Field(default_factory=list)

    @field_validator("logic_operator", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        if value is None:
            return LogicOperator.AND
        if isinstance(value, str):
            return value.upper()
        return value


class Subscriber(BaseModel):
    id: UUID
    form_id: UUID
    name: str
    url: str
    active: bool = True
    admin_approved: bool | None = None
    admin_notes: str | None = None
    admin_locked: bool = False
    deactivated_by: UUID | None = None
    created_by: UUID | None = None
    event_types: list[WebhookEventType] = Field(default_factory=list)
    auth_type: AuthType = AuthType.NONE
    auth_value: str | None = None
    secret_key: str | None = None
    verification_token: str | None = None
    allowed_ip_addresses: list[str] = Field(default_factory=list)
    headers: dict[str, str] = Field(default_factory=dict)
    include_fields: list[str] = Field(default_factory=list)
    exclude_fields: list[str] = Field(default_factory=list)
    retry_count: int = 3
    retry_interval: int = 60
    daily_limit: int | None = None
    daily_usage: int = 0
    daily_reset_at: datetime | None = None
    # Kept as stored; parsed (and rejected when malformed) at evaluation time.
    filter_conditions: dict[str, Any] | str | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("allowed_ip_addresses", "include_fields", "exclude_fields", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("headers", mode="before")
    @classmethod
    def _none_to_dict(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def approval_state(self) -> str:
        if self.admin_approved is True:
            return "approved"
        if self.admin_approved is False:
            return "rejected"
        return "pending"


class Delivery(BaseModel):
    id: UUID
    subscriber_id: UUID
    submission_id: UUID | None = None
    event_type: str
    status: DeliveryStatus
    request_timestamp: datetime
    response_timestamp: datetime | None = None
    request_body: dict[str, Any]
    response_body: str | None = None
    status_code: int | None = None
    error_message: str | None = None
    response_time_ms: int | None = None
    attempt_count: int = 0
    next_attempt_at: datetime | None = None
    locked_at: datetime | None = None
    updated_at: datetime


class WebhookEvent(BaseModel):
    """A domain event handed over by the form application."""

    model_config = ConfigDict(extra="forbid")

    event_type: WebhookEventType
    form_id: UUID
    submission_id: UUID | None = None
    submission_created_at: datetime | None = None
    submission_status: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class SendResult(BaseModel):
    """Outcome of a single outbound HTTP attempt."""

    success: bool
    status_code: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    requested_at: datetime
    responded_at: datetime | None = None

    @property
    def response_time_ms(self) -> int | None:
        if self.responded_at is None:
            return None
        return int((self.responded_at - self.requested_at).total_seconds() * 1000)
