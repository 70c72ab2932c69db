"""Pydantic DTOs for repository/service layers."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

# pyright: reportMissingImports=false

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from webhook_delivery.domain.enums import AuthType, DeliveryStatus, WebhookEventType
from webhook_delivery.domain.models import FilterCondition


def _parse_json_field(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError("must be valid JSON") from exc
    return value


def _validate_headers(value: Any) -> Any:
    value = _parse_json_field(value)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError("headers must be a JSON object")
    return {str(k): str(v) for k, v in value.items()}


def _validate_conditions(value: Any) -> Any:
    value = _parse_json_field(value)
    if value is None:
        return None
    try:
        FilterCondition.model_validate(value)
    except ValidationError as exc:
        raise ValueError(f"invalid filter conditions: {exc.errors()[0]['msg']}") from exc
    return value


def _normalize_event_types(value: list[WebhookEventType] | None) -> list[WebhookEventType] | None:
    if value is None:
        return None
    unique = list(dict.fromkeys(value))
    if not unique:
        raise ValueError("event_types must be a non-empty list")
    return unique


HeadersField = Annotated[dict[str, str] | None, BeforeValidator(_validate_headers)]
ConditionsField = Annotated[dict[str, Any] | None, BeforeValidator(_validate_conditions)]
EventTypesField = Annotated[list[WebhookEventType], AfterValidator(_normalize_event_types)]


class SubscriberCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    active: bool = True
    secret_key: str | None = None
    auth_type: AuthType = AuthType.NONE
    auth_value: str | None = None
    allowed_ip_addresses: list[str] = Field(default_factory=list)
    verification_token: str | None = None
    event_types: EventTypesField = Field(
        default_factory=lambda: [WebhookEventType.SUBMISSION_CREATED]
    )
    headers: HeadersField = None
    include_fields: list[str] = Field(default_factory=list)
    exclude_fields: list[str] = Field(default_factory=list)
    retry_count: int = Field(default=3, ge=0)
    retry_interval: int = Field(default=60, ge=1)
    daily_limit: int | None = Field(default=None, ge=1)
    filter_conditions: ConditionsField = None

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return value

    @model_validator(mode="after")
    def _auth_value_required(self) -> "SubscriberCreateDTO":
        if self.auth_type != AuthType.NONE and not self.auth_value:
            raise ValueError("auth_value is required when auth_type is set")
        return self


# Columns that are NOT NULL in storage; an explicit null in a partial update is refused.
NON_NULLABLE_UPDATE_FIELDS = (
    "name",
    "url",
    "active",
    "auth_type",
    "allowed_ip_addresses",
    "event_types",
    "include_fields",
    "exclude_fields",
    "retry_count",
    "retry_interval",
    "admin_locked",
)


class SubscriberUpdateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    url: str | None = None
    active: bool | None = None
    secret_key: str | None = None
    auth_type: AuthType | None = None
    auth_value: str | None = None
    allowed_ip_addresses: list[str] | None = None
    verification_token: str | None = None
    event_types: EventTypesField | None = None
    headers: HeadersField = None
    include_fields: list[str] | None = None
    exclude_fields: list[str] | None = None
    retry_count: int | None = Field(default=None, ge=0)
    retry_interval: int | None = Field(default=None, ge=1)
    daily_limit: int | None = Field(default=None, ge=1)
    filter_conditions: ConditionsField = None
    # Admin-controlled
    admin_approved: bool | None = None
    admin_notes: str | None = None
    admin_locked: bool | None = None

    @field_validator(*NON_NULLABLE_UPDATE_FIELDS, mode="before")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("field cannot be null")
        return value

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str | None) -> str | None:
        if value is not None and not value.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return value


ADMIN_ONLY_FIELDS = frozenset({"admin_approved", "admin_notes", "admin_locked"})


class WebhookTestDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # JSON string or already-decoded object; becomes the sample submission data
    payload: str | dict[str, Any] | None = None
    event_type: WebhookEventType = Field(
        default=WebhookEventType.SUBMISSION_CREATED,
        validation_alias=AliasChoices("event_type", "eventType"),
    )


class DeliveryLogFilters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: DeliveryStatus | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = Field(default=50, ge=1, le=100)
    page: int = Field(default=1, ge=1)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class DeliveryStatsDaily(BaseModel):
    date: str
    status: DeliveryStatus
    count: int


class DeliveryStats(BaseModel):
    subscriber_id: UUID
    days: int
    daily_stats: list[DeliveryStatsDaily]
    overall_stats: dict[str, int]
    total_deliveries: int
    success_rate: float
    average_response_ms: float
