"""Domain enums for subscribers and deliveries."""
from __future__ import annotations

from enum import Enum


class DeliveryStatus(str, Enum):
    """Delivery record lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SCHEDULED = "scheduled"
    SUCCESS = "success"
    FAILED = "failed"


class WebhookEventType(str, Enum):
    """Domain events a subscriber may listen for."""

    SUBMISSION_CREATED = "SUBMISSION_CREATED"
    SUBMISSION_UPDATED = "SUBMISSION_UPDATED"
    FORM_PUBLISHED = "FORM_PUBLISHED"
    FORM_UNPUBLISHED = "FORM_UNPUBLISHED"


class AuthType(str, Enum):
    """Outbound authentication modes."""

    NONE = "NONE"
    BASIC = "BASIC"
    BEARER = "BEARER"
    API_KEY = "API_KEY"


class LogicOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class UserRole(str, Enum):
    CLIENT = "client"
    ADMIN = "admin"
