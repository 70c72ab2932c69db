"""Common exceptions for domain and repository layers."""
from __future__ import annotations


class WebhookServiceError(Exception):
    """Base error for service layer."""


class RepositoryError(WebhookServiceError):
    """Raised when repository operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested entity is missing."""


class PermissionDeniedError(WebhookServiceError):
    """Raised when the caller may not perform the change (admin lock, admin deactivation)."""


class InvalidStatusTransitionError(WebhookServiceError):
    """Raised when a delivery attempts an unsupported status change."""


class PayloadValidationError(WebhookServiceError):
    """Raised when a caller-supplied payload is not valid JSON."""


class ConflictError(WebhookServiceError):
    """Raised when a delivery cannot be acted on in its current state."""
