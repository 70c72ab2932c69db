"""Outbound request security: auth headers, HMAC signatures, IP allow-lists."""
from __future__ import annotations

import base64
import hmac
from hashlib import sha256
from ipaddress import ip_address, ip_network
from typing import Protocol, Sequence

import structlog

from webhook_delivery.domain.enums import AuthType
from webhook_delivery.domain.models import Subscriber

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
TOKEN_HEADER = "X-Webhook-Token"
WEBHOOK_ID_HEADER = "X-Webhook-ID"
API_KEY_HEADER = "X-API-Key"


class AuthStrategy(Protocol):
    def headers(self, auth_value: str | None) -> dict[str, str]: ...


class NoAuth:
    def headers(self, auth_value: str | None) -> dict[str, str]:
        return {}


class BasicAuth:
    """``auth_value`` holds the raw ``user:password`` pair."""

    def headers(self, auth_value: str | None) -> dict[str, str]:
        encoded = base64.b64encode((auth_value or "").encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {encoded}"}


class BearerAuth:
    def headers(self, auth_value: str | None) -> dict[str, str]:
        return {"Authorization": f"Bearer {auth_value or ''}"}


class ApiKeyAuth:
    def headers(self, auth_value: str | None) -> dict[str, str]:
        return {API_KEY_HEADER: auth_value or ""}


AUTH_STRATEGIES: dict[AuthType, AuthStrategy] = {
    AuthType.NONE: NoAuth(),
    AuthType.BASIC: BasicAuth(),
    AuthType.BEARER: BearerAuth(),
    AuthType.API_KEY: ApiKeyAuth(),
}


def sign_payload(body: bytes, secret_key: str) -> str:
    digest = hmac.new(secret_key.encode("utf-8"), body, sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: bytes, signature: str | None, secret_key: str | None) -> bool:
    """Check ``signature`` against the HMAC of ``body`` in constant time."""
    if not secret_key or not signature:
        return False
    expected = sign_payload(body, secret_key)
    if len(signature) != len(expected):
        return False
    return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))


def build_auth_headers(subscriber: Subscriber) -> dict[str, str]:
    strategy = AUTH_STRATEGIES[subscriber.auth_type]
    headers = strategy.headers(subscriber.auth_value)
    if subscriber.verification_token:
        headers[TOKEN_HEADER] = subscriber.verification_token
    return headers


def build_headers(subscriber: Subscriber, body: bytes, *, user_agent: str) -> dict[str, str]:
    """Assemble outbound headers for ``body``.

    Subscriber custom headers are applied first; content, identity, auth and
    signature headers are applied last and win on a name clash. Shadowed
    custom headers are logged at debug level.
    """
    reserved: dict[str, str] = {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
        WEBHOOK_ID_HEADER: str(subscriber.id),
    }
    reserved.update(build_auth_headers(subscriber))
    if subscriber.secret_key:
        reserved[SIGNATURE_HEADER] = sign_payload(body, subscriber.secret_key)

    reserved_lower = {name.lower() for name in reserved}
    headers: dict[str, str] = {}
    for name, value in subscriber.headers.items():
        if name.lower() in reserved_lower:
            logger.debug(
                "custom header shadowed by reserved header",
                subscriber_id=str(subscriber.id),
                header=name,
            )
            continue
        headers[name] = value
    headers.update(reserved)
    return headers


def ip_matches_cidr(ip: str, cidr: str) -> bool:
    try:
        return ip_address(ip) in ip_network(cidr, strict=False)
    except ValueError as exc:
        logger.warning("invalid address in CIDR check", ip=ip, cidr=cidr, error=str(exc))
        return False


def is_ip_allowed(ip: str, allowed: Sequence[str] | None) -> bool:
    """Empty allow-list allows everything; entries are exact addresses or CIDR ranges."""
    if not allowed:
        return True
    if ip in allowed:
        return True
    return any("/" in entry and ip_matches_cidr(ip, entry) for entry in allowed)
