"""Structured single-line key=value logging for the API and the background worker."""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

# Field names whose values are subscriber credentials.
SECRET_FIELDS = frozenset(
    {
        "secret_key",
        "auth_value",
        "verification_token",
        "authorization",
        "x-webhook-signature",
        "x-webhook-token",
        "x-api-key",
    }
)
REDACTED = "***"

_ESCAPES = str.maketrans({"\\": "\\\\", "\n": "\\n", "\r": "\\r", "\t": "\\t"})


def _clean(value: Any, key: str | None = None) -> Any:
    if key is not None and key.lower() in SECRET_FIELDS and value:
        return REDACTED
    if isinstance(value, str):
        return value.translate(_ESCAPES)
    if isinstance(value, dict):
        return {k: _clean(v, str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clean(item) for item in value]
    return value


def sanitize_event_processor(logger, method_name, event_dict):
    """Mask credentials and escape control characters so each entry is one line.

    Nested headers and payload fragments are cleaned too; formatted tracebacks
    arrive as ``exception`` strings and are escaped like any other value.
    """
    return {key: _clean(value, key) for key, value in event_dict.items()}


class _OneLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return super().format(record).translate(_ESCAPES)


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: str = "INFO", *, service: str | None = None) -> None:
    """Send stdlib and structlog records to stdout as ``key=value`` lines.

    ``service``, when given, is added to every structlog entry.
    """
    log_level = _resolve_level(level)

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(_OneLineFormatter("%(message)s"))
    logging.basicConfig(level=log_level, handlers=[stream], force=True)
    for name in ("aiohttp.access", "aiohttp.server", "asyncpg"):
        child = logging.getLogger(name)
        child.handlers.clear()
        child.propagate = True
        child.setLevel(log_level)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if service:
        processors.append(_bind_service(service))
    processors += [
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        sanitize_event_processor,
        structlog.processors.KeyValueRenderer(
            key_order=["timestamp", "level", "service", "logger", "event"],
            drop_missing=True,
        ),
    ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _bind_service(service: str):
    def add_service(logger, method_name, event_dict):
        event_dict.setdefault("service", service)
        return event_dict

    return add_service
