"""aiohttp application helpers: tracing, CORS and health check."""
from __future__ import annotations

from aiohttp import web
from aiohttp_cors import CorsConfig, ResourceOptions, setup as cors_setup

from webhook_delivery.middleware.trace import create_trace_middleware
from webhook_delivery.settings import Settings

# aiohttp_cors expects a sequence of strings, not a comma-separated string
_ALLOWED_HEADERS = (
    "Accept",
    "Accept-Language",
    "Content-Language",
    "Content-Type",
    "Authorization",
    "X-Trace-Id",
    "X-Request-Id",
    "X-User-Id",
    "X-User-Role",
)

_ALLOWED_METHODS = (
    "GET",
    "HEAD",
    "POST",
    "PATCH",
    "DELETE",
    "OPTIONS",
)

_EXPOSED_HEADERS = (
    "X-Trace-Id",
    "X-Request-Id",
)


def create_base_app(settings: Settings) -> tuple[web.Application, CorsConfig]:
    """Create an aiohttp app with tracing middleware and CORS configured."""
    app = web.Application()
    app.middlewares.append(create_trace_middleware(settings.app_name))
    cors = cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers=_EXPOSED_HEADERS,
                allow_headers=_ALLOWED_HEADERS,
                allow_methods=_ALLOWED_METHODS,
            )
            for origin in settings.cors_allowed_origins
        },
    )
    return app, cors


def add_healthcheck(app: web.Application, settings: Settings) -> None:
    async def healthcheck(_request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "service": settings.app_name, "env": settings.env})

    app.router.add_get("/health", healthcheck)


def add_cors_to_routes(app: web.Application, cors: CorsConfig) -> None:
    for route in list(app.router.routes()):
        cors.add(route)
