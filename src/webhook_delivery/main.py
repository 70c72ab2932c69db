"""aiohttp application entrypoint."""
from __future__ import annotations

from pathlib import Path

from aiohttp import web

from webhook_delivery.aiohttp_app import add_cors_to_routes, add_healthcheck, create_base_app
from webhook_delivery.api.router import setup_routes
from webhook_delivery.db.migrations import create_migration_runner
from webhook_delivery.db.pool import close_pool, init_pool
from webhook_delivery.logging_config import configure_logging
from webhook_delivery.settings import settings
from webhook_delivery.webhooks_dispatcher import close_http_session, start_http_session
from webhook_delivery.workers import start_background_worker, stop_background_worker

MIGRATION_PATHS = [
    Path(__file__).resolve().parent.parent.parent / "migrations",
    Path("/app/migrations"),
]


def create_app() -> web.Application:
    configure_logging(settings.log_level, service=settings.app_name)
    app, cors = create_base_app(settings)
    add_healthcheck(app, settings)
    setup_routes(app)

    app.on_startup.append(init_pool)
    app.on_startup.append(create_migration_runner(MIGRATION_PATHS))
    app.on_startup.append(start_http_session)
    app.on_startup.append(start_background_worker)
    app.on_cleanup.append(stop_background_worker)
    app.on_cleanup.append(close_http_session)
    app.on_cleanup.append(close_pool)

    add_cors_to_routes(app, cors)
    return app


def main() -> None:
    web.run_app(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
