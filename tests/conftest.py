from __future__ import annotations

import json
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, patch

import asyncpg
import pytest
from aiohttp import ClientSession, web

from webhook_delivery.aiohttp_app import add_cors_to_routes, add_healthcheck, create_base_app
from webhook_delivery.api.router import setup_routes
from webhook_delivery.db.migrations import apply_migrations, load_migrations
from webhook_delivery.settings import settings
from tests.fakes import FakeDeliveryRepository, FakeSubscriberRepository

# Port 1 is reserved (tcpmux) and refuses connections on test hosts.
UNREACHABLE_URL = "http://127.0.0.1:1/hook"

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"
TEST_DATABASE_URL_ENV = "WEBHOOK_TEST_DATABASE_URL"


class Receiver:
    """Local subscriber endpoint that records requests and replays scripted statuses."""

    def __init__(self) -> None:
        self.requests: list[tuple[dict[str, str], bytes]] = []
        self.statuses: list[int] = []
        self.url = ""

    async def handler(self, request: web.Request) -> web.Response:
        raw = await request.read()
        self.requests.append((dict(request.headers), raw))
        status = self.statuses.pop(0) if self.statuses else 200
        return web.json_response({"received": True}, status=status)

    def last_json(self) -> dict:
        return json.loads(self.requests[-1][1].decode("utf-8"))


@pytest.fixture
def subscribers() -> FakeSubscriberRepository:
    return FakeSubscriberRepository()


@pytest.fixture
def deliveries(subscribers) -> FakeDeliveryRepository:
    return FakeDeliveryRepository(subscribers)


@pytest.fixture
async def receiver():
    recv = Receiver()
    app = web.Application()
    app.router.add_post("/hook", recv.handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]  # type: ignore[union-attr]
    recv.url = f"http://127.0.0.1:{port}/hook"
    try:
        yield recv
    finally:
        await runner.cleanup()


@pytest.fixture
async def http_session():
    async with ClientSession() as session:
        yield session


@pytest.fixture
async def service_client(aiohttp_client, subscribers, deliveries, http_session):
    """API client over in-memory repositories; no database or background worker."""
    app, cors = create_base_app(settings)
    add_healthcheck(app, settings)
    setup_routes(app)
    add_cors_to_routes(app, cors)
    with patch(
        "webhook_delivery.services.dependencies.get_pool",
        new_callable=AsyncMock,
        return_value=AsyncMock(),
    ), patch(
        "webhook_delivery.services.dependencies.WebhookSubscriberRepository",
        return_value=subscribers,
    ), patch(
        "webhook_delivery.services.dependencies.WebhookDeliveryRepository",
        return_value=deliveries,
    ), patch(
        "webhook_delivery.services.dependencies.get_http_session",
        return_value=http_session,
    ):
        yield await aiohttp_client(app)


@pytest.fixture
async def pgsql_pool():
    """Pool bound to a throwaway schema with all migrations applied.

    Needs a reachable PostgreSQL in ``WEBHOOK_TEST_DATABASE_URL``; skipped otherwise.
    """
    dsn = os.environ.get(TEST_DATABASE_URL_ENV)
    if not dsn:
        pytest.skip(f"{TEST_DATABASE_URL_ENV} is not set")
    schema = f"webhook_test_{uuid.uuid4().hex[:12]}"
    server_settings = {"search_path": f"{schema},public"}

    admin = await asyncpg.connect(dsn)
    try:
        await admin.execute(f"CREATE SCHEMA {schema}")
        conn = await asyncpg.connect(dsn, server_settings=server_settings)
        try:
            await apply_migrations(conn, load_migrations(MIGRATIONS_DIR))
        finally:
            await conn.close()

        pool = await asyncpg.create_pool(
            dsn=dsn, min_size=1, max_size=4, server_settings=server_settings
        )
        try:
            yield pool
        finally:
            await pool.close()
    finally:
        await admin.execute(f"DROP SCHEMA IF EXISTS {schema} CASCADE")
        await admin.close()
