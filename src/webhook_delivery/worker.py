"""Periodic background worker for the delivery engine.

Usage::

    from webhook_delivery.worker import BackgroundWorker, WorkerTask

    async def purge(now: datetime) -> str | None:
        removed = await repo.delete_older_than(now - timedelta(days=90))
        return f"removed={removed}" if removed else None

    worker = BackgroundWorker(
        tasks=[WorkerTask(name="cleanup", fn=purge, daily_at_hour=2)],
        timezone="Europe/Moscow",
    )

    # In create_app():
    app.on_startup.append(worker.start)
    app.on_cleanup.append(worker.stop)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Awaitable, Callable, Sequence
from zoneinfo import ZoneInfo

import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

# Receives the current UTC time, returns an optional summary (logged when non-empty).
TaskFn = Callable[[datetime], Awaitable[str | None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def seconds_until_hour(now: datetime, hour: int, tz: ZoneInfo) -> float:
    """Seconds from ``now`` to the next ``hour``:00 wall-clock time in ``tz``."""
    local = now.astimezone(tz)
    target = datetime.combine(local.date(), time(hour=hour), tzinfo=tz)
    if target <= local:
        target = datetime.combine(local.date() + timedelta(days=1), time(hour=hour), tzinfo=tz)
    return (target.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()


@dataclass
class WorkerTask:
    """A named task run either every ``interval_seconds`` or daily at ``daily_at_hour``."""

    name: str
    fn: TaskFn
    interval_seconds: float | None = None
    daily_at_hour: int | None = None

    def __post_init__(self) -> None:
        if (self.interval_seconds is None) == (self.daily_at_hour is None):
            raise ValueError(
                f"Task {self.name!r} needs exactly one of interval_seconds or daily_at_hour"
            )
        if self.daily_at_hour is not None and not 0 <= self.daily_at_hour <= 23:
            raise ValueError(f"Task {self.name!r}: daily_at_hour must be within 0..23")


_WORKER_TASKS_KEY = "__background_worker_tasks__"


@dataclass
class BackgroundWorker:
    """In-process scheduler running each task on its own timer.

    A tick that finds the previous run of the same task still active is
    skipped. A failing run is logged and does not affect the schedule or the
    other tasks.
    """

    tasks: Sequence[WorkerTask] = field(default_factory=list)
    timezone: str = "UTC"
    _inflight: dict[str, asyncio.Task] = field(default_factory=dict, init=False, repr=False)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    async def start(self, app: web.Application) -> None:
        """Create one timer per task. Register with ``app.on_startup``."""
        logger.info(
            "background_worker started",
            tasks=[t.name for t in self.tasks],
            timezone=self.timezone,
        )
        app[_WORKER_TASKS_KEY] = [asyncio.create_task(self._loop(t)) for t in self.tasks]

    async def stop(self, app: web.Application) -> None:
        """Cancel timers and in-flight runs. Register with ``app.on_cleanup``."""
        pending = list(app.get(_WORKER_TASKS_KEY, [])) + list(self._inflight.values())
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._inflight.clear()
        logger.info("background_worker stopped")

    def next_delay(self, task: WorkerTask, now: datetime) -> float:
        if task.daily_at_hour is not None:
            return seconds_until_hour(now, task.daily_at_hour, self.tz)
        assert task.interval_seconds is not None
        return task.interval_seconds

    def trigger(self, task: WorkerTask, now: datetime) -> asyncio.Task | None:
        """Start a run of ``task`` unless its previous run is still active."""
        running = self._inflight.get(task.name)
        if running is not None and not running.done():
            logger.warning("background_task skipped", task=task.name, reason="previous run active")
            return None
        run = asyncio.create_task(self.run_once(task, now))
        self._inflight[task.name] = run
        return run

    async def run_once(self, task: WorkerTask, now: datetime) -> None:
        try:
            summary = await task.fn(now)
            if summary:
                logger.info("background_task completed", task=task.name, summary=summary)
        except Exception:
            logger.exception("background_task failed", task=task.name)

    async def _loop(self, task: WorkerTask) -> None:
        while True:
            await asyncio.sleep(self.next_delay(task, _utcnow()))
            self.trigger(task, _utcnow())
