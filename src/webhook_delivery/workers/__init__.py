"""Background workers for the delivery engine.

Each worker module exports one async task function compatible with
:class:`webhook_delivery.worker.WorkerTask`. The :data:`worker` instance
aggregates them and provides the lifecycle hooks.
"""
from __future__ import annotations

from webhook_delivery.settings import settings
from webhook_delivery.worker import BackgroundWorker, WorkerTask
from webhook_delivery.workers.cleanup import webhook_cleanup
from webhook_delivery.workers.queue_sweep import webhook_queue_sweep
from webhook_delivery.workers.reclaim import webhook_reclaim_stuck
from webhook_delivery.workers.retry_promotion import webhook_retry_promotion

worker = BackgroundWorker(
    tasks=[
        WorkerTask(
            name="webhook_queue_sweep",
            fn=webhook_queue_sweep,
            interval_seconds=settings.webhook_queue_interval_seconds,
        ),
        WorkerTask(
            name="webhook_retry_promotion",
            fn=webhook_retry_promotion,
            interval_seconds=settings.webhook_retry_interval_seconds,
        ),
        WorkerTask(
            name="webhook_reclaim_stuck",
            fn=webhook_reclaim_stuck,
            interval_seconds=settings.webhook_reclaim_interval_seconds,
        ),
        WorkerTask(
            name="webhook_cleanup",
            fn=webhook_cleanup,
            daily_at_hour=settings.webhook_cleanup_hour,
        ),
    ],
    timezone=settings.timezone,
)

start_background_worker = worker.start
stop_background_worker = worker.stop

__all__ = [
    "worker",
    "start_background_worker",
    "stop_background_worker",
]
