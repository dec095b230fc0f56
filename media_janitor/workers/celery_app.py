"""Celery entry point that ticks the job runner."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from celery import Celery

from media_janitor.config.settings import get_settings
from media_janitor.services.cleanup import build_service
from media_janitor.workers.cleanup import build_runner

settings = get_settings()

celery_app = Celery(
    "media_janitor",
    broker=settings.redis_url,
    backend=settings.redis_url,
)
celery_app.conf.beat_schedule = {
    "run-due-jobs": {
        "task": "media_janitor.run_due_jobs",
        "schedule": float(settings.job_tick_seconds),
    },
}


async def _tick() -> dict:
    service = build_service(get_settings())
    try:
        await service.init_db()
        runner = build_runner(
            service,
            lock_ttl=timedelta(seconds=settings.job_lock_ttl_seconds),
        )
        result = await runner.run_due()
    finally:
        await service.dispose()
    return {
        "requeued": result.requeued,
        "completed": result.completed,
        "failed": result.failed,
    }


@celery_app.task(name="media_janitor.run_due_jobs")
def run_due_jobs_task() -> dict:
    """Run every job that is due right now."""

    return asyncio.run(_tick())
