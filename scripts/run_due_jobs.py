"""Run one tick of the job runner by hand."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from media_janitor.config.settings import get_settings
from media_janitor.monitoring.logging import configure_logging
from media_janitor.services.cleanup import build_service
from media_janitor.workers.cleanup import TickResult, build_runner


def _format_result(result: TickResult) -> str:
    return (
        f"requeued={result.requeued} completed={len(result.completed)} "
        f"failed={len(result.failed)}"
    )


async def _tick() -> TickResult:
    settings = get_settings()
    service = build_service(settings)
    try:
        await service.init_db()
        runner = build_runner(service, lock_ttl=timedelta(seconds=settings.job_lock_ttl_seconds))
        return await runner.run_due()
    finally:
        await service.dispose()


def main() -> None:
    configure_logging()
    print(_format_result(asyncio.run(_tick())))


if __name__ == "__main__":
    main()
