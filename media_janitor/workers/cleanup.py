"""Job runner: one tick of the host scheduling loop."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Awaitable, Callable, Sequence

from media_janitor.services.cleanup import AttachmentCleanupService
from media_janitor.services.deleter import DELETE_JOB
from media_janitor.services.errors import UnknownJobKind
from media_janitor.services.scheduler import JobScheduler

logger = logging.getLogger(__name__)

JobHandler = Callable[[Sequence[int], str], Awaitable[object]]


@dataclass(slots=True)
class TickResult:
    requeued: int = 0
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class JobRunner:
    """Runs due jobs synchronously, one after another.

    There is no resident worker: something external (Celery beat, a cron
    entry or a manual script) calls :meth:`run_due` and each claimed job
    executes to completion inside that call.
    """

    def __init__(
        self,
        scheduler: JobScheduler,
        *,
        lock_ttl: timedelta = timedelta(minutes=15),
    ) -> None:
        self._scheduler = scheduler
        self._lock_ttl = lock_ttl
        self._handlers: dict[str, JobHandler] = {}

    def register(self, kind: str, handler: JobHandler) -> None:
        self._handlers[kind] = handler

    async def run_due(self, limit: int | None = None) -> TickResult:
        result = TickResult(requeued=await self._scheduler.requeue_stale(self._lock_ttl))

        for job in await self._scheduler.claim_due(limit=limit):
            handler = self._handlers.get(job.kind)
            try:
                if handler is None:
                    raise UnknownJobKind(job.kind)
                await handler(list(job.args), job.id)
            except Exception as exc:
                logger.exception("Job %s (%s) failed", job.id, job.kind)
                await self._scheduler.mark_failed(job.id, str(exc))
                result.failed.append(job.id)
                continue

            await self._scheduler.mark_done(job.id)
            result.completed.append(job.id)

        return result


def build_runner(service: AttachmentCleanupService, *, lock_ttl: timedelta | None = None) -> JobRunner:
    """Runner with the attachment deletion job registered."""

    runner = JobRunner(service.scheduler, lock_ttl=lock_ttl or timedelta(minutes=15))
    runner.register(DELETE_JOB, lambda ids, job_id: service.run_job(ids, job_id=job_id))
    return runner
