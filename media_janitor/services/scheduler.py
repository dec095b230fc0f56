"""Durable single-flight job scheduling."""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from media_janitor.db import models
from media_janitor.db.session import SessionFactory
from media_janitor.services.errors import AlreadyScheduled
from media_janitor.services.stages import ACTIVE_STATUSES, JobStatus

logger = logging.getLogger(__name__)


def job_digest(kind: str, args: Iterable[int]) -> str:
    """Content address of a job: its kind plus the sorted argument ids."""

    payload = json.dumps([kind, sorted(int(arg) for arg in args)], separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class JobScheduler:
    """Schedules named jobs in the ``jobs`` table.

    Only one pending or running job may exist per ``(kind, digest)``. The
    check happens before the insert so a duplicate leaves the table untouched;
    the partial unique index on the table catches concurrent inserts that
    slip past the check. Jobs with different arguments are never serialized
    against each other.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        clock: Callable[[], datetime] = models.utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    async def schedule(
        self,
        kind: str,
        args: Iterable[int],
        not_before: datetime | None = None,
    ) -> models.Job:
        """Create a pending job or raise :class:`AlreadyScheduled`."""

        ids = [int(arg) for arg in args]
        digest = job_digest(kind, ids)

        async with self._session_factory() as session:
            stmt = (
                select(models.Job.id)
                .where(
                    models.Job.kind == kind,
                    models.Job.digest == digest,
                    models.Job.status.in_(ACTIVE_STATUSES),
                )
                .limit(1)
            )
            if await session.scalar(stmt) is not None:
                raise AlreadyScheduled(kind, digest)

            job = models.Job(
                id=uuid.uuid4().hex,
                kind=kind,
                digest=digest,
                args=ids,
                status=JobStatus.PENDING.value,
                scheduled_at=not_before or self.now(),
                attempts=0,
            )
            session.add(job)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise AlreadyScheduled(kind, digest) from exc

        logger.info("Scheduled %s job %s with %d ids", kind, job.id, len(ids))
        return job

    async def is_scheduled(self, kind: str) -> datetime | None:
        """Return the earliest run time of an active job of ``kind``."""

        async with self._session_factory() as session:
            stmt = select(func.min(models.Job.scheduled_at)).where(
                models.Job.kind == kind,
                models.Job.status.in_(ACTIVE_STATUSES),
            )
            return await session.scalar(stmt)

    async def list_pending(self, kind: str | None = None) -> list[models.Job]:
        async with self._session_factory() as session:
            stmt = select(models.Job).where(models.Job.status == JobStatus.PENDING.value)
            if kind is not None:
                stmt = stmt.where(models.Job.kind == kind)
            stmt = stmt.order_by(models.Job.scheduled_at, models.Job.created_at)
            result = await session.scalars(stmt)
            return list(result.all())

    async def get(self, job_id: str) -> models.Job | None:
        async with self._session_factory() as session:
            return await session.get(models.Job, job_id)

    async def claim_due(
        self,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> list[models.Job]:
        """Move due pending jobs to ``running`` and return them, oldest first.

        Each job is flipped with a conditional update, so a job already taken
        by another runner is skipped rather than run twice.
        """

        now = now or self.now()
        async with self._session_factory() as session:
            stmt = (
                select(models.Job.id)
                .where(
                    models.Job.status == JobStatus.PENDING.value,
                    models.Job.scheduled_at <= now,
                )
                .order_by(models.Job.scheduled_at, models.Job.created_at)
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            candidates = list((await session.scalars(stmt)).all())

            claimed: list[str] = []
            for job_id in candidates:
                result = await session.execute(
                    update(models.Job)
                    .where(
                        models.Job.id == job_id,
                        models.Job.status == JobStatus.PENDING.value,
                    )
                    .values(
                        status=JobStatus.RUNNING.value,
                        attempts=models.Job.attempts + 1,
                        updated_at=now,
                    )
                )
                if result.rowcount == 1:
                    claimed.append(job_id)
            await session.commit()

            if not claimed:
                return []
            jobs = await session.scalars(
                select(models.Job)
                .where(models.Job.id.in_(claimed))
                .order_by(models.Job.scheduled_at, models.Job.created_at)
            )
            return list(jobs.all())

    async def mark_done(self, job_id: str) -> None:
        await self._set_status(job_id, JobStatus.DONE, error=None)

    async def mark_failed(self, job_id: str, error: str) -> None:
        await self._set_status(job_id, JobStatus.FAILED, error=error)

    async def _set_status(self, job_id: str, status: JobStatus, *, error: str | None) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(models.Job)
                .where(models.Job.id == job_id)
                .values(status=status.value, error=error, updated_at=self.now())
            )
            await session.commit()

    async def requeue_stale(self, older_than: timedelta) -> int:
        """Return jobs stuck in ``running`` past ``older_than`` to ``pending``.

        A runner that crashes mid-batch leaves its job running; putting it
        back makes delivery at-least-once.
        """

        cutoff = self.now() - older_than
        async with self._session_factory() as session:
            result = await session.execute(
                update(models.Job)
                .where(
                    models.Job.status == JobStatus.RUNNING.value,
                    models.Job.updated_at < cutoff,
                )
                .values(status=JobStatus.PENDING.value, updated_at=self.now())
            )
            await session.commit()

        requeued = result.rowcount or 0
        if requeued:
            logger.warning("Requeued %d stale running jobs", requeued)
        return requeued
