"""Orphan attachment cleanup: trigger, status and job entry point."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from media_janitor.config.settings import Settings
from media_janitor.db.session import SessionFactory, build_engine, build_session_factory, init_db
from media_janitor.monitoring.audit import AuditLog
from media_janitor.services.deleter import DELETE_JOB, AttachmentDeleter, BatchDeleter, BatchResult
from media_janitor.services.errors import AlreadyScheduled
from media_janitor.services.orphans import OrphanFinder
from media_janitor.services.scheduler import JobScheduler
from media_janitor.services.stages import TriggerOutcome

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

NOTICES: dict[str, tuple[str, str]] = {
    TriggerOutcome.STARTED.value: ("Attachment delete has started.", "success"),
    TriggerOutcome.ERROR.value: ("Error deleting attachments. {detail}", "error"),
    TriggerOutcome.SCHEDULE_ERROR.value: ("Error scheduling delete job", "error"),
    TriggerOutcome.NONE.value: ("No attachments to delete.", "info"),
    TriggerOutcome.UNAUTHORIZED.value: ("Only administrators can delete attachments.", "error"),
}


@dataclass(slots=True)
class TriggerResult:
    outcome: TriggerOutcome
    found: int = 0
    job_id: str | None = None
    detail: str = ""

    @property
    def code(self) -> str:
        """Message code carried by the redirect, e.g. ``error:<detail>``."""

        if self.outcome is TriggerOutcome.ERROR:
            return f"{self.outcome.value}:{self.detail}"
        return self.outcome.value


@dataclass(slots=True)
class StatusReport:
    message: str | None
    notice: str | None
    level: str | None
    scheduled_at: str | None


def parse_message(code: str | None) -> tuple[str | None, str]:
    """Split ``error:<detail>`` into its code and detail."""

    if not code:
        return None, ""
    name, _, detail = code.partition(":")
    return name, detail


class AttachmentCleanupService:
    """Owns configuration and collaborators for the cleanup flow.

    Constructed once per process and passed explicitly to the HTTP layer
    and to the job runner.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        audit: AuditLog,
        upload_root: Path | str,
        batch_size: int = 10,
        delete_retries: int = 0,
        scheduler: JobScheduler | None = None,
        finder: OrphanFinder | None = None,
        engine: AsyncEngine | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.audit = audit
        self.engine = engine
        self.finder = finder or OrphanFinder()
        self.scheduler = scheduler or JobScheduler(session_factory)
        self.deleter = AttachmentDeleter(session_factory, upload_root, retries=delete_retries)
        self.batch_deleter = BatchDeleter(
            self.deleter,
            self.scheduler,
            audit,
            session_factory,
            batch_size=batch_size,
            kind=DELETE_JOB,
        )

    @property
    def batch_size(self) -> int:
        return self.batch_deleter.batch_size

    async def init_db(self) -> None:
        if self.engine is not None:
            await init_db(self.engine)

    async def find_orphans(self) -> list[int]:
        async with self.session_factory() as session:
            return await self.finder.find(session)

    async def start(self) -> TriggerResult:
        """Find orphans and enqueue the first deletion job."""

        try:
            ids = await self.find_orphans()
        except SQLAlchemyError as exc:
            logger.error("Orphan query failed: %s", exc)
            return TriggerResult(TriggerOutcome.ERROR, detail=str(getattr(exc, "orig", None) or exc))

        if not ids:
            return TriggerResult(TriggerOutcome.NONE)

        try:
            job = await self.scheduler.schedule(DELETE_JOB, ids, self.scheduler.now())
        except AlreadyScheduled as exc:
            logger.warning("Delete job not started: %s", exc)
            return TriggerResult(TriggerOutcome.SCHEDULE_ERROR, found=len(ids))
        except SQLAlchemyError as exc:
            logger.error("Could not schedule delete job: %s", exc)
            return TriggerResult(
                TriggerOutcome.ERROR,
                found=len(ids),
                detail=str(getattr(exc, "orig", None) or exc),
            )

        return TriggerResult(TriggerOutcome.STARTED, found=len(ids), job_id=job.id)

    async def run_job(self, ids: Sequence[int], job_id: str | None = None) -> BatchResult:
        """Job entry point for ``delete_attachments``."""

        return await self.batch_deleter.run(ids, job_id=job_id)

    async def scheduled_at(self) -> datetime | None:
        return await self.scheduler.is_scheduled(DELETE_JOB)

    async def status(self, message: str | None = None) -> StatusReport:
        """Notice for the latest outcome plus the pending job time, if any."""

        name, detail = parse_message(message)
        notice = level = None
        if name in NOTICES:
            template, level = NOTICES[name]
            notice = template.format(detail=detail).strip()

        pending = await self.scheduled_at()
        return StatusReport(
            message=message,
            notice=notice,
            level=level,
            scheduled_at=pending.strftime(TIMESTAMP_FORMAT) if pending else None,
        )

    async def dispose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()


def build_service(settings: Settings) -> AttachmentCleanupService:
    """Wire the service from settings."""

    engine = build_engine(settings.database_url)
    return AttachmentCleanupService(
        build_session_factory(engine),
        audit=AuditLog(settings.audit_log_dir),
        upload_root=settings.upload_root,
        batch_size=settings.batch_size,
        delete_retries=settings.delete_retries,
        engine=engine,
    )
