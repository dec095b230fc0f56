"""Batched removal of attachments, their metadata and media files."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from sqlalchemy import Integer, cast, delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from media_janitor.db import models
from media_janitor.db.session import SessionFactory
from media_janitor.metrics.prometheus_exporter import (
    attachment_delete_failures_total,
    attachments_deleted_total,
)
from media_janitor.monitoring.audit import AuditLog
from media_janitor.services.errors import AlreadyScheduled
from media_janitor.services.scheduler import JobScheduler
from media_janitor.services.stages import DeleteOutcome

logger = logging.getLogger(__name__)

DELETE_JOB = "delete_attachments"
DEFAULT_BATCH_SIZE = 10


def batches(ids: Sequence[int], size: int) -> list[list[int]]:
    """Split ids into contiguous chunks of ``size``; the last may be shorter."""

    if size < 1:
        raise ValueError("batch size must be positive")
    return [list(ids[start : start + size]) for start in range(0, len(ids), size)]


@dataclass(slots=True)
class DeleteResult:
    attachment_id: int
    outcome: DeleteOutcome
    error: str | None = None


@dataclass(slots=True)
class BatchResult:
    """What one job invocation did."""

    processed: list[DeleteResult] = field(default_factory=list)
    remainder: list[int] = field(default_factory=list)
    next_job_id: str | None = None
    schedule_error: str | None = None

    @property
    def complete(self) -> bool:
        return not self.remainder


class AttachmentDeleter:
    """Cascading delete of a single attachment.

    Each call runs in its own transaction: metadata rows, featured-image
    references, the record and then the files on disk, with the commit
    last. A record
    that no longer exists is reported as ``MISSING`` rather than an error,
    so a re-delivered batch is harmless.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        upload_root: Path | str,
        *,
        retries: int = 0,
    ) -> None:
        self._session_factory = session_factory
        self._upload_root = Path(upload_root)
        self._retries = max(0, retries)

    async def delete(self, attachment_id: int) -> DeleteResult:
        error: str | None = None
        for attempt in range(self._retries + 1):
            try:
                outcome = await self._delete_record(attachment_id)
            except SQLAlchemyError as exc:
                error = str(exc)
                logger.warning(
                    "Attempt %d to delete attachment %s failed: %s",
                    attempt + 1,
                    attachment_id,
                    exc,
                )
                continue
            except Exception as exc:
                logger.exception("Unexpected error deleting attachment %s", attachment_id)
                return DeleteResult(attachment_id, DeleteOutcome.FAILED, str(exc))

            return DeleteResult(attachment_id, outcome)

        return DeleteResult(attachment_id, DeleteOutcome.FAILED, error)

    async def _delete_record(self, attachment_id: int) -> DeleteOutcome:
        async with self._session_factory() as session:
            post = await session.get(
                models.Post,
                attachment_id,
                options=[selectinload(models.Post.meta)],
            )
            if post is None:
                return DeleteOutcome.MISSING
            if post.post_type != models.ATTACHMENT_TYPE:
                logger.error(
                    "Refusing to delete record %s of type %s",
                    attachment_id,
                    post.post_type,
                )
                return DeleteOutcome.FAILED

            await session.execute(
                delete(models.PostMeta).where(
                    models.PostMeta.meta_key == models.FEATURED_IMAGE_KEY,
                    cast(models.PostMeta.meta_value, Integer) == attachment_id,
                    models.PostMeta.post_id != attachment_id,
                )
            )
            await session.execute(
                update(models.Post)
                .where(models.Post.post_parent == attachment_id)
                .values(post_parent=None)
            )
            await session.delete(post)
            # Files go before the commit: a crash in between leaves the
            # record, so a re-delivered batch finishes the job.
            self._remove_files(attachment_id, self._files_for(post))
            await session.commit()

        return DeleteOutcome.DELETED

    def _files_for(self, post: models.Post) -> list[Path]:
        meta = {item.meta_key: item.meta_value for item in post.meta}
        relative = meta.get(models.ATTACHED_FILE_KEY)
        if not relative:
            return []

        main = self._upload_root / relative
        files = [main]

        raw = meta.get(models.ATTACHMENT_METADATA_KEY)
        if raw:
            try:
                sizes = json.loads(raw).get("sizes") or {}
            except (ValueError, AttributeError):
                logger.warning("Unreadable attachment metadata for %s", post.id)
                sizes = {}
            for size in sizes.values():
                name = size.get("file") if isinstance(size, dict) else None
                if name:
                    files.append(main.parent / name)
        return files

    def _remove_files(self, attachment_id: int, files: list[Path]) -> None:
        root = self._upload_root.resolve()
        for path in files:
            resolved = path.resolve()
            if not resolved.is_relative_to(root):
                logger.warning(
                    "Skipping file outside upload root for attachment %s: %s",
                    attachment_id,
                    path,
                )
                continue
            try:
                resolved.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not remove %s: %s", resolved, exc)


class BatchDeleter:
    """Body of the ``delete_attachments`` job.

    Consumes the first ``batch_size`` ids, deletes them one by one and hands
    the rest back to the scheduler as a new job. Batches therefore follow
    the original order and partition it exactly.
    """

    def __init__(
        self,
        deleter: AttachmentDeleter,
        scheduler: JobScheduler,
        audit: AuditLog,
        session_factory: SessionFactory,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        kind: str = DELETE_JOB,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch size must be positive")
        self._deleter = deleter
        self._scheduler = scheduler
        self._audit = audit
        self._session_factory = session_factory
        self.batch_size = batch_size
        self.kind = kind

    async def run(self, ids: Sequence[int], job_id: str | None = None) -> BatchResult:
        ids = [int(item) for item in ids]
        batch, remainder = ids[: self.batch_size], ids[self.batch_size :]
        result = BatchResult(remainder=remainder)

        for attachment_id in batch:
            outcome = await self._deleter.delete(attachment_id)
            result.processed.append(outcome)
            self._report(outcome)
            if outcome.outcome is DeleteOutcome.FAILED:
                await self._dead_letter(job_id, attachment_id, outcome.error or "delete failed")

        if not remainder:
            self._audit.append("Delete attachments job complete.")
            logger.info("Delete attachments job complete")
            return result

        try:
            job = await self._scheduler.schedule(self.kind, remainder, self._scheduler.now())
        except AlreadyScheduled as exc:
            # An active job with the same ids already covers the remainder.
            result.schedule_error = str(exc)
            self._audit.append(f"Error scheduling {self.kind} job.")
            logger.warning("Remainder of %d ids is already queued: %s", len(remainder), exc)
        except SQLAlchemyError as exc:
            result.schedule_error = str(exc)
            self._audit.append(f"Error scheduling {self.kind} job.")
            logger.error("Could not re-schedule %d remaining ids: %s", len(remainder), exc)
            await self._dead_letter(job_id, None, f"remainder not scheduled: {remainder}")
        else:
            result.next_job_id = job.id
        return result

    def _report(self, result: DeleteResult) -> None:
        attachment_id = result.attachment_id
        if result.outcome is DeleteOutcome.DELETED:
            attachments_deleted_total.inc()
            self._audit.append(f"Attachment {attachment_id} deleted.")
        elif result.outcome is DeleteOutcome.MISSING:
            self._audit.append(f"Attachment {attachment_id} already deleted.")
        else:
            attachment_delete_failures_total.inc()
            self._audit.append(f"Error deleting attachment {attachment_id}.")

    async def _dead_letter(self, job_id: str | None, attachment_id: int | None, reason: str) -> None:
        try:
            async with self._session_factory() as session:
                session.add(
                    models.DeadLetter(job_id=job_id, attachment_id=attachment_id, reason=reason)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Could not record dead letter for %s: %s", attachment_id, exc)
