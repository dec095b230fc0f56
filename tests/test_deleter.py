"""Tests for single attachment deletion and batch job bodies."""

from __future__ import annotations

import math
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from factories import attachment, meta, post
from media_janitor.db import models
from media_janitor.services.deleter import (
    DELETE_JOB,
    AttachmentDeleter,
    BatchDeleter,
    batches,
)
from media_janitor.services.scheduler import JobScheduler
from media_janitor.services.stages import DeleteOutcome


@pytest.mark.parametrize(
    ("count", "size"),
    [(0, 10), (1, 10), (10, 10), (23, 10), (7, 3), (5, 1)],
)
def test_batches_partition_in_order(count: int, size: int) -> None:
    ids = list(range(100, 100 + count))

    chunks = batches(ids, size)

    assert len(chunks) == math.ceil(count / size)
    assert all(len(chunk) == size for chunk in chunks[:-1])
    assert [item for chunk in chunks for item in chunk] == ids


def test_batches_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError):
        batches([1, 2], 0)


def _write(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"jpeg")
    return path


@pytest.fixture
def deleter(session_factory, upload_root: Path) -> AttachmentDeleter:
    return AttachmentDeleter(session_factory, upload_root)


@pytest.fixture
def batch_deleter(session_factory, deleter, audit) -> BatchDeleter:
    return BatchDeleter(
        deleter,
        JobScheduler(session_factory),
        audit,
        session_factory,
        batch_size=10,
    )


@pytest.mark.asyncio
async def test_delete_cascades_to_metadata_and_files(
    deleter: AttachmentDeleter, session_factory, seed, upload_root: Path
) -> None:
    main = _write(upload_root / "2026/10/photo.jpg")
    thumb = _write(upload_root / "2026/10/photo-150x150.jpg")
    unrelated = _write(upload_root / "2026/10/other.jpg")
    child = post(2)
    child.post_parent = 10
    await seed(
        post(1),
        child,
        attachment(10, file="2026/10/photo.jpg", sizes={"thumbnail": "photo-150x150.jpg"}),
        meta(1, models.FEATURED_IMAGE_KEY, "10"),
        meta(1, "subtitle", "kept"),
    )

    result = await deleter.delete(10)

    assert result.outcome is DeleteOutcome.DELETED
    assert not main.exists()
    assert not thumb.exists()
    assert unrelated.exists()
    async with session_factory() as session:
        assert await session.get(models.Post, 10) is None
        remaining = (await session.scalars(select(models.PostMeta.meta_key))).all()
        assert remaining == ["subtitle"]
        assert (await session.get(models.Post, 2)).post_parent is None


@pytest.mark.asyncio
async def test_second_delete_is_a_noop(deleter: AttachmentDeleter, seed) -> None:
    await seed(attachment(10))

    first = await deleter.delete(10)
    second = await deleter.delete(10)

    assert first.outcome is DeleteOutcome.DELETED
    assert second.outcome is DeleteOutcome.MISSING


@pytest.mark.asyncio
async def test_missing_file_is_ignored(deleter: AttachmentDeleter, seed) -> None:
    await seed(attachment(10, file="2026/10/gone.jpg"))

    assert (await deleter.delete(10)).outcome is DeleteOutcome.DELETED


@pytest.mark.asyncio
async def test_file_outside_upload_root_is_left_alone(
    deleter: AttachmentDeleter, seed, upload_root: Path
) -> None:
    outside = _write(upload_root.parent / "secret.txt")
    await seed(attachment(10, file="../secret.txt"))

    result = await deleter.delete(10)

    assert result.outcome is DeleteOutcome.DELETED
    assert outside.exists()


@pytest.mark.asyncio
async def test_non_attachment_is_refused(deleter: AttachmentDeleter, session_factory, seed) -> None:
    await seed(post(1))

    assert (await deleter.delete(1)).outcome is DeleteOutcome.FAILED
    async with session_factory() as session:
        assert await session.get(models.Post, 1) is not None


@pytest.mark.asyncio
async def test_database_errors_are_retried(session_factory, upload_root: Path, seed, mocker) -> None:
    await seed(attachment(10))
    deleter = AttachmentDeleter(session_factory, upload_root, retries=2)
    original = AttachmentDeleter._delete_record
    calls: list[int] = []

    async def flaky(self, attachment_id):
        calls.append(attachment_id)
        if len(calls) < 3:
            raise OperationalError("DELETE", {}, Exception("database is locked"))
        return await original(self, attachment_id)

    mocker.patch.object(AttachmentDeleter, "_delete_record", flaky)

    result = await deleter.delete(10)

    assert result.outcome is DeleteOutcome.DELETED
    assert calls == [10, 10, 10]


@pytest.mark.asyncio
async def test_batch_takes_prefix_and_reschedules_remainder(
    batch_deleter: BatchDeleter, session_factory, seed, audit_lines
) -> None:
    await seed(*(attachment(i) for i in range(1, 24)))
    ids = list(range(1, 24))

    result = await batch_deleter.run(ids)

    assert [item.attachment_id for item in result.processed] == ids[:10]
    assert result.remainder == ids[10:]
    assert not result.complete
    assert audit_lines() == [f"Attachment {i} deleted." for i in range(1, 11)]

    async with session_factory() as session:
        job = await session.get(models.Job, result.next_job_id)
    assert job.kind == DELETE_JOB
    assert job.args == ids[10:]


@pytest.mark.asyncio
async def test_last_batch_logs_completion(batch_deleter: BatchDeleter, seed, audit_lines) -> None:
    await seed(attachment(21), attachment(22), attachment(23))

    result = await batch_deleter.run([21, 22, 23])

    assert result.complete
    assert result.next_job_id is None
    assert audit_lines()[-1] == "Delete attachments job complete."
    assert len(audit_lines()) == 4


@pytest.mark.asyncio
async def test_failed_item_does_not_abort_batch(
    batch_deleter: BatchDeleter, session_factory, seed, audit_lines, mocker
) -> None:
    await seed(attachment(1), attachment(2), attachment(3))
    original = AttachmentDeleter._delete_record

    async def broken_for_two(self, attachment_id):
        if attachment_id == 2:
            raise OperationalError("DELETE", {}, Exception("disk I/O error"))
        return await original(self, attachment_id)

    mocker.patch.object(AttachmentDeleter, "_delete_record", broken_for_two)

    result = await batch_deleter.run([1, 2, 3], job_id="job-1")

    assert [item.outcome for item in result.processed] == [
        DeleteOutcome.DELETED,
        DeleteOutcome.FAILED,
        DeleteOutcome.DELETED,
    ]
    assert audit_lines() == [
        "Attachment 1 deleted.",
        "Error deleting attachment 2.",
        "Attachment 3 deleted.",
        "Delete attachments job complete.",
    ]
    async with session_factory() as session:
        letters = (await session.scalars(select(models.DeadLetter))).all()
    assert [(item.job_id, item.attachment_id) for item in letters] == [("job-1", 2)]


@pytest.mark.asyncio
async def test_redelivered_batch_reports_noop(batch_deleter: BatchDeleter, seed, audit_lines) -> None:
    await seed(attachment(1), attachment(2))

    await batch_deleter.run([1, 2])
    await batch_deleter.run([1, 2])

    assert audit_lines()[-3:] == [
        "Attachment 1 already deleted.",
        "Attachment 2 already deleted.",
        "Delete attachments job complete.",
    ]
    assert not any(line.startswith("Error") for line in audit_lines())


@pytest.mark.asyncio
async def test_reschedule_conflict_is_logged_not_raised(
    batch_deleter: BatchDeleter, session_factory, seed, audit_lines
) -> None:
    await seed(*(attachment(i) for i in range(1, 13)))
    await JobScheduler(session_factory).schedule(DELETE_JOB, [11, 12])

    result = await batch_deleter.run(list(range(1, 13)), job_id="job-1")

    assert result.schedule_error is not None
    assert result.next_job_id is None
    assert audit_lines()[-1] == "Error scheduling delete_attachments job."
    async with session_factory() as session:
        letters = (await session.scalars(select(models.DeadLetter))).all()
        pending = (await session.scalars(select(models.Job.args))).all()
    assert letters == []
    assert pending == [[11, 12]]


@pytest.mark.asyncio
async def test_reschedule_database_error_records_dead_letter(
    batch_deleter: BatchDeleter, session_factory, seed, audit_lines, mocker
) -> None:
    await seed(*(attachment(i) for i in range(1, 13)))
    mocker.patch.object(
        JobScheduler,
        "schedule",
        side_effect=OperationalError("INSERT", {}, Exception("database is locked")),
    )

    result = await batch_deleter.run(list(range(1, 13)), job_id="job-1")

    assert result.next_job_id is None
    assert "database is locked" in result.schedule_error
    assert audit_lines()[-1] == "Error scheduling delete_attachments job."
    async with session_factory() as session:
        letters = (await session.scalars(select(models.DeadLetter))).all()
    assert [(item.job_id, item.attachment_id) for item in letters] == [("job-1", None)]
    assert letters[0].reason == "remainder not scheduled: [11, 12]"


@pytest.mark.asyncio
async def test_crash_before_commit_leaves_record_for_redelivery(
    batch_deleter: BatchDeleter, session_factory, seed, upload_root: Path, audit_lines, mocker
) -> None:
    main = _write(upload_root / "2026/10/photo.jpg")
    thumb = _write(upload_root / "2026/10/photo-150x150.jpg")
    await seed(attachment(1, file="2026/10/photo.jpg", sizes={"thumbnail": "photo-150x150.jpg"}))
    original = AttachmentDeleter._remove_files
    crashed: list[int] = []

    def crash_once(self, attachment_id, files):
        original(self, attachment_id, files)
        if not crashed:
            crashed.append(attachment_id)
            raise SystemExit("worker killed")

    mocker.patch.object(AttachmentDeleter, "_remove_files", crash_once)

    with pytest.raises(SystemExit):
        await batch_deleter.run([1])

    assert not main.exists()
    async with session_factory() as session:
        assert await session.get(models.Post, 1) is not None

    result = await batch_deleter.run([1])

    assert [item.outcome for item in result.processed] == [DeleteOutcome.DELETED]
    assert not main.exists()
    assert not thumb.exists()
    assert audit_lines() == ["Attachment 1 deleted.", "Delete attachments job complete."]
    async with session_factory() as session:
        assert await session.get(models.Post, 1) is None


@pytest.mark.asyncio
async def test_featured_image_reference_with_padded_id_is_removed(
    deleter: AttachmentDeleter, session_factory, seed
) -> None:
    await seed(post(1), attachment(10), meta(1, models.FEATURED_IMAGE_KEY, "010"))

    assert (await deleter.delete(10)).outcome is DeleteOutcome.DELETED
    async with session_factory() as session:
        remaining = (await session.scalars(select(models.PostMeta))).all()
    assert remaining == []
