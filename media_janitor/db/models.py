"""SQLAlchemy models describing the content store and the job table."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from media_janitor.services.stages import JobStatus

ATTACHMENT_TYPE = "attachment"

FEATURED_IMAGE_KEY = "featured-image"
ATTACHED_FILE_KEY = "attached-file"
ATTACHMENT_METADATA_KEY = "attachment-metadata"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite hands back."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for ORM models."""


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
    )


class Post(TimestampMixin, Base):
    """Content record: a post, a page or a media attachment."""

    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_type: Mapped[str] = mapped_column(String(20), default="post", index=True)
    # Plain integer, not a foreign key: dangling parents are part of the data.
    post_parent: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    guid: Mapped[str] = mapped_column(String(255), default="")
    post_title: Mapped[str] = mapped_column(Text, default="")
    post_content: Mapped[str] = mapped_column(Text, default="")
    mime_type: Mapped[str | None] = mapped_column(String(100))

    meta: Mapped[list["PostMeta"]] = relationship(
        back_populates="post",
        cascade="all, delete-orphan",
    )


class PostMeta(Base):
    """Key/value metadata attached to a content record."""

    __tablename__ = "post_meta"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(ForeignKey("posts.id"), nullable=False, index=True)
    meta_key: Mapped[str] = mapped_column(String(255), index=True)
    meta_value: Mapped[str | None] = mapped_column(Text)

    post: Mapped[Post] = relationship(back_populates="meta")


class Job(TimestampMixin, Base):
    """Durable scheduled job.

    At most one pending or running job may exist per ``(kind, digest)``.
    """

    __tablename__ = "jobs"
    __table_args__ = (
        Index(
            "uq_jobs_active_signature",
            "kind",
            "digest",
            unique=True,
            sqlite_where=text("status IN ('pending', 'running')"),
            postgresql_where=text("status IN ('pending', 'running')"),
        ),
        Index("ix_jobs_kind_status", "kind", "status"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    digest: Mapped[str] = mapped_column(String(64), nullable=False)
    args: Mapped[list[int]] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(16), default=JobStatus.PENDING.value)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[str | None] = mapped_column(Text)


class DeadLetter(TimestampMixin, Base):
    """Work item dropped by a job: a failed delete or an unscheduled remainder."""

    __tablename__ = "dead_letters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str | None] = mapped_column(String(32), index=True)
    attachment_id: Mapped[int | None] = mapped_column(Integer)
    reason: Mapped[str] = mapped_column(Text, default="")
