"""Enumerations describing job and trigger states."""

from enum import Enum


class JobStatus(str, Enum):
    """Lifecycle of a durable job record."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.RUNNING.value)


class DeleteOutcome(str, Enum):
    """Result of deleting a single attachment."""

    DELETED = "deleted"
    MISSING = "missing"
    FAILED = "failed"


class TriggerOutcome(str, Enum):
    """Message codes carried to the status surface after a trigger."""

    STARTED = "started"
    ERROR = "error"
    SCHEDULE_ERROR = "schedule-error"
    NONE = "none"
    UNAUTHORIZED = "unauthorized"
