"""Exception hierarchy for the cleanup services."""

from __future__ import annotations


class JanitorError(Exception):
    """Base exception for all media janitor errors."""


class AlreadyScheduled(JanitorError):
    """A pending job with the same kind and argument digest already exists."""

    def __init__(self, kind: str, digest: str) -> None:
        super().__init__(f"A {kind} job with digest {digest[:12]} is already scheduled")
        self.kind = kind
        self.digest = digest


class UnknownJobKind(JanitorError):
    """No handler is registered for a claimed job."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"No handler registered for job kind {kind!r}")
        self.kind = kind
