"""Date-partitioned audit trail for attachment deletions."""

from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)


class AuditLog:
    """Append-only sink writing one file per calendar day.

    Lines land in ``<log_dir>/<prefix>-YYYY-MM-DD``. Write failures are
    reported through :mod:`logging` and never reach the caller, so a full
    disk cannot fail a deletion job.
    """

    def __init__(
        self,
        log_dir: Path | str,
        *,
        prefix: str = "delete-attachments",
        today: Callable[[], date] | None = None,
    ) -> None:
        self._log_dir = Path(log_dir)
        self._prefix = prefix
        self._today = today or (lambda: datetime.now().date())

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def path_for(self, day: date) -> Path:
        """Return the file holding lines written on ``day``."""

        return self._log_dir / f"{self._prefix}-{day.isoformat()}"

    def append(self, line: str) -> None:
        """Append a single line to today's file."""

        path = self.path_for(self._today())
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(line.rstrip("\n") + "\n")
        except OSError as exc:
            logger.warning("Failed to write audit line to %s: %s", path, exc)
