from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.pool import NullPool

from media_janitor.db.session import build_engine, build_session_factory, init_db
from media_janitor.monitoring.audit import AuditLog
from media_janitor.services.cleanup import AttachmentCleanupService

AUDIT_DAY = date(2026, 10, 18)


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'content.db'}"


@pytest_asyncio.fixture
async def engine(database_url: str):
    engine = build_engine(database_url, poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def upload_root(tmp_path: Path) -> Path:
    root = tmp_path / "uploads"
    root.mkdir()
    return root


@pytest.fixture
def audit(tmp_path: Path) -> AuditLog:
    return AuditLog(tmp_path / "logs", today=lambda: AUDIT_DAY)


@pytest.fixture
def audit_lines(audit: AuditLog):
    def _read() -> list[str]:
        path = audit.path_for(AUDIT_DAY)
        if not path.exists():
            return []
        return path.read_text(encoding="utf-8").splitlines()

    return _read


@pytest.fixture
def seed(session_factory):
    async def _seed(*rows) -> None:
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()

    return _seed


@pytest.fixture
def service(session_factory, audit: AuditLog, upload_root: Path) -> AttachmentCleanupService:
    return AttachmentCleanupService(
        session_factory,
        audit=audit,
        upload_root=upload_root,
        batch_size=10,
    )
