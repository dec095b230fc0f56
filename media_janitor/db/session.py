"""Database engine and session management."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

SessionFactory = async_sessionmaker[AsyncSession]


def build_engine(database_url: str, **engine_kwargs) -> AsyncEngine:
    """Create an async engine, making sure a SQLite file has a home."""

    if database_url.startswith("sqlite"):
        database = make_url(database_url).database or ""
        if database and database != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)

    return create_async_engine(database_url, echo=False, future=True, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> SessionFactory:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_db(engine: AsyncEngine) -> None:
    """Create database tables if they do not exist."""

    from media_janitor.db import models  # noqa: WPS433 - import inside function to avoid cycles

    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
