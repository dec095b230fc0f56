"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _load_env_file(path: str = ".env") -> None:
    """Populate os.environ from the provided .env file if it exists."""

    env_path = Path(path)
    if not env_path.exists():
        return

    for line in env_path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


@dataclass(frozen=True, slots=True)
class Settings:
    """Centralised project settings based on OS environment variables."""

    environment: str = "dev"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./data/content.db"
    redis_url: str = "redis://localhost:6379/0"

    content_root: str = "data/content"
    upload_root: str = "data/content/uploads"
    audit_log_dir: str = "data/content"

    batch_size: int = 10
    delete_retries: int = 0
    job_tick_seconds: int = 60
    job_lock_ttl_seconds: int = 900

    admin_token: str = ""
    nonce_ttl_seconds: int = 86400


def _build_settings() -> Settings:
    _load_env_file()

    content_root = os.getenv("CONTENT_ROOT", "data/content")
    return Settings(
        environment=os.getenv("ENVIRONMENT", "dev"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/content.db"),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        content_root=content_root,
        upload_root=os.getenv("UPLOAD_ROOT", str(Path(content_root) / "uploads")),
        audit_log_dir=os.getenv("AUDIT_LOG_DIR", content_root),
        batch_size=max(1, int(os.getenv("BATCH_SIZE", "10"))),
        delete_retries=max(0, int(os.getenv("DELETE_RETRIES", "0"))),
        job_tick_seconds=int(os.getenv("JOB_TICK_SECONDS", "60")),
        job_lock_ttl_seconds=int(os.getenv("JOB_LOCK_TTL_SECONDS", "900")),
        admin_token=os.getenv("ADMIN_TOKEN", ""),
        nonce_ttl_seconds=int(os.getenv("NONCE_TTL_SECONDS", "86400")),
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance to avoid re-reading configuration."""

    return _build_settings()
