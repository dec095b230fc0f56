"""FastAPI entrypoint and HTTP routes."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from urllib.parse import urlencode

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import RedirectResponse

from media_janitor.api.auth import InternalAuthDependency, NonceManager, is_admin
from media_janitor.config.settings import get_settings
from media_janitor.monitoring.logging import configure_logging
from media_janitor.services.cleanup import AttachmentCleanupService, build_service
from media_janitor.services.stages import TriggerOutcome

logger = logging.getLogger(__name__)

STATUS_PATH = "/admin/delete-attachments"


def _status_redirect(code: str) -> RedirectResponse:
    return RedirectResponse(
        url=f"{STATUS_PATH}?{urlencode({'message': code})}",
        status_code=303,
    )


def create_app(service: AttachmentCleanupService | None = None) -> FastAPI:
    """Initialise the FastAPI application."""

    settings = get_settings()
    owns_service = service is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_service:
            configure_logging()
            app.state.service = build_service(settings)
        await app.state.service.init_db()
        try:
            yield
        finally:
            if owns_service:
                await app.state.service.dispose()

    app = FastAPI(
        title="Media Janitor API",
        version="0.1.0",
        docs_url="/docs" if settings.environment != "prod" else None,
        redoc_url="/redoc" if settings.environment != "prod" else None,
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.nonces = NonceManager(settings.admin_token, ttl_seconds=settings.nonce_ttl_seconds)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Simple health endpoint used for readiness probes."""

        return {"status": "ok"}

    @app.get(f"{STATUS_PATH}/nonce", tags=["admin"], dependencies=[InternalAuthDependency])
    async def issue_nonce(request: Request) -> dict[str, str]:
        """Hand out a single-use token for the next trigger."""

        return {"nonce": request.app.state.nonces.issue()}

    @app.post(STATUS_PATH, tags=["admin"])
    async def trigger_delete(
        request: Request,
        nonce: str | None = Query(default=None),
        x_internal_token: str | None = Header(default=None, alias="X-Internal-Token"),
    ) -> RedirectResponse:
        """Start deleting orphan attachments and redirect to the status page."""

        if not is_admin(x_internal_token) or not request.app.state.nonces.consume(nonce):
            logger.warning("Rejected delete-attachments trigger")
            return _status_redirect(TriggerOutcome.UNAUTHORIZED.value)

        result = await request.app.state.service.start()
        logger.info("Delete-attachments trigger finished with %s", result.code)
        return _status_redirect(result.code)

    @app.get(STATUS_PATH, tags=["admin"])
    async def delete_status(
        request: Request,
        message: str | None = Query(default=None),
    ) -> dict[str, str | None]:
        """Latest outcome plus the time of any pending deletion job."""

        report = await request.app.state.service.status(message)
        return {
            "message": report.message,
            "notice": report.notice,
            "level": report.level,
            "scheduled_at": report.scheduled_at,
        }

    return app


app = create_app()
