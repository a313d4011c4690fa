"""Starlette application hosting the CRM OAuth endpoints and the refresh sweep."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from crm_auth.credentials.config import CrmAuthSettings
from crm_auth.credentials.service import CrmAuthService
from crm_auth.credentials.sweep import SweepScheduler

from .auth import auth_routes
from .correlation import CorrelationIdMiddleware

logger = logging.getLogger("crm-auth.server.main")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def create_app(
    service: CrmAuthService,
    *,
    scheduler: SweepScheduler | None = None,
    base_path: str = "/auth",
) -> Starlette:
    """Build the ASGI app; *scheduler* is started and stopped with the lifespan."""

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info(
            "CRM auth server starting (providers: %s)",
            ", ".join(service.settings.configured_providers()) or "none",
        )
        if scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.stop()
            logger.info("CRM auth server shutdown complete.")

    app = Starlette(
        routes=[
            Route("/healthz", health_check, methods=["GET"]),
            *auth_routes(service, base_path=base_path),
        ],
        middleware=[Middleware(CorrelationIdMiddleware)],
        lifespan=lifespan,
    )
    app.state.service = service
    return app


def build_from_env() -> Starlette:
    """Create the application from ``CRM_AUTH_*`` / provider environment variables."""
    settings = CrmAuthSettings.from_env()
    service = CrmAuthService(settings)
    scheduler = None
    if settings.sweep_enabled:
        scheduler = SweepScheduler(
            service.sweep(), interval_seconds=settings.sweep_interval_seconds
        )
    else:
        logger.info("Credential sweep disabled via CRM_AUTH_SWEEP_ENABLED")
    return create_app(service, scheduler=scheduler)


def main() -> None:
    logging.basicConfig(
        level=os.getenv("CRM_AUTH_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        build_from_env(),
        host=os.getenv("CRM_AUTH_HOST", "127.0.0.1"),
        port=int(os.getenv("CRM_AUTH_PORT", "8000")),
        log_level="info",
    )


if __name__ == "__main__":
    main()
