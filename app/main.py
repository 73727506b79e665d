"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from app.config import Settings, configure_structlog, get_settings
from app.dependencies import build_messaging_client
from app.error_handlers import register_exception_handlers
from app.middleware import RequestContextMiddleware, build_metrics_endpoint
from app.routers import health

logger = structlog.get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_structlog(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        client = build_messaging_client(settings)
        logger.info("messaging_client_configured", **client.describe_configuration())
        app.state.messaging_client = client
        try:
            yield
        finally:
            await client.aclose()

    app = FastAPI(title=settings.app.service, lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)
    register_exception_handlers(app, environment=settings.app.environment)

    app.add_api_route("/metrics", build_metrics_endpoint(), methods=["GET"], include_in_schema=False)
    app.include_router(health.router)
    return app
