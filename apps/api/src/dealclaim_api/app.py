from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from dealclaim_api.core.settings import settings
from dealclaim_api.db.session import engine
from . import __version__
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing


APP_VERSION = __version__


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Deal claim API starting",
        environment=settings.environment,
        stripe_connect_enabled=bool(settings.stripe_secret_key),
    )
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Deal claim API stopped")


def create_app() -> FastAPI:
    """Application factory for the deal claim FastAPI service."""
    configure_logging(
        service_name=settings.otel_service_name,
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Deal Claim API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(app, config=settings, service_version=APP_VERSION)

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
