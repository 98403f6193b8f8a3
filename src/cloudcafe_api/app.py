from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from cloudcafe_api.core.settings import settings
from cloudcafe_api.db.session import engine
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Cloud Cafe API starting",
        environment=settings.environment,
        worldpay_env=settings.worldpay_env,
        trust_redirect_success=settings.payment_trust_redirect_success,
    )
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Cloud Cafe API stopped")


def create_app() -> FastAPI:
    """Application factory for the Cloud Cafe ordering and rewards API."""
    configure_logging(
        service_name="cloudcafe-api",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
        fmt=settings.log_format,
    )
    app = FastAPI(
        title="Cloud Cafe API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    if settings.tracing_enabled:
        configure_tracing(
            app,
            service_name="cloudcafe-api",
            service_version=APP_VERSION,
            environment=settings.environment,
        )

    app.include_router(api_router)
    return app
