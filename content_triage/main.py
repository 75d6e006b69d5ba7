"""
FastAPI application factory.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from content_triage.api.router import api_router
from content_triage.config import settings
from content_triage.dependencies import get_orchestrator
from content_triage.errors import register_exception_handlers
from content_triage.models.database import close_db, init_db
from content_triage.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # Startup
    setup_logging()

    # Sentry init if configured
    if settings.SENTRY_DSN:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[FastApiIntegration()],
            traces_sample_rate=0.1,
        )

    await init_db()
    logger.info(
        "app_started",
        llm_provider=settings.LLM_PROVIDER,
        enrichment_execution=settings.ENRICHMENT_EXECUTION,
    )

    yield

    # Shutdown: let in-process enrichment runs reach a terminal state
    await get_orchestrator().drain()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Campaign Content Triage",
        description="Entity detection, review and LLM enrichment for campaign text.",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics endpoint
    if settings.PROMETHEUS_ENABLED:
        from prometheus_client import make_asgi_app
        metrics_app = make_asgi_app()
        app.mount("/metrics", metrics_app)

    register_exception_handlers(app)

    # Include all API routes
    app.include_router(api_router)

    return app


# Application instance
app = create_app()
