"""ETo Accuracy Calibration - Application Entry Point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from etocal.accuracy.repository import AccuracyRepository, SqlAlchemyAccuracyRepository
from etocal.accuracy.service import AccuracyService, WeatherProviderManager
from etocal.api.routes import router as api_router
from etocal.common.exceptions import register_exception_handlers
from etocal.core.config import settings
from etocal.core.database import close_connections, get_session_factory, init_db
from etocal.core.middleware import correlation_id_var, request_id_var, setup_middleware


def add_request_context(logger, method_name, event_dict):
    """Add request context to logs."""
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)

    correlation_id = correlation_id_var.get()
    if correlation_id:
        event_dict.setdefault("correlation_id", correlation_id)

    return event_dict


def configure_logging() -> None:
    logging.basicConfig(format="%(message)s", level=settings.log_level.upper())
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            add_request_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()

logger = structlog.get_logger(__name__)


# ============================================================================
# LIFESPAN
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables when running against PostgreSQL; dispose on shutdown."""
    logger.info(
        "etocal_starting",
        version=settings.app_version,
        environment=settings.environment,
    )

    if app.state.session_factory is not None:
        try:
            await init_db()
        except Exception as e:
            # Tables may already be managed by migrations
            logger.warning("database_init_failed", error=str(e))

    logger.info("etocal_ready", host=settings.api_host, port=settings.api_port)

    yield

    logger.info("etocal_shutting_down")
    if app.state.session_factory is not None:
        await close_connections()
    logger.info("etocal_stopped")


# ============================================================================
# APP FACTORY
# ============================================================================


def create_app(
    repository: Optional[AccuracyRepository] = None,
    provider_manager: Optional[WeatherProviderManager] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Without an explicit repository the app persists to PostgreSQL at
    DATABASE_URL.
    """
    app = FastAPI(
        title=settings.app_name,
        description="Calibrates weather-provider ETo against local ground truth.",
        version=settings.app_version,
        docs_url=None if settings.is_production else "/docs",
        lifespan=lifespan,
    )

    if repository is None:
        session_factory = get_session_factory()
        repository = SqlAlchemyAccuracyRepository(session_factory)
    else:
        session_factory = None

    app.state.session_factory = session_factory
    app.state.accuracy_service = AccuracyService(repository, provider_manager=provider_manager)

    setup_middleware(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/", tags=["Root"])
    async def root():
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "docs": app.docs_url,
            "api": settings.api_prefix,
        }

    return app


# ============================================================================
# DEVELOPMENT SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "etocal.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
