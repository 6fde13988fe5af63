"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from app.api.v1.router import api_router
from app.config import Settings, get_settings
from app.core.firebase import initialize_firebase
from app.core.redis_client import check_redis_connection, close_redis_connection
from app.database import Database
from app.middleware.error_handler import register_exception_handlers
from app.middleware.logging import LoggingMiddleware, configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    settings: Settings = app.state.settings
    database: Database = app.state.database

    logger.info("application_startup", environment=settings.environment)

    # External identity verification is optional
    try:
        initialize_firebase(settings.firebase_credentials_path, settings.firebase_config_json)
        logger.info("firebase_initialized")
    except Exception as e:
        logger.warning(
            "firebase_initialization_failed",
            error=str(e),
            note="External sign-in will not work. Set FIREBASE_CREDENTIALS_PATH env var.",
        )

    if await database.check_connection():
        logger.info("database_connected")
    else:
        logger.error("database_connection_failed")

    if await check_redis_connection():
        logger.info("redis_connected")
    else:
        logger.error("redis_connection_failed")

    yield

    logger.info("application_shutdown")

    await database.dispose()
    logger.info("database_connections_closed")

    close_redis_connection()
    logger.info("redis_connection_closed")


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use (defaults to the cached environment settings)
        database: Database to attach (defaults to one built from settings)

    Returns:
        Configured application; its database lives on ``app.state.database``
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Multi-tenant booking backend",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database or Database.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware, tenant_header=settings.tenant_header)

    register_exception_handlers(app)

    app.include_router(api_router, prefix=settings.api_v1_prefix)

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/docs", "/redoc", "/openapi.json"],
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """Welcome message."""
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.reload,
        log_level=_settings.log_level.lower(),
    )
