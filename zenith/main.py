"""
FastAPI application factory with middleware, CORS, and request tracing.
"""

import os
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from zenith.config import get_settings
from zenith.engine.realtime import get_aggregator
from zenith.routers import analytics, realtime, webhooks
from zenith.utils.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Starts the real-time aggregator on startup and stops it on shutdown.
    """
    settings = get_settings()

    logger.info(
        "application_startup",
        version=app.version,
        dev_mode=settings.dev_mode,
        stripe_configured=settings.stripe_configured,
        email_configured=settings.email_configured,
    )

    os.makedirs(os.path.dirname(settings.db_path) or ".", exist_ok=True)

    aggregator = None
    if settings.enable_realtime_aggregation:
        aggregator = get_aggregator()
        await aggregator.start()

    yield

    if aggregator is not None:
        await aggregator.stop()
        aggregator.sources.close()
        get_aggregator.cache_clear()

    logger.info("application_shutdown")


def create_app() -> FastAPI:
    """
    Application factory.
    Creates and configures FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Zenith API",
        description="Real-time analytics aggregation, threshold alerting and billing webhooks",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_tracing_middleware(request: Request, call_next):
        """Add request ID to all requests and log their outcome."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )

            return response
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "Internal server error",
                    "request_id": request_id,
                },
                headers={"X-Request-ID": request_id},
            )

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for load balancers and monitoring."""
        aggregator = get_aggregator()
        return {
            "status": "healthy",
            "version": app.version,
            "aggregator_running": aggregator.is_running,
        }

    app.include_router(realtime.router, prefix="/api/v1/realtime", tags=["Realtime"])
    app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])
    app.include_router(analytics.router, prefix="/api/v1/analytics", tags=["Analytics"])

    logger.info("application_configured", routers_count=3)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "zenith.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )
