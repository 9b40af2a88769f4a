"""
Main FastAPI application.

WHY: This is the entry point for the service. It configures middleware,
routes, exception handlers and the background scheduler.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from proposal_engine.core.config import settings
from proposal_engine.core.exceptions import AppException
from proposal_engine.core.exception_handlers import (
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    generic_exception_handler,
)
from proposal_engine.middleware import RequestContextMiddleware
from proposal_engine.api import proposals, workflows
from proposal_engine.services.scheduler import start_scheduler, shutdown_scheduler, get_scheduler_status


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    WHY: Factory pattern allows testing with dependency overrides on a
    fresh instance.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Proposal drafting, approval and signature workflow API",
        version=settings.VERSION,
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    )

    # WHY: One JSON error shape for domain, request validation and HTTP errors
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Request id, client IP and user agent for logs and signature metadata
    app.add_middleware(RequestContextMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """
        Health check endpoint.

        WHY: Load balancers and monitoring need a cheap liveness check;
        the scheduler state shows whether sweeps are running.
        """
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "scheduler": get_scheduler_status(),
        }

    @app.on_event("startup")
    async def startup_event():
        """Start the timeout sweep and notification dispatch jobs."""
        if settings.SCHEDULER_ENABLED:
            await start_scheduler()
        else:
            logger.info("Background scheduler disabled by configuration")

    @app.on_event("shutdown")
    async def shutdown_event():
        await shutdown_scheduler()

    app.include_router(proposals.router, prefix=settings.API_V1_PREFIX)
    app.include_router(workflows.router, prefix=settings.API_V1_PREFIX)

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "proposal_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning",
    )
