"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order
- Can create multiple app instances if needed (e.g., for testing)

For local development:
    uvicorn trainerdesk.main:app --reload

For production:
    gunicorn trainerdesk.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.errors import accounting_error_handler
from .api.routes import health, plans, reminders, reports, schedule, students
from .config.settings import get_settings
from .core.billing.errors import AccountingError

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=get_settings().log_level.upper(),
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Runs on startup and shutdown. Startup logs the mock modes and any
    missing configuration.
    """
    # Startup
    settings = get_settings()

    logger.info(
        "TrainerDesk API starting",
        extra={
            "version": settings.api_version,
            "mock_mode": {
                "snowflake": settings.snowflake_mock_mode,
                "email": settings.email_mock_mode,
            }
        }
    )

    # Validate configuration
    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )
        # Requests that need the missing service fail on their own; /health/ready reports it

    yield

    # Shutdown
    logger.info("TrainerDesk API shutting down")


def create_app() -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application.
    This function is called once at startup (in production) or
    multiple times (in tests with different configurations).
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Plan accounting and payment reminders for personal trainers.

        ## Features

        - Duration plans (access until a due date) and session packs
        - Class history with automatic session counting
        - Payments that renew plans
        - Weekly schedule with overlap detection
        - Idempotent e-mail reminders before a plan runs out

        ## Authentication

        All endpoints except health checks require an API key provided
        in the `X-API-Key` header.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    # Configure allowed origins via CORS_ORIGINS environment variable
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        plans.router,
        prefix="/api/v1/plans",
        tags=["Plans"],
    )

    app.include_router(
        students.router,
        prefix="/api/v1/students",
        tags=["Students"],
    )

    app.include_router(
        schedule.router,
        prefix="/api/v1/schedule",
        tags=["Schedule"],
    )

    app.include_router(
        reminders.router,
        prefix="/api/v1/reminders",
        tags=["Reminders"],
    )

    app.include_router(
        reports.router,
        prefix="/api/v1/reports",
        tags=["Reports"],
    )

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint - redirect to docs."""
        return {
            "message": "TrainerDesk API",
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    app.add_exception_handler(AccountingError, accounting_error_handler)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """
        Catch-all exception handler.

        In production, this prevents stack traces from leaking to clients.
        We log the full error server-side but return a generic message.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error. Please contact support if this persists."
            }
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


# Create the application instance
# This is what uvicorn/gunicorn will import
app = create_app()


# For debugging/development
if __name__ == "__main__":
    import uvicorn

    # Get settings to determine log level
    settings = get_settings()

    uvicorn.run(
        "trainerdesk.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
