"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from submission_intake.api.v1.endpoints import health
from submission_intake.api.v1.router import api_router
from submission_intake.core.config import settings
from submission_intake.core.database import async_session_maker, close_database, init_database
from submission_intake.dependencies import get_mailbox_poller
from submission_intake.services.field_definition_service import FieldDefinitionService
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__, level=settings.log_level)


class RootResponse(BaseModel):
    """Root endpoint response payload."""

    message: str = Field(..., description="Service status message")
    version: str = Field(..., description="Running application version")
    docs: str = Field(..., description="Path to the interactive API docs")
    health: str = Field(..., description="Path to the health check endpoint")


async def poll_mailbox_periodically(interval_seconds: float) -> None:
    """Background task polling the mailbox; failures are logged and the loop continues."""
    poller = get_mailbox_poller()
    while True:
        try:
            result = await poller.poll_once()
            if result.new_emails_found:
                LOGGER.info(f"Poll queued {result.new_emails_found} new message(s)")
        except Exception as e:
            LOGGER.error(f"Mailbox poll failed: {e}", exc_info=True)
        await asyncio.sleep(interval_seconds)


async def seed_field_definitions() -> None:
    async with async_session_maker() as session:
        await FieldDefinitionService(session).seed_defaults()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    LOGGER.info(
        "Starting application",
        extra={
            "app_name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        },
    )

    try:
        await asyncio.wait_for(
            init_database(auto_migrate=settings.db.auto_migrate),
            timeout=settings.db_init_timeout,
        )
        LOGGER.info("Database initialized successfully")
        await seed_field_definitions()
    except asyncio.TimeoutError:
        LOGGER.error(f"Database initialization timed out after {settings.db_init_timeout}s")
    except Exception as e:
        LOGGER.error(f"Database initialization failed: {e}", exc_info=True)

    poll_task = None
    if settings.polling.enabled:
        LOGGER.info(f"Starting mailbox polling every {settings.polling.interval_seconds}s")
        poll_task = asyncio.create_task(poll_mailbox_periodically(settings.polling.interval_seconds))

    yield

    # Shutdown
    LOGGER.info("Shutting down application")

    if poll_task is not None:
        poll_task.cancel()
        try:
            await poll_task
        except asyncio.CancelledError:
            LOGGER.info("Mailbox polling task cancelled")
        await get_mailbox_poller().worker.stop()

    try:
        await close_database()
    except Exception as e:
        LOGGER.error(
            "Error closing database",
            exc_info=True,
            extra={"error": str(e)},
        )


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Commercial insurance submission intake: email classification, field extraction and reply",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid4()))
    request.state.correlation_id = correlation_id
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


# CORS middleware - added last to ensure it wraps all other middleware/responses
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)

# Include routers
app.include_router(api_router, prefix=settings.api_v1_prefix)
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get(
    "/",
    response_model=RootResponse,
    tags=["Root"],
    summary="Root endpoint",
    description="Get basic information about the API",
    operation_id="get_public_root_metadata",
)
async def root() -> RootResponse:
    """Root endpoint.

    Returns:
        RootResponse: Basic API information
    """
    return RootResponse(
        message="Server is running",
        version=settings.app_version,
        docs="/docs",
        health="/health",
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "submission_intake.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
