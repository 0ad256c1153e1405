"""
GrantMatch FastAPI Application
Main entry point for the grant matching and AI analysis API.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from backend.api import ai_matching
from backend.core.config import settings
from backend.core.exceptions import GrantMatchingError
from backend.core.logging import configure_logging
from backend.database import close_db

configure_logging(settings)
logger = structlog.get_logger().bind(agent="api")


# =============================================================================
# Lifespan Events
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup logs the configuration; shutdown disposes pooled connections.
    Tables are managed by Alembic migrations.
    """
    logger.info(
        "api_starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    yield

    logger.info("api_shutting_down")
    close_db()


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="GrantMatch API",
    description="""
    Grant Matching and AI Analysis API

    - **Grant processing**: embed, index and tag grants for semantic search
    - **Matching**: rank grants for an organization with LLM compatibility analysis
    - **Semantic search**: meaning-based grant search, optionally AI re-ranked
    """,
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan,
)


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(GrantMatchingError)
async def matching_exception_handler(request: Request, exc: GrantMatchingError) -> JSONResponse:
    """Map pipeline errors to their HTTP status with the standard error body."""
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": True,
            "message": exc.message,
            "status_code": exc.status_code,
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": True,
            "message": exc.detail,
            "status_code": exc.status_code,
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("unexpected_error", path=request.url.path, error=str(exc))

    # Don't expose internal errors in production
    detail = str(exc) if settings.debug else "Internal server error"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": True,
            "message": detail,
            "status_code": 500,
        },
    )


# =============================================================================
# API Routers
# =============================================================================

app.include_router(ai_matching.router)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    return {"name": settings.app_name, "version": settings.app_version}
