"""
FastAPI application for stitchstream.

Provides REST API for:
- Starting a learner session (first unit loaded before the response)
- Reading the LIVE unit and the current question
- Submitting answers (boundary level updates)
- Completing a session (track rotation)
- Pipeline status and mastery levels
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from config import Settings, get_settings
from src.core.errors import (
    InvalidBoundaryLevel,
    InvalidFactId,
    NoContentAvailable,
    SessionStartError,
    SlotNotReady,
    StitchStreamError,
    UnknownQuestion,
    UserNotInitialized,
)
from src.core.logging_setup import configure_logging
from src.db.database import build_engine, get_session_factory, init_db
from src.delivery.engine import create_learning_engine
from src.facts.remote import HttpFactSource
from src.facts.sql_store import SqlFactStore
from src.mastery.persistence import SqlMasteryPersistence

VERSION = "0.1.0"

ERROR_STATUS: dict[type[StitchStreamError], int] = {
    UserNotInitialized: 404,
    UnknownQuestion: 404,
    NoContentAvailable: 409,
    SlotNotReady: 409,
    InvalidBoundaryLevel: 422,
    InvalidFactId: 422,
    SessionStartError: 503,
}


def _status_for(error: StitchStreamError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


def _check_database_health(app: FastAPI) -> tuple[str, str | None]:
    """
    Check database connectivity.

    Returns:
        Tuple of (status, error_message). Status is "ok" or "error".
    """
    try:
        with app.state.db_engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok", None
    except SQLAlchemyError as e:
        return "error", str(e)


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Settings to use (default: cached environment settings)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup/shutdown events."""
        # Startup
        configure_logging(settings.log_level, settings.log_file)
        logger.info("Starting stitchstream service...")
        db_engine = build_engine(settings.database_url, echo=settings.log_level == "DEBUG")
        init_db(db_engine)
        session_factory = get_session_factory(db_engine)

        engine = create_learning_engine(
            settings,
            fact_store=SqlFactStore(session_factory),
            persistence=SqlMasteryPersistence(session_factory),
        )
        engine.start()
        app.state.db_engine = db_engine
        app.state.engine = engine
        logger.info(f"Service started on {settings.api_host}:{settings.api_port}")

        yield

        # Shutdown
        logger.info("Shutting down stitchstream service...")
        await engine.shutdown()
        remote = engine.preparer.remote
        if isinstance(remote, HttpFactSource):
            await remote.close()
        db_engine.dispose()

    app = FastAPI(
        title="stitchstream",
        description="""
        Buffered arithmetic practice over three rotating content tracks.

        ## Data Flow

        ```
        Curriculum -> UnitDescriptor -> (prefetch) ReadyUnit
            -> PREPARING -> READY -> LIVE -> learner
        ```
        """,
        version=VERSION,
        lifespan=lifespan,
    )

    # CORS middleware for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StitchStreamError)
    async def handle_domain_error(request: Request, exc: StitchStreamError) -> JSONResponse:
        status = _status_for(exc)
        if status >= 500:
            logger.error("{} {} failed: {}", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content={"error": exc.code, "detail": exc.message})

    # ========================================
    # Health & Status Endpoints
    # ========================================

    @app.get("/", tags=["Health"])
    def root() -> dict[str, str]:
        """Root endpoint returning service info."""
        return {
            "service": "stitchstream",
            "version": VERSION,
            "status": "ok",
        }

    @app.get("/health", tags=["Health"])
    def health_check() -> dict[str, Any]:
        """Health check with database connectivity and scheduler counters."""
        db_status, db_error = _check_database_health(app)
        stats = app.state.engine.scheduler.stats()

        result: dict[str, Any] = {
            "status": "healthy" if db_status == "ok" else "unhealthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "components": {
                "database": db_status,
                "fact_api": "configured" if settings.has_remote_facts() else "computed",
                "scheduler": "running" if stats.running else "stopped",
            },
            "prefetch": {
                "queued": stats.queued,
                "executed": stats.executed,
                "dropped": stats.dropped,
            },
        }
        if db_error:
            result["errors"] = {"database": db_error}
        return result

    # ========================================
    # Mount routers
    # ========================================

    from src.api.routers import learner_router

    app.include_router(learner_router.router, prefix="/api/learners", tags=["Learners"])
    return app


app = create_app()
