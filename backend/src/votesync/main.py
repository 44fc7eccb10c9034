"""FastAPI application entry point for votesync.

Electoral data sync and reconciliation REST API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .api import register_exception_handlers
from .api.sync import router as sync_router
from .config import get_settings
from .db import Database
from .logging import get_logger, setup_logging

logger = get_logger(__name__)


def create_app(db: Database | None = None) -> FastAPI:
    """Build the API application.

    Args:
        db: Store handle to use; built from settings when omitted. The
            application opens it on startup and closes it on shutdown.
    """
    settings = get_settings()
    store = db or Database.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting votesync API",
            extra={"environment": settings.environment, "debug": settings.api_debug},
        )
        if not store.is_open:
            await store.open()
        app.state.db = store

        stale = await _report_stale_runs(store)
        if stale:
            logger.warning(f"{stale} sync run(s) are stuck and need to be abandoned")

        yield

        logger.info("Shutting down votesync API")
        await store.close()

    app = FastAPI(
        title="votesync API",
        description="Electoral data sync and reconciliation",
        version="0.1.0",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Basic health check endpoint."""
        return {"status": "healthy", "service": "votesync-api"}

    @app.get("/health/ready", tags=["Health"])
    async def readiness_check():
        """Readiness check that verifies database connectivity."""
        try:
            async with app.state.db.session() as session:
                await session.execute(text("SELECT 1"))
            database = "healthy"
        except Exception as e:
            database = f"unhealthy: {e}"

        healthy = database == "healthy"
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "ready" if healthy else "not_ready",
                "checks": {"database": database},
            },
        )

    app.include_router(sync_router, prefix="/api/v1", tags=["Sync"])
    return app


async def _report_stale_runs(db: Database) -> int:
    """Log unfinished runs past the staleness threshold; never closes them."""
    from .sync.ledger import SyncRunLedger

    try:
        stale = await SyncRunLedger(db).stale_runs()
    except Exception as e:
        logger.warning(f"Could not check for stuck sync runs: {e}")
        return 0
    for run in stale:
        logger.warning(
            f"Sync run {run.id} for {run.source} started at {run.started_at} never finished",
            extra={"run_id": str(run.id), "source": run.source},
        )
    return len(stale)


def app_factory() -> FastAPI:
    """Entry point for ``uvicorn --factory votesync.main:app_factory``."""
    setup_logging()
    return create_app()
