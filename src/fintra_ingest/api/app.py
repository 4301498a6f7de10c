"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fintra_ingest.api.deps import AppState
from fintra_ingest.api.routes import router
from fintra_ingest.api.schemas import ErrorResponse
from fintra_ingest.core.config import FintraConfig, load_config
from fintra_ingest.core.exceptions import AuthorizationError, FintraError
from fintra_ingest.ingestion.bulk import BulkSnapshotLoader
from fintra_ingest.ingestion.store import create_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    config = app.state._pending_config or load_config()
    store = await create_store(config.storage)

    app.state.app_state = AppState(
        config=config,
        store=store,
        loader=BulkSnapshotLoader.from_config(config.fmp),
    )

    yield

    await store.close()


def create_app(config: FintraConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    import fintra_ingest

    app = FastAPI(
        title="Fintra Ingest API",
        description="Scheduled financial data ingestion jobs",
        version=fintra_ingest.__version__,
        lifespan=lifespan,
    )

    # Stash config so lifespan can retrieve it
    app.state._pending_config = config

    app.include_router(router, prefix="/api")

    # Exception handlers
    @app.exception_handler(FintraError)
    async def fintra_exception_handler(request: Request, exc: FintraError):
        status = 401 if isinstance(exc, AuthorizationError) else 500
        return JSONResponse(
            status_code=status, content=ErrorResponse(error=str(exc)).model_dump()
        )

    return app
