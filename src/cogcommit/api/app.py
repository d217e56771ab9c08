"""
CogCommit FastAPI Application.

Studio API serving sync status and on-demand sync to the local dashboard.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cogcommit import __version__
from cogcommit.api.routes import sync, visuals
from cogcommit.db.store import LocalStore
from cogcommit.logging_config import setup_logging
from cogcommit.sync.client import RemoteClient
from cogcommit.sync.queue import SyncQueue

logger = logging.getLogger(__name__)


def create_app(
    store: Optional[LocalStore] = None,
    client: Optional[RemoteClient] = None,
    start_queue: bool = True,
) -> FastAPI:
    """
    Build the studio application.

    Args:
        store: Local record store (default: opened from settings at startup)
        client: Remote client (default: built from settings at startup)
        start_queue: Start the background sync queue when the cloud is configured

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan context manager for the studio application.

        Opens the local store, builds the remote client and starts the
        continuous sync queue; stops and closes them on shutdown.
        """
        try:
            setup_logging(context="api")
        except PermissionError:
            logging.basicConfig(level=logging.INFO)

        owns_store = store is None
        owns_client = client is None
        app.state.store = store or LocalStore.open()
        app.state.client = client or RemoteClient()
        app.state.queue = SyncQueue(app.state.store, app.state.client)

        if start_queue and app.state.client.is_configured:
            app.state.queue.start()
            logger.info("✓ Sync queue started")
        else:
            logger.info("Cloud sync not configured, sync queue not started")

        logger.info("Application startup complete")

        yield

        logger.info("Application shutdown initiated...")
        try:
            await app.state.queue.stop()
        except Exception as e:
            logger.error(f"Error stopping sync queue: {e}", exc_info=True)
        if owns_client:
            await app.state.client.close()
        if owns_store:
            app.state.store.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        lifespan=lifespan,
        title="CogCommit Studio API",
        description="Local API for cognitive commit sync",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Configure CORS for the studio frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:4747", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint - API health check."""
        return {
            "status": "ok",
            "message": "CogCommit Studio API is running",
            "version": __version__,
        }

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        db_status = "healthy" if app.state.store.is_healthy() else "unhealthy"

        return {
            "status": "healthy" if db_status == "healthy" else "degraded",
            "database": db_status,
        }

    app.include_router(sync.router, prefix="", tags=["sync"])
    app.include_router(visuals.router, prefix="", tags=["visuals"])
    return app
