"""FastAPI application entry point."""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from twincast.config import settings
from twincast.container import Container, build_container
from twincast.routes import agents, webhooks

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def create_app(container: Optional[Container] = None, start_workers: bool = settings.ENABLE_WORKERS) -> FastAPI:
    """
    Build the application.

    Args:
        container: Pre-wired components; built from settings on startup if omitted
        start_workers: Run the worker pool inside the API process
    """
    app = FastAPI(
        title="twincast",
        description="Digital twins for Farcaster users",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(agents.router)
    app.include_router(webhooks.router)
    app.state.container = container

    @app.on_event("startup")
    def startup_event():
        """Create tables, wire services and start the workers."""
        logger.info("Starting application...")
        if app.state.container is None:
            app.state.container = build_container()
        app.state.container.create_tables()

        if start_workers:
            app.state.container.worker_pool().start()
            logger.info("Background workers started")

    @app.on_event("shutdown")
    def shutdown_event():
        """Stop the workers and close HTTP clients."""
        logger.info("Shutting down application...")
        if app.state.container is not None:
            app.state.container.close()

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
