"""
FastAPI Application Entry Point.

Creates the tts-proxy application: logging, routes, and the lifespan that
owns the pipeline's background sweeps and the provider HTTP client.

Usage:
    # Run with uvicorn
    uvicorn tts_proxy.main:app --host 0.0.0.0 --port 8000

    # Or use the module directly
    python -m uvicorn tts_proxy.main:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from tts_proxy.api.dependencies import get_settings, start_pipeline, stop_pipeline
from tts_proxy.api.routes import router
from tts_proxy.core.config import config_summary
from tts_proxy.core.logging import configure_logging, get_logger, info


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the pipeline's sweeps on startup; close the provider client on shutdown."""
    info(get_logger("tts-proxy"), "startup", **config_summary(get_settings()))
    start_pipeline()
    try:
        yield
    finally:
        await stop_pipeline()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured application instance ready to serve requests.
    """
    # Reads TTS_PROXY_LOG_LEVEL and the logging section of settings.yaml
    configure_logging()

    app = FastAPI(title="tts-proxy", lifespan=lifespan)
    app.include_router(router)

    return app


# Global application instance for ASGI servers (uvicorn, gunicorn, etc.)
app = create_app()
