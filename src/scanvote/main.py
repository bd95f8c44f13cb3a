"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scanvote.api.routes import router
from scanvote.config import get_settings
from scanvote.service import ScanService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ScanVote (catalog=%s, max_concurrent=%s, frames=%s/%s)",
        settings.catalog_path,
        settings.max_concurrent,
        settings.frames_per_attempt_desktop,
        settings.frames_per_attempt_mobile,
    )

    scan_service = ScanService.from_settings(settings)
    app.state.scan_service = scan_service

    logger.info("ScanVote ready (%d identities)", len(scan_service.catalog))
    yield

    logger.info("Shutting down ScanVote")
    await scan_service.shutdown()
    logger.info("ScanVote shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ScanVote",
        description="Multi-frame consensus recognition of people and artworks",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run("scanvote.main:app", host=settings.host, port=settings.port)
