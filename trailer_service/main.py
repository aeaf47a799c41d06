"""
FastAPI application entry point for the channel trailer service.

Given any YouTube channel or video URL, the service samples a few of the
channel's recent videos and builds a short WebM trailer from them using
yt-dlp and FFmpeg.
"""

import logging
import os
import shutil
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trailer_service.config import get_settings
from trailer_service.routers import health, youtube
from trailer_service.services.process_runner import ProcessRunner
from trailer_service.services.trailer_pipeline import TrailerPipeline

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    Creates the shared HTTP client and trailer pipeline; closes the client on shutdown.
    """
    settings = get_settings()
    logger.info("Starting channel trailer service...")

    # Job workspaces are kept after shutdown so their logs stay inspectable
    os.makedirs(settings.workspace_root, exist_ok=True)
    logger.info(f"Workspace root: {settings.workspace_root}")
    logger.info(f"Max concurrent jobs: {settings.max_concurrent_jobs}")

    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    app.state.http_client = http_client
    app.state.trailer_pipeline = TrailerPipeline(
        runner=ProcessRunner(),
        progress_callback=youtube.record_progress,
    )

    # Verify external tools
    _verify_external_tools()

    logger.info("Trailer service ready to accept requests.")

    yield

    logger.info("Shutting down channel trailer service...")
    await http_client.aclose()
    app.state.trailer_pipeline = None
    logger.info("Shutdown complete")


def _verify_external_tools():
    """Verify that required external tools are available."""
    settings = get_settings()
    tools = {
        settings.ffmpeg_path: "FFmpeg for clip extraction and concatenation",
        settings.ytdlp_path: "yt-dlp for YouTube downloads",
    }

    for tool, description in tools.items():
        if shutil.which(tool):
            logger.info(f"✓ {description} available")
        else:
            logger.warning(f"✗ {description} NOT FOUND - trailer builds will fail")


# Create FastAPI application
app = FastAPI(
    title="Channel Trailer",
    description="""
Builds a short trailer from a YouTube channel's videos.

## Usage

1. Pick videos: `POST /api/youtube/submit` with a channel or video URL
2. Build: `POST /api/youtube/trailer?id={id}` with the video URLs; the response is the WebM trailer
3. Follow progress: poll `GET /api/youtube/logs/{id}` while the build runs
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict to specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Job-Id", "Content-Disposition"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(youtube.router)


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    settings = get_settings()
    return {
        "service": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }
