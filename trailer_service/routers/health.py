"""
Health check endpoints for the trailer service.
"""

import shutil

from fastapi import APIRouter

from trailer_service.config import get_settings
from trailer_service.schemas.responses import HealthResponse, ReadinessResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(
        status="healthy",
        version="1.0.0",
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check():
    """
    Readiness check endpoint.

    The service can only build trailers when both external executables
    resolve on this host.
    """
    settings = get_settings()
    ytdlp_ready = shutil.which(settings.ytdlp_path) is not None
    ffmpeg_ready = shutil.which(settings.ffmpeg_path) is not None

    return ReadinessResponse(
        ready=ytdlp_ready and ffmpeg_ready,
        ytdlp="available" if ytdlp_ready else "not_found",
        ffmpeg="available" if ffmpeg_ready else "not_found",
    )
