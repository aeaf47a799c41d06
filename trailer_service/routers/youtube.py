"""
YouTube Trailer API Router - Channel sampling, trailer builds and job logs.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Optional

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from starlette.background import BackgroundTask

from trailer_service.config import get_settings
from trailer_service.schemas.responses import (
    JobStatusResponse,
    SubmitResponse,
    TrailerFailureResponse,
)
from trailer_service.services.channel_resolver import (
    ChannelResolutionError,
    YouTubeAPIError,
    YouTubeClient,
    parse_channel_reference,
)
from trailer_service.services.job_workspace import JobWorkspace, sanitize_job_id
from trailer_service.services.trailer_pipeline import (
    FailureReason,
    JobProgress,
    JobState,
    TrailerPipeline,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/youtube", tags=["YouTube Trailer"])

# Not part of the standard HTTP set; mirrors nginx's "client closed request"
STATUS_CLIENT_CLOSED_REQUEST = 499


# ============================================================================
# In-Memory Job Tracking (single process; workspaces hold the durable logs)
# ============================================================================

_job_store: dict[str, JobProgress] = {}
_cancel_events: dict[str, asyncio.Event] = {}

_job_semaphore: Optional[asyncio.Semaphore] = None


def get_job_semaphore() -> asyncio.Semaphore:
    """Get or create job semaphore."""
    global _job_semaphore
    settings = get_settings()
    if _job_semaphore is None:
        _job_semaphore = asyncio.Semaphore(settings.max_concurrent_jobs)
    return _job_semaphore


def record_progress(progress: JobProgress) -> None:
    """Progress callback for the trailer pipeline."""
    _job_store[progress.job_id] = replace(progress)
    logger.debug(f"Job {progress.job_id}: {progress.state.value} (source {progress.source_index})")


# ============================================================================
# Dependencies
# ============================================================================


async def get_trailer_pipeline(request: Request) -> TrailerPipeline:
    """Get the trailer pipeline from app state (initialized at startup)."""
    pipeline = getattr(request.app.state, "trailer_pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Trailer pipeline not initialized",
        )
    return pipeline


async def get_youtube_client(request: Request) -> YouTubeClient:
    """Build a YouTube client on the shared HTTP client, if an API key is configured."""
    settings = get_settings()
    if not settings.youtube_api_key:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing YouTube API key. Set environment variable 'YOUTUBE_API_KEY'.",
        )

    http_client: Optional[httpx.AsyncClient] = getattr(request.app.state, "http_client", None)
    if http_client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="HTTP client not initialized",
        )
    return YouTubeClient(http_client, settings.youtube_api_key)


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/submit", response_model=SubmitResponse)
async def submit_channel_url(
    url: str = Body(..., description="YouTube channel or video URL"),
    youtube: YouTubeClient = Depends(get_youtube_client),
) -> SubmitResponse:
    """
    Resolve a channel from any YouTube URL and pick random videos from it.

    The returned id names a fresh job workspace; its log can be polled right
    away and it should be passed to POST /trailer.
    """
    if not url or not url.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You must supply a YouTube channel or video URL in the request body.",
        )

    settings = get_settings()

    try:
        reference = parse_channel_reference(url)
        channel_id = await youtube.resolve_channel_id(reference)
        videos = await youtube.sample_video_urls(channel_id, settings.sample_video_count)
    except ChannelResolutionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except YouTubeAPIError as e:
        logger.error(f"YouTube API failure for {url[:100]}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Error communicating with YouTube API: {e}",
        )

    job_id = sanitize_job_id(None)
    workspace = JobWorkspace.open(settings.workspace_root, job_id)
    workspace.append_status(f"channel {channel_id} resolved from {url.strip()}")
    workspace.append_status(f"{len(videos)} video(s) selected: {', '.join(videos)}")

    return SubmitResponse(id=job_id, channel_id=channel_id, videos=videos)


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event, interval: float) -> None:
    """Set cancel_event once the client goes away."""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling trailer build")
            cancel_event.set()
            return
        await asyncio.sleep(interval)


@router.post(
    "/trailer",
    response_class=FileResponse,
    responses={
        200: {"content": {"video/webm": {}}, "description": "The assembled trailer"},
        409: {"description": "A build with this id is already running"},
        STATUS_CLIENT_CLOSED_REQUEST: {"model": TrailerFailureResponse},
        500: {"model": TrailerFailureResponse},
        503: {"model": TrailerFailureResponse},
    },
)
async def create_trailer(
    request: Request,
    urls: list[str] = Body(..., description="Video URLs, in trailer order"),
    job_id: Optional[str] = Query(None, alias="id", description="Job id from /submit"),
    cleanup: bool = Query(False, description="Delete the workspace after responding"),
    pipeline: TrailerPipeline = Depends(get_trailer_pipeline),
):
    """
    Build a trailer from a list of video URLs and stream it back.

    Only the first 20 URLs are used. Each video contributes a 4 second clip
    starting at second 3; videos that fail to download or encode are skipped.
    """
    settings = get_settings()

    references = [u.strip() for u in urls if u and u.strip()]
    if not references:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide an array of video URLs.",
        )

    job_id = sanitize_job_id(job_id)
    if job_id in _cancel_events:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A trailer build is already running for job {job_id}",
        )

    cancel_event = asyncio.Event()
    _cancel_events[job_id] = cancel_event
    watcher = asyncio.create_task(
        _watch_disconnect(request, cancel_event, settings.disconnect_poll_seconds)
    )

    try:
        workspace = JobWorkspace.open(settings.workspace_root, job_id)
        logger.info(f"Job {job_id} submitted with {len(references)} video(s)")
        async with get_job_semaphore():
            result = await pipeline.build(references, workspace, cancel_event)
    finally:
        watcher.cancel()
        _cancel_events.pop(job_id, None)
        # Progress is only tracked while the request is open; the status log outlives it
        _job_store.pop(job_id, None)

    background = BackgroundTask(workspace.dispose, remove_files=True) if cleanup else None

    if result.state == JobState.SUCCEEDED:
        return FileResponse(
            result.final_path,
            media_type=settings.trailer_media_type,
            filename=settings.trailer_filename,
            headers={"X-Job-Id": job_id},
            background=background,
        )

    if result.state == JobState.CANCELLED:
        status_code = STATUS_CLIENT_CLOSED_REQUEST
        detail = "Request cancelled."
    elif result.reason == FailureReason.INFRASTRUCTURE:
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        detail = result.error or "Required executable unavailable."
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        detail = result.error or "Failed to create trailer."

    body = TrailerFailureResponse(
        job_id=job_id,
        status=result.state.value,
        reason=result.reason.value if result.reason else None,
        detail=detail,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(),
        headers={"X-Job-Id": job_id},
        background=background,
    )


@router.get("/logs/{job_id}", response_class=PlainTextResponse)
async def get_job_logs(job_id: str) -> PlainTextResponse:
    """
    Return the job's status log as plain text.

    Safe to poll while the build is still running; returns what has been
    written so far.
    """
    settings = get_settings()
    workspace = JobWorkspace.find(settings.workspace_root, sanitize_job_id(job_id))
    if workspace is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job not found: {job_id}",
        )
    return PlainTextResponse(workspace.read_status())


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str) -> JobStatusResponse:
    """
    Get the in-memory progress of a running trailer build.

    Finished builds are no longer tracked here; use /logs/{job_id}.
    """
    job_id = sanitize_job_id(job_id)
    progress = _job_store.get(job_id)
    if progress is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job not found: {job_id}",
        )

    return JobStatusResponse(
        job_id=job_id,
        status=progress.state.value,
        source_index=progress.source_index,
        total_sources=progress.total_sources,
        clips_completed=progress.clips_completed,
        error=progress.error,
    )


@router.delete("/jobs/{job_id}", status_code=status.HTTP_202_ACCEPTED)
async def cancel_job(job_id: str) -> dict:
    """
    Cancel a running trailer build.

    The running external process is killed; the waiting /trailer request
    answers with 499.
    """
    job_id = sanitize_job_id(job_id)
    cancel_event = _cancel_events.get(job_id)
    if cancel_event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No running build for job: {job_id}",
        )

    cancel_event.set()
    logger.info(f"Cancellation requested for job {job_id}")
    return {"job_id": job_id, "status": "cancelling"}
