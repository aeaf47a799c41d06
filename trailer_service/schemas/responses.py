"""
Response schemas for the trailer API.

These schemas define the JSON format consumed by the web UI.
"""

from typing import Optional

from pydantic import BaseModel, Field


class SubmitResponse(BaseModel):
    """Videos picked from a channel, plus the job id to build and poll with."""

    id: str = Field(..., description="Job id; pass to /trailer?id= and /logs/{id}")
    channel_id: str = Field(..., description="Resolved YouTube channel id")
    videos: list[str] = Field(..., description="Randomly sampled watch URLs")

    class Config:
        json_schema_extra = {
            "example": {
                "id": "3f2b9c6a0d5e4f1a8b7c6d5e4f3a2b1c",
                "channel_id": "UC_x5XG1OV2P6uZZ5FSM9Ttw",
                "videos": [
                    "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
                    "https://www.youtube.com/watch?v=9bZkp7q19f0",
                ],
            }
        }


class TrailerFailureResponse(BaseModel):
    """Body returned when a trailer build does not produce a file."""

    job_id: str
    status: str = Field(..., description="Terminal job state: failed or cancelled")
    reason: Optional[str] = Field(
        default=None, description="Failure class: no_clips, assembly or infrastructure"
    )
    detail: str


class JobStatusResponse(BaseModel):
    """In-memory progress of a trailer build."""

    job_id: str
    status: str
    source_index: Optional[int] = None
    total_sources: int = 0
    clips_completed: int = 0
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether the service can build trailers")
    ytdlp: str = Field(..., description="yt-dlp executable status")
    ffmpeg: str = Field(..., description="ffmpeg executable status")
