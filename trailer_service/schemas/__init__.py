"""
Pydantic schemas for request/response models.
"""

from trailer_service.schemas.responses import (
    HealthResponse,
    JobStatusResponse,
    ReadinessResponse,
    SubmitResponse,
    TrailerFailureResponse,
)

__all__ = [
    "SubmitResponse",
    "TrailerFailureResponse",
    "JobStatusResponse",
    "HealthResponse",
    "ReadinessResponse",
]
