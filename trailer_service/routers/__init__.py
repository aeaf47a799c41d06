"""
FastAPI routers for the trailer service.
"""

from trailer_service.routers import health, youtube

__all__ = ["health", "youtube"]
