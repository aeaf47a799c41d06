"""
Services for the trailer builder.

Includes:
- Trailer pipeline (process runner, workspace, fetch, extract, assemble)
- YouTube channel resolution and video sampling
"""

from trailer_service.services.channel_resolver import YouTubeClient, parse_channel_reference
from trailer_service.services.clip_extractor import ClipExtractor
from trailer_service.services.job_workspace import JobWorkspace, sanitize_job_id
from trailer_service.services.process_runner import ProcessRunner
from trailer_service.services.source_fetcher import SourceFetcher
from trailer_service.services.trailer_assembler import TrailerAssembler
from trailer_service.services.trailer_pipeline import TrailerPipeline

__all__ = [
    # Pipeline
    "ProcessRunner",
    "JobWorkspace",
    "sanitize_job_id",
    "SourceFetcher",
    "ClipExtractor",
    "TrailerAssembler",
    "TrailerPipeline",
    # YouTube
    "YouTubeClient",
    "parse_channel_reference",
]
