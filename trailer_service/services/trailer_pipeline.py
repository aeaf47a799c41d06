"""
Trailer Pipeline - Orchestrates one trailer build from references to artifact.

Per job, strictly sequential:
1. For each reference (capped at max_videos): download via yt-dlp
2. Cut and re-encode a fixed clip from the download
3. Concatenate all clips, in source order, into the trailer

A source that fails to download or encode is skipped. Only "no clips at all",
a failed concat, or a missing executable fail the job.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence

from trailer_service.config import get_settings
from trailer_service.services.clip_extractor import Clip, ClipExtractor
from trailer_service.services.job_workspace import JobWorkspace
from trailer_service.services.process_runner import (
    OperationCancelled,
    ProcessRunner,
    ProcessStartError,
)
from trailer_service.services.source_fetcher import DownloadedSource, SourceFetcher
from trailer_service.services.trailer_assembler import NoClipsError, TrailerAssembler

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    """State of a trailer build."""

    CREATED = "created"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    ASSEMBLING = "assembling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FailureReason(str, Enum):
    """Why a build ended in JobState.FAILED."""

    NO_CLIPS = "no_clips"
    ASSEMBLY = "assembly"
    INFRASTRUCTURE = "infrastructure"


TERMINAL_STATES = {JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED}


@dataclass
class JobProgress:
    """Progress snapshot reported on every state change."""

    job_id: str
    state: JobState
    source_index: Optional[int] = None
    total_sources: int = 0
    clips_completed: int = 0
    error: Optional[str] = None


@dataclass
class TrailerBuildResult:
    """Terminal outcome of a trailer build."""

    job_id: str
    state: JobState
    final_path: Optional[str] = None
    reason: Optional[FailureReason] = None
    error: Optional[str] = None
    downloads: list[DownloadedSource] = field(default_factory=list)
    clips: list[Clip] = field(default_factory=list)
    processing_time_seconds: float = 0

    @property
    def succeeded(self) -> bool:
        return self.state == JobState.SUCCEEDED


class TrailerPipeline:
    """
    Drives fetch, extract and assemble for one job at a time.

    The same instance can serve concurrent jobs: all per-job state lives in the
    workspace and in locals of build().
    """

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        progress_callback: Optional[Callable[[JobProgress], None]] = None,
    ):
        self.settings = get_settings()
        self.runner = runner or ProcessRunner()
        self.progress_callback = progress_callback

        self.source_fetcher = SourceFetcher(self.runner)
        self.clip_extractor = ClipExtractor(self.runner)
        self.trailer_assembler = TrailerAssembler(self.runner)

    def _update_progress(self, progress: JobProgress, state: JobState, **changes) -> None:
        progress.state = state
        for key, value in changes.items():
            setattr(progress, key, value)
        if self.progress_callback:
            try:
                self.progress_callback(progress)
            except Exception as e:
                logger.warning(f"Progress callback failed for job {progress.job_id}: {e}")

    async def build(
        self,
        references: Sequence[str],
        workspace: JobWorkspace,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TrailerBuildResult:
        """
        Build a trailer from references into workspace.

        Args:
            references: Video URLs in trailer order; extras beyond max_videos are dropped
            workspace: The job's workspace (already opened)
            cancel_event: Set to cancel; checked before each source and raced
                against every external process

        Returns:
            TrailerBuildResult in a terminal state. Task cancellation is
            re-raised after being recorded in the status log.
        """
        start_time = time.time()
        job_id = workspace.job_id
        cancel_event = cancel_event or asyncio.Event()

        max_videos = self.settings.max_videos
        sources = list(references[:max_videos])
        progress = JobProgress(job_id=job_id, state=JobState.CREATED, total_sources=len(sources))
        self._update_progress(progress, JobState.CREATED)

        workspace.append_status(f"job {job_id} started with {len(sources)} source(s)")
        if len(references) > max_videos:
            workspace.append_status(
                f"{len(references) - max_videos} source(s) beyond the limit of {max_videos} ignored"
            )

        result = TrailerBuildResult(job_id=job_id, state=JobState.CREATED)

        def finish(state: JobState, reason: Optional[FailureReason] = None, error: Optional[str] = None):
            result.state = state
            result.reason = reason
            result.error = error
            result.processing_time_seconds = time.time() - start_time
            self._update_progress(progress, state, error=error)
            return result

        try:
            for index, reference in enumerate(sources):
                if cancel_event.is_set():
                    workspace.append_status(f"job cancelled before source[{index}]")
                    return finish(JobState.CANCELLED, error="Job cancelled")

                self._update_progress(progress, JobState.FETCHING, source_index=index)
                download = await self.source_fetcher.fetch(index, reference, workspace, cancel_event)
                if download is None:
                    continue
                result.downloads.append(download)

                self._update_progress(progress, JobState.EXTRACTING, source_index=index)
                clip = await self.clip_extractor.extract(
                    download, workspace.clip_path(index), workspace, cancel_event
                )
                if clip is None:
                    continue
                result.clips.append(clip)
                progress.clips_completed = len(result.clips)

            if cancel_event.is_set():
                workspace.append_status("job cancelled before assembly")
                return finish(JobState.CANCELLED, error="Job cancelled")

            self._update_progress(progress, JobState.ASSEMBLING, source_index=None)
            final_path = workspace.final_path(self.settings.trailer_filename)
            try:
                assembled = await self.trailer_assembler.assemble(
                    [clip.path for clip in result.clips],
                    workspace.manifest_path,
                    final_path,
                    workspace,
                    cancel_event,
                )
            except NoClipsError:
                workspace.append_status("job failed: no clips were produced from any source")
                return finish(JobState.FAILED, FailureReason.NO_CLIPS, "Failed to create any clips.")

            if not assembled:
                workspace.append_status("job failed: clips could not be concatenated")
                return finish(
                    JobState.FAILED,
                    FailureReason.ASSEMBLY,
                    "Failed to concatenate clips into trailer.",
                )

            result.final_path = final_path
            workspace.append_status(
                f"job succeeded: {len(result.clips)} clip(s) assembled into {self.settings.trailer_filename}"
            )
            logger.info(
                f"Job {job_id} completed in {time.time() - start_time:.1f}s "
                f"with {len(result.clips)}/{len(sources)} clips"
            )
            return finish(JobState.SUCCEEDED)

        except OperationCancelled as e:
            workspace.append_status(f"job cancelled: {e}")
            return finish(JobState.CANCELLED, error="Job cancelled")

        except ProcessStartError as e:
            workspace.append_status(f"job failed: {e}")
            logger.error(f"Job {job_id} failed on infrastructure: {e}")
            return finish(JobState.FAILED, FailureReason.INFRASTRUCTURE, str(e))

        except OSError as e:
            workspace.append_status(f"job failed: workspace I/O error: {e}")
            logger.exception(f"Job {job_id} failed on workspace I/O: {e}")
            return finish(JobState.FAILED, FailureReason.INFRASTRUCTURE, str(e))

        except asyncio.CancelledError:
            workspace.append_status("job cancelled: request task was cancelled")
            finish(JobState.CANCELLED, error="Job cancelled")
            raise
