"""
Trailer Assembler - Splices extracted clips into the final trailer.

Uses the ffmpeg concat demuxer with stream copy: all clips share one codec
pair, so no re-encode is needed.
"""

import asyncio
import logging
import os
from typing import Optional, Sequence

from trailer_service.config import get_settings
from trailer_service.services.job_workspace import JobWorkspace
from trailer_service.services.process_runner import OperationCancelled, ProcessRunner
from trailer_service.services.source_fetcher import describe_failure

logger = logging.getLogger(__name__)


def escape_manifest_path(path: str) -> str:
    """Escape a path for a single-quoted concat demuxer directive."""
    return path.replace("'", "'\\''")


def write_concat_manifest(clip_paths: Sequence[str], manifest_path: str) -> None:
    """
    Write one `file '...'` directive per clip, in the given order.

    Raises:
        ValueError: If a clip lies outside the manifest's directory
    """
    root = os.path.realpath(os.path.dirname(manifest_path))
    lines = []
    for path in clip_paths:
        resolved = os.path.realpath(path)
        if os.path.commonpath([root, resolved]) != root:
            raise ValueError(f"Clip outside workspace: {path}")
        lines.append(f"file '{escape_manifest_path(resolved)}'\n")

    with open(manifest_path, "w", encoding="utf-8") as f:
        f.writelines(lines)


class TrailerAssembler:
    """Concatenates clips into the final artifact."""

    def __init__(self, runner: ProcessRunner):
        self.settings = get_settings()
        self.runner = runner

    def build_arguments(self, manifest_path: str, final_path: str) -> list[str]:
        return [
            "-f", "concat",
            "-safe", "0",
            "-i", manifest_path,
            "-c", "copy",
            "-y", final_path,
        ]

    async def assemble(
        self,
        clip_paths: Sequence[str],
        manifest_path: str,
        final_path: str,
        workspace: JobWorkspace,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> bool:
        """
        Build the trailer from clips in the order given.

        Returns:
            True if ffmpeg exited 0 and final_path exists

        Raises:
            NoClipsError: clip_paths is empty (nothing is run)
            ProcessStartError: ffmpeg is not installed
            OperationCancelled: the job was cancelled mid-concat
        """
        if not clip_paths:
            raise NoClipsError("No clips to concatenate")

        try:
            write_concat_manifest(clip_paths, manifest_path)
        except OSError as e:
            workspace.append_status(f"assembly failed: could not write {os.path.basename(manifest_path)}: {e}")
            return False
        workspace.append_status(f"assembly started: {len(clip_paths)} clip(s)")

        # A trailer from an earlier run of this job must not pass for this one
        self._remove_quietly(final_path)

        try:
            result = await self.runner.run(
                self.settings.ffmpeg_path,
                self.build_arguments(manifest_path, final_path),
                workspace.path,
                cancel_event,
            )
        except (OperationCancelled, asyncio.CancelledError):
            self._remove_quietly(final_path)
            raise

        if not result.ok:
            workspace.append_status(
                "assembly failed: " + describe_failure(result, self.settings.status_output_tail_chars)
            )
            self._remove_quietly(final_path)
            return False

        if not os.path.isfile(final_path):
            workspace.append_status(
                f"assembly failed: ffmpeg exited 0 but {os.path.basename(final_path)} is missing"
            )
            return False

        return True

    def _remove_quietly(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")


class NoClipsError(Exception):
    """Exception raised when assembly is requested with no clips."""
    pass
