"""
Source Fetcher - Downloads one video reference with yt-dlp.

A failed download is a per-source failure: it is logged to the job's status
log and reported as None so the pipeline moves on to the next reference.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional

from trailer_service.config import get_settings
from trailer_service.services.job_workspace import JobWorkspace
from trailer_service.services.process_runner import ProcessResult, ProcessRunner

logger = logging.getLogger(__name__)

# Leftovers of an interrupted or in-progress yt-dlp download
PARTIAL_SUFFIXES = (".part", ".ytdl", ".temp")


@dataclass
class DownloadedSource:
    """Best available local copy of one input reference."""

    index: int
    path: str
    file_size_bytes: int


def select_downloaded_file(destination_prefix: str) -> Optional[str]:
    """
    Pick the downloaded file for a prefix.

    yt-dlp decides the extension, so every `<prefix>.*` file is a candidate
    except partial-download leftovers. The smallest file wins; equal sizes are
    ordered by file name.
    """
    directory = os.path.dirname(destination_prefix) or "."
    stem = os.path.basename(destination_prefix) + "."

    try:
        names = os.listdir(directory)
    except FileNotFoundError:
        return None

    candidates = []
    for name in names:
        if not name.startswith(stem) or name.endswith(PARTIAL_SUFFIXES):
            continue
        path = os.path.join(directory, name)
        if os.path.isfile(path):
            candidates.append((os.path.getsize(path), name, path))

    if not candidates:
        return None
    return min(candidates)[2]


def remove_previous_downloads(destination_prefix: str) -> int:
    """
    Delete every `<prefix>.*` file, partial leftovers included.

    yt-dlp skips a URL whose output file already exists, so a reused
    workspace must not keep an earlier build's download for this index.

    Returns:
        Number of files removed

    Raises:
        OSError: If the directory cannot be listed or a file cannot be removed
    """
    directory = os.path.dirname(destination_prefix) or "."
    stem = os.path.basename(destination_prefix) + "."

    removed = 0
    for name in os.listdir(directory):
        path = os.path.join(directory, name)
        if name.startswith(stem) and os.path.isfile(path):
            os.remove(path)
            removed += 1
    return removed


def describe_failure(result: ProcessResult, tail_chars: int) -> str:
    """Format exit code and output tails for a status log entry."""
    stdout = result.stdout.strip()[-tail_chars:]
    stderr = result.stderr.strip()[-tail_chars:]
    return f"exit code {result.exit_code}\n--- stdout ---\n{stdout}\n--- stderr ---\n{stderr}"


class SourceFetcher:
    """
    Downloads videos via the yt-dlp executable.

    Format: best video up to the height ceiling plus best audio, falling back to
    the best single file, merged into the delivery container.
    """

    def __init__(self, runner: ProcessRunner):
        self.settings = get_settings()
        self.runner = runner

    def _get_format_selector(self) -> str:
        height = self.settings.max_video_height
        return f"bestvideo[height<={height}]+bestaudio/best[height<={height}]/best"

    def build_arguments(self, reference: str, destination_prefix: str) -> list[str]:
        args = [
            "--no-playlist",
            "-f", self._get_format_selector(),
            "--merge-output-format", self.settings.merge_output_format,
            "-o", f"{destination_prefix}.%(ext)s",
        ]
        if self.settings.ytdlp_proxy:
            args.extend(["--proxy", self.settings.ytdlp_proxy])
        args.append(reference)
        return args

    async def fetch(
        self,
        index: int,
        reference: str,
        workspace: JobWorkspace,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[DownloadedSource]:
        """
        Download one reference into the workspace.

        Returns:
            DownloadedSource, or None if the download failed or produced no file

        Raises:
            ProcessStartError: yt-dlp is not installed
            OperationCancelled: the job was cancelled mid-download
        """
        destination_prefix = workspace.download_prefix(index)
        workspace.append_status(f"source[{index}] fetch started: {reference}")

        try:
            removed = remove_previous_downloads(destination_prefix)
        except OSError as e:
            workspace.append_status(f"source[{index}] fetch failed: could not clear earlier download: {e}")
            return None
        if removed:
            workspace.append_status(f"source[{index}] removed {removed} file(s) from an earlier build")

        result = await self.runner.run(
            self.settings.ytdlp_path,
            self.build_arguments(reference, destination_prefix),
            workspace.path,
            cancel_event,
        )

        if not result.ok:
            workspace.append_status(
                f"source[{index}] fetch failed: "
                + describe_failure(result, self.settings.status_output_tail_chars)
            )
            return None

        try:
            path = select_downloaded_file(destination_prefix)
            file_size = os.path.getsize(path) if path else 0
        except OSError as e:
            workspace.append_status(f"source[{index}] fetch failed: could not inspect download: {e}")
            return None

        if path is None:
            workspace.append_status(
                f"source[{index}] fetch failed: downloader exited 0 but no file matches "
                f"{os.path.basename(destination_prefix)}.*"
            )
            return None

        workspace.append_status(
            f"source[{index}] fetched: {os.path.basename(path)} ({file_size / 1024 / 1024:.1f} MB)"
        )
        return DownloadedSource(index=index, path=path, file_size_bytes=file_size)
