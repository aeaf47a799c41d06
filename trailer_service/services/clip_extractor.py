"""
Clip Extractor - Cuts the fixed trailer window out of a downloaded source.

Every clip is re-encoded to the same codec pair (VP9 + Opus) so the assembler
can splice them with stream copy.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional

from trailer_service.config import get_settings
from trailer_service.services.job_workspace import JobWorkspace
from trailer_service.services.process_runner import ProcessRunner
from trailer_service.services.source_fetcher import DownloadedSource, describe_failure

logger = logging.getLogger(__name__)


@dataclass
class Clip:
    """A short re-encoded segment of one downloaded source."""

    index: int
    path: str
    start_seconds: int
    duration_seconds: int
    video_codec: str
    audio_codec: str


class ClipExtractor:
    """
    Runs ffmpeg to trim and transcode one clip.

    The primary invocation seeks on the input (`-ss` before `-i`). If that
    fails, one fallback run seeks on the output instead, which some containers
    require. There is no further retry.
    """

    def __init__(self, runner: ProcessRunner):
        self.settings = get_settings()
        self.runner = runner

    def _trim_args(self) -> list[str]:
        return [
            "-ss", str(self.settings.clip_start_seconds),
            "-t", str(self.settings.clip_duration_seconds),
        ]

    def _encode_args(self, clip_destination: str) -> list[str]:
        return [
            "-c:v", self.settings.video_codec,
            *self.settings.video_codec_args,
            "-c:a", self.settings.audio_codec,
            "-b:a", self.settings.audio_bitrate,
            "-y", clip_destination,
        ]

    def build_arguments(self, source_path: str, clip_destination: str, fallback: bool = False) -> list[str]:
        if fallback:
            return ["-i", source_path, *self._trim_args(), *self._encode_args(clip_destination)]
        return [*self._trim_args(), "-i", source_path, *self._encode_args(clip_destination)]

    async def extract(
        self,
        source: DownloadedSource,
        clip_destination: str,
        workspace: JobWorkspace,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[Clip]:
        """
        Produce the clip for one source.

        Returns:
            Clip if the last attempt exited 0 and wrote clip_destination, else None

        Raises:
            ProcessStartError: ffmpeg is not installed
            OperationCancelled: the job was cancelled mid-encode
        """
        index = source.index
        tail = self.settings.status_output_tail_chars
        exit_code = None

        for label, fallback in (("primary", False), ("fallback", True)):
            result = await self.runner.run(
                self.settings.ffmpeg_path,
                self.build_arguments(source.path, clip_destination, fallback=fallback),
                workspace.path,
                cancel_event,
            )
            exit_code = result.exit_code
            if result.ok:
                workspace.append_status(f"clip[{index}] {label} extraction succeeded")
                break
            workspace.append_status(
                f"clip[{index}] {label} extraction failed: " + describe_failure(result, tail)
            )

        if exit_code != 0:
            return None

        if not os.path.isfile(clip_destination):
            workspace.append_status(
                f"clip[{index}] extraction failed: ffmpeg exited 0 but "
                f"{os.path.basename(clip_destination)} is missing"
            )
            return None

        return Clip(
            index=index,
            path=clip_destination,
            start_seconds=self.settings.clip_start_seconds,
            duration_seconds=self.settings.clip_duration_seconds,
            video_codec=self.settings.video_codec,
            audio_codec=self.settings.audio_codec,
        )
