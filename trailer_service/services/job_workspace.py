"""
Job Workspace - Private directory tree and status log for one trailer build.

Layout:
    <workspace_root>/<job_id>/
    ├── downloaded0.webm       (one per fetched source)
    ├── clip0.webm             (one per extracted clip)
    ├── concat_list.txt
    ├── trailer.webm
    ├── status.log
    └── <timestamp>_<program>_{stdout,stderr}.txt
"""

import asyncio
import logging
import os
import re
import shutil
import uuid
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

MAX_JOB_ID_LENGTH = 64

STATUS_LOG_NAME = "status.log"
MANIFEST_NAME = "concat_list.txt"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9]")

# Device names that cannot be used as directory names on Windows
_RESERVED_NAMES = {"CON", "PRN", "AUX", "NUL"} | {
    f"{prefix}{n}" for prefix in ("COM", "LPT") for n in range(1, 10)
}


def sanitize_job_id(raw: Optional[str]) -> str:
    """
    Reduce a caller-supplied job id to a safe directory name.

    Anything outside [A-Za-z0-9] is dropped. Returns a fresh random id when
    nothing usable is left.
    """
    cleaned = _UNSAFE_CHARS.sub("", raw or "")[:MAX_JOB_ID_LENGTH]
    if not cleaned:
        return uuid.uuid4().hex
    if cleaned.upper() in _RESERVED_NAMES:
        cleaned = f"job{cleaned}"
    return cleaned


class JobWorkspace:
    """Owns one job's directory. Never shared between jobs."""

    def __init__(self, root: str, job_id: str):
        self.job_id = job_id
        self.path = os.path.join(os.path.abspath(root), job_id)

    @classmethod
    def open(cls, root: str, job_id: str) -> "JobWorkspace":
        """
        Create the workspace if absent, or reuse it as-is.

        Reopening never removes prior content, so logs of an in-flight job stay
        readable from a second handle.
        """
        workspace = cls(root, job_id)
        os.makedirs(workspace.path, exist_ok=True)
        return workspace

    @classmethod
    def find(cls, root: str, job_id: str) -> Optional["JobWorkspace"]:
        """Return the existing workspace for job_id, or None. Creates nothing."""
        workspace = cls(root, job_id)
        if not os.path.isdir(workspace.path):
            return None
        return workspace

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def download_prefix(self, index: int) -> str:
        """Prefix for the downloader's output; the extension is chosen by yt-dlp."""
        return os.path.join(self.path, f"downloaded{index}")

    def clip_path(self, index: int, extension: str = "webm") -> str:
        return os.path.join(self.path, f"clip{index}.{extension}")

    @property
    def manifest_path(self) -> str:
        return os.path.join(self.path, MANIFEST_NAME)

    def final_path(self, filename: str = "trailer.webm") -> str:
        return os.path.join(self.path, filename)

    @property
    def status_log_path(self) -> str:
        return os.path.join(self.path, STATUS_LOG_NAME)

    def contains(self, path: str) -> bool:
        """True if path resolves to somewhere inside this workspace."""
        root = os.path.realpath(self.path)
        target = os.path.realpath(path)
        return os.path.commonpath([root, target]) == root

    # ------------------------------------------------------------------
    # Status log
    # ------------------------------------------------------------------

    def append_status(self, text: str) -> None:
        """
        Append one timestamped entry to the status log.

        Each entry is a single write to a file opened in append mode, so
        concurrent readers see whole entries in order. I/O errors are logged
        and swallowed.
        """
        timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
        entry = f"[{timestamp}] {text.rstrip()}\n"
        logger.info(f"[job {self.job_id}] {text.rstrip()}")

        try:
            with open(self.status_log_path, "a", encoding="utf-8") as f:
                f.write(entry)
        except OSError as e:
            logger.warning(f"Failed to append status for job {self.job_id}: {e}")

    def read_status(self) -> str:
        """Return everything logged so far (empty if nothing has been written)."""
        try:
            with open(self.status_log_path, "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return ""

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def dispose(self, remove_files: bool = False) -> None:
        """
        Release the workspace.

        With remove_files the directory tree is deleted in a worker thread;
        errors are ignored. Without it, everything stays on disk for
        inspection.
        """
        if not remove_files:
            return

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: shutil.rmtree(self.path, ignore_errors=True))
        logger.info(f"Removed workspace for job {self.job_id}")
