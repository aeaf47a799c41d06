"""
Pytest configuration and fixtures.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from trailer_service.config import get_settings
from trailer_service.services.job_workspace import JobWorkspace
from trailer_service.services.process_runner import OperationCancelled, ProcessResult


class FakeRunner:
    """
    Stands in for ProcessRunner without yt-dlp or ffmpeg.

    Behaviour is scripted per reference / source file name:
    - yt-dlp writes `<prefix>.webm` unless the reference is in failing_references
    - ffmpeg clip runs write the destination unless the source file name is in
      failing_sources (both attempts fail) or primary_failures (only the
      primary attempt fails)
    - ffmpeg concat writes the manifest text into the final file
    """

    def __init__(self):
        self.calls: list[tuple[str, list[str]]] = []
        self.failing_references: set[str] = set()
        self.empty_downloads: set[str] = set()
        self.failing_sources: set[str] = set()
        self.primary_failures: set[str] = set()
        self.fail_concat = False
        self.before_run = None  # Optional hook(command, arguments)

    async def run(self, command, arguments, working_directory, cancel_event=None):
        arguments = list(arguments)
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled(f"Cancelled before starting {command}")

        self.calls.append((command, arguments))
        if self.before_run is not None:
            self.before_run(command, arguments)

        if command == "yt-dlp":
            return self._download(arguments)
        if arguments[:2] == ["-f", "concat"]:
            return self._concat(arguments)
        return self._clip(arguments)

    def _download(self, arguments):
        reference = arguments[-1]
        if reference in self.failing_references:
            return ProcessResult(1, "", f"ERROR: [youtube] {reference}: Video unavailable")
        if reference not in self.empty_downloads:
            template = arguments[arguments.index("-o") + 1]
            with open(template.replace("%(ext)s", "webm"), "wb") as f:
                f.write(reference.encode())
        return ProcessResult(0, "[download] 100%", "")

    def _clip(self, arguments):
        source = os.path.basename(arguments[arguments.index("-i") + 1])
        destination = arguments[-1]
        fallback = arguments[0] == "-i"

        if source in self.failing_sources or (source in self.primary_failures and not fallback):
            return ProcessResult(1, "", f"{source}: Invalid data found when processing input")

        with open(destination, "wb") as f:
            f.write(b"clip:" + source.encode())
        return ProcessResult(0, "", "")

    def _concat(self, arguments):
        if self.fail_concat:
            return ProcessResult(1, "", "Non-monotonous DTS in output stream")

        manifest = arguments[arguments.index("-i") + 1]
        final_path = arguments[-1]
        with open(manifest, "r", encoding="utf-8") as src, open(final_path, "w", encoding="utf-8") as dst:
            dst.write(src.read())
        return ProcessResult(0, "", "")

    def commands(self, name):
        return [args for command, args in self.calls if command == name]


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point workspaces at a temp dir and drop any cached settings."""
    monkeypatch.setenv("WORKSPACE_ROOT", str(tmp_path / "workspaces"))
    monkeypatch.delenv("YOUTUBE_API_KEY", raising=False)
    monkeypatch.delenv("YTDLP_PROXY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def workspace_root(tmp_path):
    return str(tmp_path / "workspaces")


@pytest.fixture
def workspace(workspace_root):
    """A fresh workspace for job 'job1'."""
    return JobWorkspace.open(workspace_root, "job1")


@pytest.fixture
def fake_runner():
    return FakeRunner()
