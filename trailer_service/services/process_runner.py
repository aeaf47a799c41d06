"""
Process Runner - Executes one external command (yt-dlp, ffmpeg) for a job.

Both output streams are drained concurrently with waiting for exit, so a chatty
process can never block on a full pipe. A job's cancellation event is raced
against the process; when it fires, the process and all of its descendants are
killed and the caller sees OperationCancelled instead of an exit code.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

import psutil

logger = logging.getLogger(__name__)

# How long to wait for pipes to close after the process tree was killed
KILL_GRACE_SECONDS = 5.0


@dataclass
class ProcessResult:
    """Outcome of a finished process. A non-zero exit code is not an error."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ProcessRunner:
    """
    Runs external commands with captured output and cooperative cancellation.

    Stateless; one instance is shared by every stage of every job.
    """

    def __init__(self, persist_output: bool = True):
        self.persist_output = persist_output

    async def run(
        self,
        command: str,
        arguments: Sequence[str],
        working_directory: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ProcessResult:
        """
        Run a command to completion.

        Args:
            command: Executable name or path
            arguments: Arguments passed verbatim (no shell)
            working_directory: Process cwd, also where output artifacts land
            cancel_event: Set to abort the process

        Returns:
            ProcessResult with exit code and decoded output

        Raises:
            ProcessStartError: If the executable could not be started
            OperationCancelled: If cancel_event was set before or during the run
        """
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled(f"Cancelled before starting {command}")

        logger.debug(f"Running: {command} {' '.join(arguments)[:200]}")

        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *arguments,
                cwd=working_directory,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProcessStartError(f"Failed to start {command}: {e}") from e

        communicate = asyncio.ensure_future(proc.communicate())
        waiters: set[asyncio.Future] = {communicate}
        cancel_wait: Optional[asyncio.Future] = None
        if cancel_event is not None:
            cancel_wait = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            logger.info(f"Task cancelled while {command} (pid {proc.pid}) was running")
            await self._kill_tree(proc, communicate)
            raise
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()

        if communicate not in done:
            logger.info(f"Cancellation requested, killing {command} (pid {proc.pid})")
            await self._kill_tree(proc, communicate)
            raise OperationCancelled(f"Cancelled while running {command}")

        stdout_bytes, stderr_bytes = communicate.result()
        result = ProcessResult(
            exit_code=proc.returncode,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )

        if self.persist_output:
            self._persist_output(command, working_directory, result)

        logger.debug(f"{command} exited with code {result.exit_code}")
        return result

    async def _kill_tree(self, proc: asyncio.subprocess.Process, communicate: asyncio.Future) -> None:
        """Kill the process and its descendants, then reap it (best effort)."""
        try:
            children = psutil.Process(proc.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            children = []

        for child in children:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass

        try:
            proc.kill()
        except ProcessLookupError:
            pass

        done, _ = await asyncio.wait({communicate}, timeout=KILL_GRACE_SECONDS)
        if communicate not in done:
            logger.warning(f"Process {proc.pid} did not exit within {KILL_GRACE_SECONDS}s of kill")
            communicate.cancel()
        elif not communicate.cancelled() and communicate.exception() is not None:
            logger.debug(f"Reaping killed process {proc.pid} failed: {communicate.exception()}")

    def _persist_output(self, command: str, working_directory: str, result: ProcessResult) -> None:
        """Write captured streams next to the job's files for later debugging."""
        program = os.path.splitext(os.path.basename(command))[0] or "process"
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        base = os.path.join(working_directory, f"{timestamp}_{program}")

        try:
            with open(f"{base}_stdout.txt", "w", encoding="utf-8") as f:
                f.write(result.stdout)
            with open(f"{base}_stderr.txt", "w", encoding="utf-8") as f:
                f.write(result.stderr)
        except OSError as e:
            logger.debug(f"Could not persist output of {program}: {e}")


class ProcessStartError(Exception):
    """Exception raised when an external executable cannot be started."""
    pass


class OperationCancelled(Exception):
    """Exception raised when a job's cancellation event interrupts a step."""
    pass
