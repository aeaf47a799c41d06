#!/usr/bin/env python3
"""
Channel Trailer - command line client for the trailer API.

Picks videos from a channel, builds the trailer while following the job's
status log, and saves the WebM.

Usage Examples:
    # Sample 3 videos from a channel and build a trailer
    python trailer_job.py --channel "https://www.youtube.com/@somechannel"

    # Build from explicit video URLs (no API key needed on the server)
    python trailer_job.py --video "https://www.youtube.com/watch?v=A" --video "https://youtu.be/B"

    # Remove the server-side workspace once the trailer is downloaded
    python trailer_job.py --channel "https://www.youtube.com/@somechannel" --cleanup

    # Print the status log of an earlier job
    python trailer_job.py --logs-only JOB_ID
"""

import argparse
import os
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import requests
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


# ============================================================================
# Configuration
# ============================================================================

class ClientConfig:
    """Client configuration loaded from environment and defaults."""

    BASE_URL = os.getenv("TRAILER_API_URL", "http://localhost:8000")

    OUTPUT_DIR = Path("trailers")

    # Polling configuration
    POLL_INTERVAL = 2  # seconds
    MAX_WAIT_TIME = 1800


# ============================================================================
# API Client
# ============================================================================

class TrailerAPIClient:
    """Client for interacting with the trailer API."""

    def __init__(self, base_url: str = None):
        self.base_url = (base_url or ClientConfig.BASE_URL).rstrip("/")
        self.session = requests.Session()

    def health_check(self) -> dict:
        """Check API health status."""
        response = self.session.get(f"{self.base_url}/health")
        response.raise_for_status()
        return response.json()

    def submit_channel(self, channel_url: str) -> dict:
        """Resolve a channel URL and get sampled video URLs plus a job id."""
        response = self.session.post(f"{self.base_url}/api/youtube/submit", json=channel_url)
        response.raise_for_status()
        return response.json()

    def build_trailer(self, job_id: str, videos: list[str], cleanup: bool = False) -> requests.Response:
        """Request the trailer; blocks until the build finishes."""
        return self.session.post(
            f"{self.base_url}/api/youtube/trailer",
            params={"id": job_id, "cleanup": str(cleanup).lower()},
            json=videos,
            timeout=ClientConfig.MAX_WAIT_TIME,
        )

    def get_logs(self, job_id: str) -> str:
        """Get the job's status log so far."""
        response = self.session.get(f"{self.base_url}/api/youtube/logs/{job_id}")
        response.raise_for_status()
        return response.text

    def cancel_job(self, job_id: str) -> dict:
        """Cancel a running build."""
        response = self.session.delete(f"{self.base_url}/api/youtube/jobs/{job_id}")
        response.raise_for_status()
        return response.json()


# ============================================================================
# Runner
# ============================================================================

def print_status(message: str, status: str = "INFO"):
    """Print status message with timestamp."""
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] {status:<8} {message}")


def follow_logs(client: TrailerAPIClient, job_id: str, done: threading.Event, seen: int = 0) -> int:
    """Print new status log lines until done is set. Returns characters printed."""
    while True:
        finished = done.wait(ClientConfig.POLL_INTERVAL)
        try:
            text = client.get_logs(job_id)
        except requests.RequestException:
            text = ""
        if len(text) > seen:
            for line in text[seen:].splitlines():
                print(f"    {line}")
            seen = len(text)
        if finished:
            return seen


def run_job(
    client: TrailerAPIClient,
    channel_url: Optional[str],
    videos: list[str],
    cleanup: bool,
) -> Optional[Path]:
    """Submit, build while following logs, and save the trailer."""
    job_id = None
    if channel_url:
        try:
            submitted = client.submit_channel(channel_url)
        except requests.HTTPError as e:
            print_status(f"Failed to submit channel: {e}", "ERROR")
            print_status(f"Response: {e.response.text if e.response is not None else 'N/A'}", "ERROR")
            return None
        job_id = submitted["id"]
        videos = submitted["videos"]
        print_status(f"Channel: {submitted['channel_id']}")
        for url in videos:
            print_status(f"Video: {url}")

    if not videos:
        print_status("No videos to build a trailer from", "ERROR")
        return None

    outcome = {}
    done = threading.Event()

    def build():
        try:
            outcome["response"] = client.build_trailer(job_id, videos, cleanup=cleanup)
        except requests.RequestException as e:
            outcome["error"] = e
        finally:
            done.set()

    start_time = time.time()
    worker = threading.Thread(target=build, daemon=True)
    worker.start()

    # Without an id from /submit, the server assigns one; logs are only
    # followable once the response names it.
    if job_id:
        print_status(f"Building trailer for job {job_id}", "PROGRESS")
        try:
            follow_logs(client, job_id, done)
        except KeyboardInterrupt:
            print_status("Cancelling...", "WARNING")
            client.cancel_job(job_id)
            done.wait()
    else:
        print_status("Building trailer", "PROGRESS")
        done.wait()

    worker.join()
    elapsed = time.time() - start_time

    if "error" in outcome:
        print_status(f"Request failed: {outcome['error']}", "ERROR")
        return None

    response = outcome["response"]
    job_id = response.headers.get("X-Job-Id", job_id)
    if response.status_code != 200:
        try:
            detail = response.json().get("detail")
        except ValueError:
            detail = response.text
        print_status(f"Job {job_id} ended with HTTP {response.status_code}: {detail}", "ERROR")
        return None

    ClientConfig.OUTPUT_DIR.mkdir(exist_ok=True)
    output_path = ClientConfig.OUTPUT_DIR / f"trailer_{job_id}.webm"
    output_path.write_bytes(response.content)
    print_status(
        f"Saved {output_path} ({len(response.content) / 1024 / 1024:.1f} MB) in {elapsed:.1f}s",
        "SUCCESS",
    )
    return output_path


def main():
    parser = argparse.ArgumentParser(description="Build a YouTube channel trailer")
    parser.add_argument("--url", default=None, help="API base URL")
    parser.add_argument("--channel", help="Channel or video URL to sample videos from")
    parser.add_argument("--video", action="append", default=[], help="Video URL (repeatable)")
    parser.add_argument("--cleanup", action="store_true", help="Delete the server workspace afterwards")
    parser.add_argument("--logs-only", metavar="JOB_ID", help="Print the status log of a job and exit")
    args = parser.parse_args()

    client = TrailerAPIClient(base_url=args.url)

    try:
        health = client.health_check()
        print_status(f"API {client.base_url} is {health.get('status')}")
    except requests.RequestException as e:
        print_status(f"API not reachable at {client.base_url}: {e}", "ERROR")
        sys.exit(1)

    if args.logs_only:
        try:
            print(client.get_logs(args.logs_only))
        except requests.HTTPError as e:
            print_status(f"No logs for {args.logs_only}: {e}", "ERROR")
            sys.exit(1)
        return

    if not args.channel and not args.video:
        parser.error("either --channel or --video is required")

    output = run_job(client, args.channel, args.video, args.cleanup)
    sys.exit(0 if output else 1)


if __name__ == "__main__":
    main()
