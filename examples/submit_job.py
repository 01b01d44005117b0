#!/usr/bin/env python3
"""
Shorts Generator - Manual end-to-end check against a running API.

Registers (or logs in) an account, previews the cost, submits a job, polls
until it finishes and optionally downloads the shorts.

Usage Examples:
    # Default video, 5 shorts of 30 seconds
    python examples/submit_job.py

    # Custom video and segment settings
    python examples/submit_job.py --video "https://www.youtube.com/watch?v=VIDEO_ID" --count 3 --duration 45

    # Only show the price
    python examples/submit_job.py --preview-only

    # Download the finished shorts to ./test_shorts
    python examples/submit_job.py --download
"""

import argparse
import os
import sys
import time
from pathlib import Path
from typing import Optional

import httpx
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


# ============================================================================
# Configuration
# ============================================================================

class ClientConfig:
    """Client configuration loaded from environment and defaults."""

    BASE_URL = os.getenv("SHORTS_API_URL", "http://localhost:8000")
    EMAIL = os.getenv("SHORTS_EMAIL", "tester@example.com")
    PASSWORD = os.getenv("SHORTS_PASSWORD", "change-me")

    DEFAULT_VIDEO_URL = "https://www.youtube.com/watch?v=BSATK8sL4yw"

    OUTPUT_DIR = Path("test_shorts")

    # Polling configuration
    POLL_INTERVAL = 5  # seconds
    MAX_WAIT_TIME = 3600  # 1 hour max


# ============================================================================
# API Client
# ============================================================================

class ShortsAPIClient:
    """Client for the Shorts Generator API."""

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = base_url or ClientConfig.BASE_URL
        self.client = httpx.Client(base_url=self.base_url, timeout=120)

    def health_check(self) -> dict:
        response = self.client.get("/health")
        response.raise_for_status()
        return response.json()

    def authenticate(self, email: str, password: str) -> dict:
        """Log in, registering the account first if it doesn't exist."""
        response = self.client.post("/api/login", json={"email": email, "password": password})
        if response.status_code == 401:
            response = self.client.post("/api/register", json={"email": email, "password": password})
        response.raise_for_status()

        data = response.json()
        self.client.headers["Authorization"] = f"Bearer {data['token']}"
        return data["user"]

    def preview(self, video_url: str, count: int, duration: float) -> dict:
        response = self.client.post("/api/preview", json={
            "youtube_url": video_url,
            "segment_count": count,
            "segment_duration_seconds": duration,
        })
        response.raise_for_status()
        return response.json()

    def submit_job(self, video_url: str, count: int, duration: float) -> dict:
        response = self.client.post("/api/jobs", json={
            "youtube_url": video_url,
            "segment_count": count,
            "segment_duration_seconds": duration,
        })
        if response.status_code == 402:
            raise RuntimeError(response.json()["detail"])
        response.raise_for_status()
        return response.json()

    def get_job(self, job_id: str) -> dict:
        response = self.client.get(f"/api/jobs/{job_id}")
        response.raise_for_status()
        return response.json()

    def wait_for_job(self, job_id: str) -> dict:
        """Poll until the job is completed or failed."""
        start = time.time()
        last_status = None

        while time.time() - start < ClientConfig.MAX_WAIT_TIME:
            job = self.get_job(job_id)
            status = job["status"]

            if status != last_status:
                print(f"  [{time.time() - start:6.0f}s] {status} ({job['segments_completed']}/{job['segment_count']} shorts)")
                last_status = status

            if status in ("completed", "failed"):
                return job

            time.sleep(ClientConfig.POLL_INTERVAL)

        raise TimeoutError(f"Job {job_id} did not finish within {ClientConfig.MAX_WAIT_TIME}s")


def download_shorts(job: dict, output_dir: Path) -> None:
    """Download every short and thumbnail of a completed job."""
    job_dir = output_dir / job["job_id"]
    job_dir.mkdir(parents=True, exist_ok=True)

    for segment in job["segments"]:
        for url, name in (
            (segment["download_url"], f"short_{segment['index']}.mp4"),
            (segment["thumbnail_url"], f"thumb_{segment['index']}.jpg"),
        ):
            if not url:
                continue
            response = httpx.get(url, timeout=300)
            response.raise_for_status()
            (job_dir / name).write_bytes(response.content)
            print(f"  Saved {job_dir / name} ({len(response.content) / 1024 / 1024:.1f} MB)")


def main() -> int:
    parser = argparse.ArgumentParser(description="Submit a shorts job and wait for the result")
    parser.add_argument("--video", default=ClientConfig.DEFAULT_VIDEO_URL, help="YouTube URL")
    parser.add_argument("--count", type=int, default=5, help="Number of shorts")
    parser.add_argument("--duration", type=float, default=30, help="Seconds per short")
    parser.add_argument("--preview-only", action="store_true", help="Only show the price")
    parser.add_argument("--download", action="store_true", help="Download the finished shorts")
    args = parser.parse_args()

    api = ShortsAPIClient()
    print(f"API: {api.base_url} - {api.health_check()['status']}")

    user = api.authenticate(ClientConfig.EMAIL, ClientConfig.PASSWORD)
    print(f"User: {user['email']} ({user['credits']} credits)")

    preview = api.preview(args.video, args.count, args.duration)
    print(
        f"Video: {preview['video_title']} ({preview['video_duration_seconds']:.0f}s)\n"
        f"Cost: {preview['segment_count']} x {preview['credits_per_segment']} = {preview['total_cost']} credits"
        f" (can afford: {preview['can_afford']})"
    )
    if args.preview_only:
        return 0

    submitted = api.submit_job(args.video, args.count, args.duration)
    print(f"Job {submitted['job_id']} submitted, {submitted['remaining_credits']} credits left")

    job = api.wait_for_job(submitted["job_id"])
    if job["status"] == "failed":
        print(f"Job failed: {job['error']} (refunded: {job['refunded']})")
        return 1

    for segment in job["segments"]:
        print(f"  Short #{segment['index']}: {segment['start_time']:.0f}s +{segment['duration']:.0f}s")
        print(f"    preview:  {segment['preview_url']}")
        print(f"    tiktok:   {segment['share_urls'].get('tiktok')}")
    print(f"Shorts expire in {job['expires_in_days']} days")

    if args.download:
        download_shorts(job, ClientConfig.OUTPUT_DIR)

    return 0


if __name__ == "__main__":
    sys.exit(main())
