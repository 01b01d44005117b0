"""
Video Downloader Service - Probes and downloads source videos with yt-dlp.

Probing reads title and duration without downloading. Materializing downloads
the source into the job's work directory and measures the real duration with
ffprobe.
"""

import asyncio
import json
import logging
import os
import random
import re
import subprocess
from dataclasses import dataclass
from typing import Optional

import yt_dlp

from app.config import get_settings

logger = logging.getLogger(__name__)


# User-Agent rotation list for avoiding detection
UA_LIST = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:89.0) Gecko/20100101 Firefox/89.0",
    "Mozilla/5.0 (X11; Linux x86_64; rv:89.0) Gecko/20100101 Firefox/89.0",
]

YOUTUBE_URL_PATTERN = re.compile(r"^https?://([a-z0-9-]+\.)*(youtube\.com|youtu\.be)/", re.IGNORECASE)


def is_youtube_url(url: str) -> bool:
    """Check whether a source reference looks like a YouTube URL."""
    return bool(url) and YOUTUBE_URL_PATTERN.match(url.strip()) is not None


@dataclass
class SourceInfo:
    """Metadata read from the source before downloading."""

    title: str
    duration_seconds: float
    uploader: Optional[str] = None
    thumbnail_url: Optional[str] = None


class VideoDownloaderService:
    """
    Service for fetching source videos.

    Features:
    - Metadata probe without downloading (title, duration)
    - Download in best mp4 quality up to 1080p with format fallbacks
    - Actual duration measured with ffprobe after download
    """

    def __init__(self):
        self.settings = get_settings()

    def _build_ytdlp_opts(self, output_path: Optional[str] = None, download: bool = True) -> dict:
        """
        Build yt-dlp options dictionary.

        Args:
            output_path: Optional output file path
            download: Whether these options are for downloading (vs just info extraction)

        Returns:
            Dictionary of yt-dlp options
        """
        opts = {
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "nocheckcertificate": True,
            "http_headers": {
                "User-Agent": random.choice(UA_LIST),
                "Accept-Language": "en-US,en;q=0.9",
            },
        }

        if self.settings.ytdlp_proxy:
            opts["proxy"] = self.settings.ytdlp_proxy

        if output_path:
            opts["outtmpl"] = output_path

        if download:
            opts["merge_output_format"] = "mp4"
            opts["retries"] = 10
            opts["fragment_retries"] = 10
            opts["force_overwrites"] = True
        else:
            opts["skip_download"] = True
            opts["socket_timeout"] = 30

        return opts

    async def probe(self, url: str) -> SourceInfo:
        """
        Get source metadata without downloading.

        Args:
            url: Source video URL

        Returns:
            SourceInfo with title and duration

        Raises:
            TransientFetchError: If the metadata cannot be fetched
        """
        logger.debug(f"Probing source: {url}")

        opts = self._build_ytdlp_opts(download=False)

        def do_extract():
            with yt_dlp.YoutubeDL(opts) as ydl:
                return ydl.extract_info(url, download=False)

        # Run in thread pool to not block event loop
        loop = asyncio.get_event_loop()
        try:
            info = await loop.run_in_executor(None, do_extract)
        except Exception as e:
            raise TransientFetchError(f"Failed to get video info: {e}")

        if not info:
            raise TransientFetchError(f"No video info returned for {url}")

        return SourceInfo(
            title=info.get("title") or self.settings.fallback_video_title,
            duration_seconds=float(info.get("duration") or 0),
            uploader=info.get("uploader"),
            thumbnail_url=info.get("thumbnail"),
        )

    async def materialize(self, url: str, output_path: str) -> str:
        """
        Download the source video to a local path.

        Args:
            url: Source video URL
            output_path: Destination file inside the job's work directory

        Returns:
            The local path of the downloaded file

        Raises:
            TransientFetchError: If every download attempt fails
        """
        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        logger.info(f"Downloading video: {url}")

        # Prefer mp4 up to 1080p, then anything playable
        format_selectors = [
            "bestvideo[height<=1080][ext=mp4]+bestaudio[ext=m4a]/best[height<=1080][ext=mp4]",
            "best[ext=mp4]/best",
        ]

        def do_download():
            last_error = None

            for fmt_idx, format_selector in enumerate(format_selectors):
                try:
                    logger.info(f"Download attempt {fmt_idx + 1}/{len(format_selectors)} with format: {format_selector[:50]}")
                    ydl_opts = self._build_ytdlp_opts(output_path=output_path, download=True)
                    ydl_opts["format"] = format_selector

                    with yt_dlp.YoutubeDL(ydl_opts) as ydl:
                        ydl.download([url])
                    return
                except Exception as e:
                    last_error = e
                    logger.warning(f"Download attempt {fmt_idx + 1} failed: {str(e)[:200]}")

            raise last_error or TransientFetchError("All download attempts failed")

        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, do_download)
        except TransientFetchError:
            raise
        except Exception as e:
            raise TransientFetchError(f"Failed to download video: {e}")

        if not os.path.isfile(output_path):
            # yt-dlp might have added extension
            for path in (f"{output_path}.mp4", f"{output_path}.webm", f"{output_path}.mkv"):
                if os.path.isfile(path):
                    os.rename(path, output_path)
                    break
            else:
                raise TransientFetchError(f"Download completed but output file not found: {output_path}")

        file_size = os.path.getsize(output_path)
        logger.info(f"Video downloaded: {output_path} ({file_size / 1024 / 1024:.1f} MB)")
        return output_path

    def _run_ffprobe_sync(self, video_path: str) -> tuple[int, bytes, bytes]:
        """Run ffprobe synchronously (for use with run_in_executor on Windows)."""
        cmd = [
            "ffprobe",
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            video_path,
        ]

        result = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        return result.returncode, result.stdout, result.stderr

    async def get_duration(self, video_path: str) -> Optional[float]:
        """
        Measure a local video's duration with ffprobe.

        Returns None when ffprobe is missing or its output can't be read.
        """
        loop = asyncio.get_event_loop()
        try:
            returncode, stdout, stderr = await loop.run_in_executor(
                None, self._run_ffprobe_sync, video_path
            )
        except FileNotFoundError:
            logger.warning("ffprobe not found in PATH")
            return None

        if returncode != 0:
            logger.warning(f"ffprobe failed: {stderr.decode(errors='replace')[:200]}")
            return None

        try:
            info = json.loads(stdout.decode())
            duration = float(info.get("format", {}).get("duration", 0))
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Failed to parse ffprobe output: {e}")
            return None

        return duration if duration > 0 else None


class TransientFetchError(Exception):
    """Exception raised when the source video cannot be probed or downloaded."""
    pass
