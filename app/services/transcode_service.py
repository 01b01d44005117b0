"""
Transcode Service - FFmpeg-based rendering of vertical shorts and thumbnails.
"""

import asyncio
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional

from app.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class TranscodeResult:
    """Result of transcoding one segment."""

    clip_path: str
    thumbnail_path: str
    file_size_bytes: int


class TranscodeService:
    """
    Service for rendering shorts using FFmpeg.

    Features:
    - Cuts a time window out of the source with frame-accurate seeking
    - Letterboxes into a 9:16 portrait frame (scale + pad)
    - Optional burned-in overlay text
    - JPEG thumbnail taken from a fixed offset into the rendered clip
    - H.264/AAC output optimized for social media
    """

    def __init__(self):
        self.settings = get_settings()

    def is_available(self) -> bool:
        """Check whether ffmpeg can be found in PATH."""
        return shutil.which("ffmpeg") is not None

    async def transcode_segment(
        self,
        source_path: str,
        output_dir: str,
        index: int,
        start_time: float,
        duration: float,
        overlay_text: Optional[str] = None,
    ) -> TranscodeResult:
        """
        Render one short and its thumbnail into the job's work directory.

        Args:
            source_path: Local source video
            output_dir: Ephemeral directory scoped to the job
            index: 1-based segment index (used for file names)
            start_time: Window start in seconds
            duration: Window length in seconds
            overlay_text: Optional text burned into the clip

        Returns:
            TranscodeResult with local clip and thumbnail paths

        Raises:
            TranscodeError: If ffmpeg fails or produces no output
        """
        os.makedirs(output_dir, exist_ok=True)
        clip_path = os.path.join(output_dir, f"short_{index}.mp4")
        thumbnail_path = os.path.join(output_dir, f"thumb_{index}.jpg")

        await self.render_short(
            source_path=source_path,
            output_path=clip_path,
            start_time=start_time,
            duration=duration,
            overlay_text=overlay_text,
        )
        await self.extract_thumbnail(clip_path, thumbnail_path, clip_duration=duration)

        file_size = os.path.getsize(clip_path)
        logger.info(f"Rendered short {index}: {file_size / 1024 / 1024:.1f} MB")

        return TranscodeResult(
            clip_path=clip_path,
            thumbnail_path=thumbnail_path,
            file_size_bytes=file_size,
        )

    async def render_short(
        self,
        source_path: str,
        output_path: str,
        start_time: float,
        duration: float,
        overlay_text: Optional[str] = None,
    ) -> str:
        """
        Render a 9:16 clip from a window of the source video.

        Args:
            source_path: Local source video
            output_path: Where to write the mp4
            start_time: Window start in seconds
            duration: Window length in seconds
            overlay_text: Optional text drawn near the bottom of the frame

        Returns:
            The output path
        """
        if duration <= 0:
            raise TranscodeError("Invalid clip duration")

        logger.info(f"Rendering short: {start_time:.2f}s +{duration:.2f}s -> {output_path}")

        cmd = [
            "ffmpeg",
            "-y",
            "-ss", f"{start_time:.6f}",
            "-i", source_path,
            "-t", f"{duration:.6f}",
            "-vf", ",".join(self._build_video_filters(overlay_text)),
            "-avoid_negative_ts", "make_zero",
            "-c:v", "libx264",
            "-preset", self.settings.ffmpeg_preset,
            "-crf", str(self.settings.ffmpeg_crf),
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-b:a", self.settings.audio_bitrate,
            "-movflags", "+faststart",
            output_path,
        ]

        await self._run_cmd(cmd)

        if not os.path.isfile(output_path):
            raise TranscodeError(f"FFmpeg completed but output file not found: {output_path}")
        return output_path

    async def extract_thumbnail(
        self,
        clip_path: str,
        output_path: str,
        clip_duration: Optional[float] = None,
    ) -> str:
        """
        Grab a single JPEG frame from a rendered clip.

        The frame is taken at a fixed offset into the clip and scaled to the
        thumbnail resolution. Clips shorter than twice the offset are grabbed
        at their midpoint instead.
        """
        offset = self.settings.thumbnail_offset_seconds
        if clip_duration is not None and clip_duration > 0:
            offset = min(offset, clip_duration / 2)

        cmd = [
            "ffmpeg",
            "-y",
            "-ss", f"{offset:.3f}",
            "-i", clip_path,
            "-frames:v", "1",
            "-vf", f"scale={self.settings.thumbnail_width}:{self.settings.thumbnail_height}",
            "-q:v", "3",
            output_path,
        ]

        await self._run_cmd(cmd)

        if not os.path.isfile(output_path):
            raise TranscodeError(f"Thumbnail extraction produced no file: {output_path}")
        return output_path

    def _build_video_filters(self, overlay_text: Optional[str] = None) -> list[str]:
        """Build the scale/pad filter chain for the portrait frame."""
        width = self.settings.target_output_width
        height = self.settings.target_output_height

        filters = [
            f"scale={width}:{height}:force_original_aspect_ratio=decrease",
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
        ]

        if overlay_text:
            filters.append(
                f"drawtext=text={self._escape_drawtext(overlay_text)}"
                f":fontsize={self.settings.overlay_font_size}"
                f":fontcolor={self.settings.overlay_font_color}"
                f":box=1:boxcolor={self.settings.overlay_box_color}:boxborderw=12"
                f":x=(w-text_w)/2:y=h-text_h-120"
            )

        return filters

    def _escape_drawtext(self, text: str) -> str:
        """
        Escape text for use as a drawtext value inside a filter graph.

        Backslashes, quotes, colons and commas all carry meaning in filter
        syntax; percent signs start drawtext expansions.
        """
        escaped = text.replace("\\", "\\\\")
        escaped = escaped.replace("'", "’")
        escaped = escaped.replace(":", "\\:")
        escaped = escaped.replace(",", "\\,")
        escaped = escaped.replace("%", "\\%")
        return f"'{escaped}'"

    async def _run_cmd(self, cmd: list[str]) -> None:
        """Run a command asynchronously."""
        logger.debug(f"Running: {' '.join(cmd[:10])}...")

        if not shutil.which(cmd[0]):
            raise TranscodeError(f"{cmd[0]} not found in PATH")

        # Use run_in_executor for Windows compatibility
        loop = asyncio.get_event_loop()
        result = await loop.run_in_executor(
            None,
            lambda: subprocess.run(cmd, capture_output=True)
        )

        if result.returncode != 0:
            error_msg = result.stderr.decode(errors="replace")[-1000:] if result.stderr else "Unknown error"
            raise TranscodeError(f"FFmpeg failed: {error_msg}")


class TranscodeError(Exception):
    """Exception raised when transcoding fails."""
    pass
