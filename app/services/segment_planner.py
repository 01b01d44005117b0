"""
Segment Planner - Computes the time windows for the shorts cut from a source video.

Windows are spread uniformly across the source: short i starts at
(D / N) * (i - 1). A window that would run past the end of the source is
clamped to the remaining time; a window with nothing left is an error.
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedSegment:
    """A time window to cut from the source video."""

    index: int  # 1-based
    start_time: float  # seconds
    duration: float  # seconds

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


def plan_segments(
    total_duration: float,
    segment_count: int,
    segment_duration: float,
) -> list[PlannedSegment]:
    """
    Plan uniformly spaced segments over a source video.

    Args:
        total_duration: Source duration in seconds (D)
        segment_count: Number of shorts to produce (N)
        segment_duration: Requested duration of each short in seconds (S)

    Returns:
        N PlannedSegment tuples ordered by index

    Raises:
        PlanError: If inputs are invalid or a window would be empty
    """
    if segment_count < 1:
        raise PlanError(f"Segment count must be at least 1, got {segment_count}")
    if segment_duration <= 0:
        raise PlanError(f"Segment duration must be positive, got {segment_duration}")
    if total_duration <= 0:
        raise PlanError(f"Source duration must be positive, got {total_duration}")

    spacing = total_duration / segment_count
    segments = []

    for i in range(1, segment_count + 1):
        start_time = spacing * (i - 1)
        duration = float(segment_duration)

        # Never request time past the end of the source
        if start_time + duration > total_duration:
            duration = max(0.0, total_duration - start_time)
            logger.debug(
                f"Segment {i} clamped to {duration:.3f}s (starts at {start_time:.3f}s of {total_duration:.3f}s)"
            )

        if duration <= 0:
            raise PlanError(
                f"Segment {i} starting at {start_time:.3f}s has no remaining source "
                f"(source duration {total_duration:.3f}s)"
            )

        segments.append(PlannedSegment(index=i, start_time=start_time, duration=duration))

    return segments


class PlanError(Exception):
    """Exception raised when segments cannot be planned."""
    pass
