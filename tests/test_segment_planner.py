"""
Tests for segment planning.
"""

import pytest

from app.services.segment_planner import PlanError, PlannedSegment, plan_segments


class TestPlanSegments:
    """Tests for plan_segments."""

    def test_uniform_spacing(self):
        """Five 30s shorts over a 5 minute video start every minute."""
        segments = plan_segments(300, 5, 30)

        assert [s.index for s in segments] == [1, 2, 3, 4, 5]
        assert [s.start_time for s in segments] == [0, 60, 120, 180, 240]
        assert all(s.duration == 30 for s in segments)
        assert all(s.end_time <= 300 for s in segments)

    def test_single_segment_starts_at_zero(self):
        segments = plan_segments(90, 1, 30)
        assert segments == [PlannedSegment(index=1, start_time=0.0, duration=30.0)]

    def test_clamps_last_window_to_source_end(self):
        """A source shorter than N*S gets its last window clamped, not extended."""
        segments = plan_segments(100, 5, 30)

        assert [s.start_time for s in segments] == [0, 20, 40, 60, 80]
        assert [s.duration for s in segments] == [30, 30, 30, 30, 20]
        assert segments[-1].end_time == 100

    def test_source_shorter_than_one_segment(self):
        segments = plan_segments(10, 2, 30)

        assert segments[0].duration == 10
        assert segments[1].start_time == 5
        assert segments[1].duration == 5

    def test_deterministic(self):
        assert plan_segments(613.4, 7, 45) == plan_segments(613.4, 7, 45)

    @pytest.mark.parametrize(
        "total, count, duration",
        [
            (300, 0, 30),
            (300, -1, 30),
            (300, 5, 0),
            (300, 5, -5),
            (0, 5, 30),
            (-10, 5, 30),
        ],
    )
    def test_invalid_inputs(self, total, count, duration):
        with pytest.raises(PlanError):
            plan_segments(total, count, duration)
