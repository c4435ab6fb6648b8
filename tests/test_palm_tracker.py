"""
Tests for Palm Tracker
=======================
"""

import math
import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from arprobe.core.types import HandLandmarkFrame, OrientedRect, TrackingMode
from arprobe.modules.tracking.palm_tracker import PalmTracker, PalmTrackerConfig, smooth_rect


def landmark(handflag: float, rect: OrientedRect = None) -> HandLandmarkFrame:
    return HandLandmarkFrame(
        handflag=handflag,
        rect=rect or OrientedRect(x=100.0, y=100.0, width=80.0, height=80.0, rotation=0.1),
    )


PALM = OrientedRect(x=90.0, y=90.0, width=100.0, height=100.0, rotation=0.0, score=0.9)


class TestPalmTrackerConfig:
    """Test suite for PalmTrackerConfig."""

    def test_default_values(self):
        config = PalmTrackerConfig()
        assert config.handflag_threshold == 0.8
        assert config.ratio_pos == 0.6
        assert config.ratio_size == 0.4
        assert config.lost_tolerance == 10

    def test_from_dict_partial(self):
        config = PalmTrackerConfig.from_dict({"lost_tolerance": 0})
        assert config.lost_tolerance == 0
        assert config.enforce_interval == 5


class TestSmoothRect:
    """Test suite for smooth_rect()."""

    def test_first_sample_taken_as_is(self):
        new = OrientedRect(x=10.0, y=20.0, width=30.0, height=40.0, rotation=0.5)
        result = smooth_rect(OrientedRect(), new, 0.1, 0.2)
        assert (result.x, result.y, result.width, result.height) == (10.0, 20.0, 30.0, 40.0)
        assert result.rotation == pytest.approx(0.5)

    def test_ema(self):
        cached = OrientedRect(x=0.0, y=0.0, width=100.0, height=100.0, rotation=0.0)
        new = OrientedRect(x=10.0, y=10.0, width=50.0, height=50.0, rotation=1.0)
        result = smooth_rect(cached, new, 0.6, 0.4)

        assert result.x == pytest.approx(6.0)
        assert result.y == pytest.approx(6.0)
        assert result.width == pytest.approx(80.0)
        assert result.height == pytest.approx(80.0)
        assert result.rotation == pytest.approx(0.4)

    @pytest.mark.parametrize("cached_rot, new_rot", [(3.10, -3.10), (-3.10, 3.10)])
    def test_rotation_across_pi(self, cached_rot, new_rot):
        """A hand pointing down keeps a rotation near pi instead of flipping."""
        cached = OrientedRect(x=0.0, y=0.0, width=100.0, height=100.0, rotation=cached_rot)
        new = OrientedRect(x=0.0, y=0.0, width=100.0, height=100.0, rotation=new_rot)
        result = smooth_rect(cached, new, 0.6, 0.4)

        step = 2 * math.pi - 6.2
        expected = cached_rot + 0.4 * step if cached_rot > 0 else cached_rot - 0.4 * step
        assert result.rotation == pytest.approx(expected)
        assert abs(result.rotation) > 3.1

    def test_rotation_first_sample_is_normalized(self):
        new = OrientedRect(x=0.0, y=0.0, width=10.0, height=10.0, rotation=3 * math.pi / 2)
        result = smooth_rect(OrientedRect(), new, 0.6, 0.4)
        assert result.rotation == pytest.approx(-math.pi / 2)


class TestPalmTracker:
    """Test suite for PalmTracker scheduling."""

    @pytest.fixture
    def tracker(self):
        return PalmTracker()

    def test_initial_state(self, tracker):
        assert tracker.mode == TrackingMode.NO_CACHED_RECT
        assert tracker.needs_detection()

    def test_no_palm_no_region(self, tracker):
        tracker.needs_detection()
        assert tracker.select_region([], 640, 480) is None

    def test_detection_used_when_found(self, tracker):
        tracker.needs_detection()
        region = tracker.select_region([PALM], 640, 480)
        assert region == PALM

    def test_region_is_clamped(self, tracker):
        palm = OrientedRect(x=600.0, y=-10.0, width=100.0, height=100.0)
        region = tracker.select_region([palm], 640, 480)
        assert region.x == 600.0
        assert region.y == 0.0
        assert region.width == 40.0

    def test_trusted_landmark_caches_rect(self, tracker):
        tracker.needs_detection()
        tracker.select_region([PALM], 640, 480)
        mode = tracker.update(landmark(0.95))

        assert mode == TrackingMode.HAS_CACHED_RECT
        assert tracker.cached_rect.x == pytest.approx(100.0)
        assert not tracker.needs_detection()
        assert tracker.select_region(None, 640, 480).x == pytest.approx(100.0)

    def test_enforced_detection_interval(self, tracker):
        tracker.needs_detection()
        tracker.select_region([PALM], 640, 480)
        tracker.update(landmark(0.95))

        due = [tracker.needs_detection() for _ in range(5)]
        assert due == [False, False, False, False, True]

    def test_enforced_detection_without_palm_falls_back(self, tracker):
        tracker.needs_detection()
        tracker.select_region([PALM], 640, 480)
        tracker.update(landmark(0.95))

        region = tracker.select_region([], 640, 480)
        assert region is not None
        assert region.x == pytest.approx(100.0)

    def test_new_detection_restarts_smoothing(self, tracker):
        tracker.needs_detection()
        tracker.select_region([PALM], 640, 480)
        tracker.update(landmark(0.95))

        tracker.select_region([PALM], 640, 480)
        assert tracker.cached_rect.is_empty
        shifted = OrientedRect(x=200.0, y=200.0, width=80.0, height=80.0)
        tracker.update(landmark(0.95, shifted))
        assert tracker.cached_rect.x == pytest.approx(200.0)

    def test_low_confidence_tolerated(self, tracker):
        tracker.update(landmark(0.95))
        for _ in range(10):
            assert tracker.update(landmark(0.5)) == TrackingMode.HAS_CACHED_RECT
        assert tracker.update(landmark(0.5)) == TrackingMode.NO_CACHED_RECT

    def test_handflag_sequence(self, tracker):
        """Drop-out longer than the tolerance, then recovery."""
        handflags = [0.95] * 3 + [0.5] * 12 + [0.95] * 3
        modes = []
        for handflag in handflags:
            palms = [PALM] if tracker.needs_detection() else None
            region = tracker.select_region(palms, 640, 480)
            modes.append(tracker.update(landmark(handflag) if region is not None else None))

        has, no = TrackingMode.HAS_CACHED_RECT, TrackingMode.NO_CACHED_RECT
        assert modes[:13] == [has] * 13
        assert modes[13:15] == [no, no]
        assert modes[15:] == [has] * 3

    def test_strict_mode(self):
        tracker = PalmTracker(PalmTrackerConfig(lost_tolerance=0))
        tracker.update(landmark(0.95))
        assert tracker.update(landmark(0.5)) == TrackingMode.NO_CACHED_RECT

    def test_missing_landmark_counts_as_lost(self):
        tracker = PalmTracker(PalmTrackerConfig(lost_tolerance=0))
        tracker.update(landmark(0.95))
        assert tracker.update(None) == TrackingMode.NO_CACHED_RECT

    def test_snapshot_restore(self, tracker):
        tracker.update(landmark(0.95))
        snapshot = tracker.snapshot()
        tracker.select_region([PALM], 640, 480)
        tracker.update(landmark(0.1))

        tracker.restore(snapshot)
        assert tracker.state.lost_counter == 0
        assert tracker.cached_rect.x == pytest.approx(100.0)

    def test_reset(self, tracker):
        tracker.update(landmark(0.95))
        tracker.reset()
        assert tracker.mode == TrackingMode.NO_CACHED_RECT
        assert tracker.cached_rect.is_empty
