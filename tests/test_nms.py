"""
Tests for Non-Maximum Suppression
==================================
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from arprobe.core.types import Detection
from arprobe.modules.detection.nms import (
    MIN_WEIGHTED_CLUSTER_SIZE,
    calculate_iou,
    non_max_suppression,
)


def make_detection(x, y, w, h, score=0.9, class_id=0, keypoints=None) -> Detection:
    return Detection(score=score, class_id=class_id, x=x, y=y, w=w, h=h,
                     keypoints=keypoints if keypoints is not None else [(x, y)])


class TestCalculateIou:
    """Test suite for calculate_iou()."""

    def test_identical_boxes(self):
        det = make_detection(0.1, 0.1, 0.2, 0.2)
        assert calculate_iou(det, det) == pytest.approx(1.0)

    def test_disjoint_boxes(self):
        """Non-overlapping boxes have zero IoU, never negative."""
        a = make_detection(0.0, 0.0, 0.1, 0.1)
        b = make_detection(0.5, 0.5, 0.1, 0.1)
        assert calculate_iou(a, b) == 0.0

    def test_half_overlap(self):
        a = make_detection(0.0, 0.0, 0.2, 0.2)
        b = make_detection(0.1, 0.0, 0.2, 0.2)
        # intersection 0.02, union 0.06
        assert calculate_iou(a, b) == pytest.approx(1.0 / 3.0)

    def test_zero_area_boxes(self):
        a = make_detection(0.1, 0.1, 0.0, 0.0)
        assert calculate_iou(a, a) == 0.0


class TestNonMaxSuppression:
    """Test suite for non_max_suppression()."""

    def test_empty(self):
        assert non_max_suppression([]) == []

    def test_overlapping_same_class_collapse(self):
        a = make_detection(0.10, 0.10, 0.20, 0.20)
        b = make_detection(0.11, 0.11, 0.20, 0.20)
        assert len(non_max_suppression([a, b])) == 1

    def test_overlapping_different_class_kept(self):
        a = make_detection(0.10, 0.10, 0.20, 0.20, class_id=0)
        b = make_detection(0.11, 0.11, 0.20, 0.20, class_id=1)
        assert len(non_max_suppression([a, b])) == 2

    def test_largest_box_seeds_cluster(self):
        """Ordering is by area, not score."""
        small = make_detection(0.10, 0.10, 0.20, 0.20, score=0.99)
        large = make_detection(0.10, 0.10, 0.21, 0.21, score=0.71)
        result = non_max_suppression([small, large])
        assert result == [large]

    def test_separate_objects_survive(self):
        a = make_detection(0.0, 0.0, 0.1, 0.1)
        b = make_detection(0.8, 0.8, 0.15, 0.15)
        result = non_max_suppression([a, b])
        assert result == [b, a]

    def test_idempotent(self):
        detections = [
            make_detection(0.10, 0.10, 0.20, 0.20),
            make_detection(0.12, 0.10, 0.20, 0.20),
            make_detection(0.60, 0.60, 0.25, 0.25),
            make_detection(0.61, 0.62, 0.25, 0.24),
        ]
        once = non_max_suppression(detections)
        twice = non_max_suppression(once)
        assert once == twice

    def test_input_not_modified(self):
        detections = [make_detection(0.1, 0.1, 0.2, 0.2), make_detection(0.11, 0.1, 0.2, 0.2)]
        copy = list(detections)
        non_max_suppression(detections)
        assert detections == copy


class TestWeightedMerge:
    """Test suite for the weighted-merge mode."""

    def test_small_clusters_dropped(self):
        a = make_detection(0.10, 0.10, 0.20, 0.20)
        b = make_detection(0.11, 0.10, 0.20, 0.20)
        assert MIN_WEIGHTED_CLUSTER_SIZE == 3
        assert non_max_suppression([a, b], use_weighted_merge=True) == []

    def test_cluster_is_averaged(self):
        cluster = [
            make_detection(0.10, 0.10, 0.20, 0.20, score=1.0, keypoints=[(0.1, 0.2)]),
            make_detection(0.12, 0.10, 0.20, 0.20, score=1.0, keypoints=[(0.3, 0.2)]),
            make_detection(0.11, 0.10, 0.20, 0.20, score=0.5, keypoints=[(0.2, 0.2)]),
        ]
        result = non_max_suppression(cluster, use_weighted_merge=True)

        assert len(result) == 1
        merged = result[0]
        assert merged.x == pytest.approx((0.10 + 0.12 + 0.11 * 0.5) / 2.5)
        assert merged.y == pytest.approx(0.10)
        assert merged.score == pytest.approx(2.5 / 3)
        assert merged.keypoints[0][0] == pytest.approx((0.1 + 0.3 + 0.1) / 2.5)
        assert merged.keypoints[0][1] == pytest.approx(0.2)

    def test_zero_scores_keep_seed(self):
        cluster = [make_detection(0.10 + 0.01 * i, 0.10, 0.20, 0.20, score=0.0) for i in range(3)]
        result = non_max_suppression(cluster, use_weighted_merge=True)
        assert len(result) == 1
        assert result[0].x == pytest.approx(0.10)
