"""
Non-maximum suppression for palm detections.

Candidates are ordered by box area, not score, so that large (usually more
stable) detections seed each cluster.
"""

import logging
from dataclasses import replace
from typing import List, Sequence

from arprobe.core.types import Detection

logger = logging.getLogger(__name__)

# Weighted merge drops clusters supported by fewer boxes than this
MIN_WEIGHTED_CLUSTER_SIZE = 3


def calculate_iou(det0: Detection, det1: Detection) -> float:
    """Intersection over union of two top-left/size boxes."""
    inter_x0 = max(det0.x, det1.x)
    inter_y0 = max(det0.y, det1.y)
    inter_x1 = min(det0.x + det0.w, det1.x + det1.w)
    inter_y1 = min(det0.y + det0.h, det1.y + det1.h)

    area_inter = max(0.0, inter_x1 - inter_x0) * max(0.0, inter_y1 - inter_y0)
    area_union = det0.area + det1.area - area_inter
    if area_union <= 0.0:
        return 0.0
    return area_inter / area_union


def _weighted_merge(cluster: List[Detection]) -> Detection:
    """Score-weighted mean of position, size and keypoints."""
    sum_score = sum(det.score for det in cluster)
    num_keypoints = len(cluster[0].keypoints)
    merged = Detection(score=0.0, class_id=cluster[0].class_id, x=0.0, y=0.0, w=0.0, h=0.0,
                       keypoints=[])
    keypoints = [[0.0, 0.0] for _ in range(num_keypoints)]
    for det in cluster:
        merged.score += det.score
        merged.x += det.x * det.score
        merged.y += det.y * det.score
        merged.w += det.w * det.score
        merged.h += det.h * det.score
        for k, (kx, ky) in enumerate(det.keypoints):
            keypoints[k][0] += kx * det.score
            keypoints[k][1] += ky * det.score

    merged.score /= len(cluster)
    if sum_score > 0:
        merged.x /= sum_score
        merged.y /= sum_score
        merged.w /= sum_score
        merged.h /= sum_score
        merged.keypoints = [(kx / sum_score, ky / sum_score) for kx, ky in keypoints]
    else:
        merged = replace(cluster[0], keypoints=list(cluster[0].keypoints))
    return merged


def non_max_suppression(
    detections: Sequence[Detection],
    iou_threshold: float = 0.5,
    use_weighted_merge: bool = False,
) -> List[Detection]:
    """Collapse overlapping same-class detections into one per object.

    Args:
        detections: Candidates (not modified)
        iou_threshold: Boxes overlapping the seed by more than this merge
        use_weighted_merge: Average each cluster instead of keeping its seed

    Returns:
        One Detection per surviving cluster, largest seed first
    """
    ordered = sorted(detections, key=lambda det: det.area, reverse=True)
    merged_flags = [False] * len(ordered)
    results = []

    for seed_index, seed in enumerate(ordered):
        if merged_flags[seed_index]:
            continue
        cluster = [seed]
        for index in range(seed_index + 1, len(ordered)):
            if merged_flags[index]:
                continue
            candidate = ordered[index]
            if candidate.class_id != seed.class_id:
                continue
            if calculate_iou(seed, candidate) > iou_threshold:
                cluster.append(candidate)
                merged_flags[index] = True

        if use_weighted_merge:
            if len(cluster) < MIN_WEIGHTED_CLUSTER_SIZE:
                continue
            results.append(_weighted_merge(cluster))
        else:
            results.append(seed)

    logger.debug("NMS: %d -> %d detections", len(ordered), len(results))
    return results
