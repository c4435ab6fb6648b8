"""
Hand landmark output -> frame coordinates and the next palm rectangle.

The landmark model sees a rotated crop of the frame. Points are mapped back
by undoing that crop, then a new oriented rectangle is derived from them so
the next frame can skip palm detection.
"""

import math
import logging

import numpy as np

from arprobe.core.types import NUM_HAND_LANDMARKS, OrientedRect
from arprobe.modules.detection.rect_geometry import compute_rotation

logger = logging.getLogger(__name__)

WRIST = 0
INDEX_PIP = 6
MIDDLE_MCP = 9
RING_PIP = 14

# Tuned by looking: the square around the keypoints must contain the palm
LANDMARK_RECT_SCALE = 1.8


def project_landmarks(raw: np.ndarray, input_width: int, input_height: int,
                      region: OrientedRect) -> np.ndarray:
    """Map landmark model output back into frame pixel coordinates.

    Args:
        raw: (21, 3) or flat (63,) output in model input pixels
        input_width: Model input width
        input_height: Model input height
        region: The oriented rect the crop was taken from

    Returns:
        (21, 3) float32 array; z is passed through unchanged
    """
    pos = np.asarray(raw, dtype=np.float32).reshape(NUM_HAND_LANDMARKS, 3).copy()

    # Normalized -> crop pixels
    pos[:, 0] = pos[:, 0] / input_width * region.width
    pos[:, 1] = pos[:, 1] / input_height * region.height

    # Undo the crop rotation about the crop center
    half_w = region.width / 2.0
    half_h = region.height / 2.0
    cos_r = math.cos(region.rotation)
    sin_r = math.sin(region.rotation)
    x = pos[:, 0] - half_w
    y = pos[:, 1] - half_h
    rotated_x = x * cos_r - y * sin_r + half_w
    rotated_y = x * sin_r + y * cos_r + half_h

    pos[:, 0] = rotated_x + region.x
    pos[:, 1] = rotated_y + region.y
    return pos


def compute_landmark_rotation(pos: np.ndarray) -> float:
    """Rotation from the wrist toward the middle of the palm.

    The end point averages the index and ring PIP joints, then averages that
    with the middle finger MCP.
    """
    x0, y0 = float(pos[WRIST, 0]), float(pos[WRIST, 1])
    x1 = (pos[INDEX_PIP, 0] + pos[RING_PIP, 0]) / 2.0
    y1 = (pos[INDEX_PIP, 1] + pos[RING_PIP, 1]) / 2.0
    x1 = (x1 + pos[MIDDLE_MCP, 0]) / 2.0
    y1 = (y1 + pos[MIDDLE_MCP, 1]) / 2.0
    return compute_rotation(x0, y0, float(x1), float(y1))


def landmarks_to_rect(pos: np.ndarray, scale_x: float = LANDMARK_RECT_SCALE,
                      scale_y: float = LANDMARK_RECT_SCALE) -> OrientedRect:
    """Square rectangle around the landmarks, rotated like the hand."""
    xy = np.asarray(pos, dtype=np.float32)[:, :2]
    xmin, ymin = xy.min(axis=0)
    xmax, ymax = xy.max(axis=0)
    x_center = (xmin + xmax) / 2.0
    y_center = (ymin + ymax) / 2.0
    long_side = float(max((xmax - xmin) * scale_x, (ymax - ymin) * scale_y))
    return OrientedRect(
        x=float(x_center) - long_side / 2.0,
        y=float(y_center) - long_side / 2.0,
        width=long_side,
        height=long_side,
        rotation=compute_landmark_rotation(pos),
    )
