"""
Palm detection -> oriented crop rectangle for the hand landmark model.

The rotation aligns the wrist -> middle finger MCP vector with the vertical
axis; the rectangle is shifted toward the fingers and enlarged so the whole
hand fits in the crop.
"""

import math
import logging
from dataclasses import dataclass

from arprobe.core.errors import GeometryDegenerate
from arprobe.core.types import Detection, OrientedRect

logger = logging.getLogger(__name__)

TARGET_ANGLE = math.pi * 0.5

# Palm detector keypoints
ROTATION_START_KEYPOINT = 0   # center of wrist
ROTATION_END_KEYPOINT = 2     # MCP of middle finger


@dataclass
class RectTransform:
    """Shift/scale applied to a detection box (palm defaults)."""
    shift_x: float = 0.0
    shift_y: float = -0.5
    scale_x: float = 2.6
    scale_y: float = 2.6

    @classmethod
    def from_dict(cls, d: dict) -> "RectTransform":
        """Create config from dictionary."""
        return cls(
            shift_x=d.get("shift_x", 0.0),
            shift_y=d.get("shift_y", -0.5),
            scale_x=d.get("scale_x", 2.6),
            scale_y=d.get("scale_y", 2.6),
        )


def normalize_radians(angle: float) -> float:
    """Wrap an angle into (-pi, pi]."""
    normalized = angle - 2.0 * math.pi * math.floor((angle + math.pi) / (2.0 * math.pi))
    if normalized <= -math.pi:
        normalized += 2.0 * math.pi
    return normalized


def _reference_angle(x0: float, y0: float, x1: float, y1: float) -> float:
    dx = x1 - x0
    dy = y1 - y0
    if not (math.isfinite(dx) and math.isfinite(dy)):
        raise GeometryDegenerate("non-finite reference vector")
    if dx == 0.0 and dy == 0.0:
        raise GeometryDegenerate("zero-length reference vector")
    return math.atan2(-dy, dx)


def compute_rotation(x0: float, y0: float, x1: float, y1: float,
                     target_angle: float = TARGET_ANGLE) -> float:
    """Rotation bringing the (x0, y0) -> (x1, y1) vector to `target_angle`.

    A degenerate reference vector yields 0 instead of NaN.
    """
    try:
        angle = _reference_angle(x0, y0, x1, y1)
    except GeometryDegenerate as e:
        logger.debug("Rotation defaulted to 0: %s", e)
        return 0.0
    return normalize_radians(target_angle - angle)


def detection_rotation(detection: Detection) -> float:
    """Rotation of a palm detection from its wrist and middle MCP keypoints."""
    x0, y0 = detection.keypoints[ROTATION_START_KEYPOINT]
    x1, y1 = detection.keypoints[ROTATION_END_KEYPOINT]
    return compute_rotation(x0, y0, x1, y1)


def transform_rect(detection: Detection, rotation: float,
                   transform: RectTransform) -> OrientedRect:
    """Shift (in the rotated frame) and enlarge a detection box into a square."""
    x_center = detection.x + detection.w / 2.0
    y_center = detection.y + detection.h / 2.0
    if rotation == 0.0:
        x_center += detection.w * transform.shift_x
        y_center += detection.h * transform.shift_y
    else:
        x_shift = (detection.w * transform.shift_x * math.cos(rotation)
                   - detection.h * transform.shift_y * math.sin(rotation))
        y_shift = (detection.w * transform.shift_x * math.sin(rotation)
                   + detection.h * transform.shift_y * math.cos(rotation))
        x_center += x_shift
        y_center += y_shift

    long_side = max(detection.w, detection.h)
    width = long_side * transform.scale_x
    height = long_side * transform.scale_y
    return OrientedRect(
        x=x_center - width / 2.0,
        y=y_center - height / 2.0,
        width=width,
        height=height,
        rotation=rotation,
        score=detection.score,
    )


def detection_to_rect(detection: Detection, image_width: int, image_height: int,
                      transform: RectTransform = None) -> OrientedRect:
    """Convert a pixel-space palm detection into a clamped oriented rect.

    Args:
        detection: Detection in pixel coordinates with at least 3 keypoints
        image_width: Frame width in pixels
        image_height: Frame height in pixels
        transform: Shift/scale constants (palm defaults if None)
    """
    transform = transform or RectTransform()
    if len(detection.keypoints) <= ROTATION_END_KEYPOINT:
        raise ValueError("detection needs at least %d keypoints" % (ROTATION_END_KEYPOINT + 1))
    rotation = detection_rotation(detection)
    rect = transform_rect(detection, rotation, transform)
    return rect.clamped(image_width, image_height)
