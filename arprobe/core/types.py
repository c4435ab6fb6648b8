"""
Shared domain types for the palm tracking pipeline.

Centralizes enums, data classes, and type definitions used across modules
to eliminate circular imports and ensure type consistency.
"""

from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import List, Optional, Tuple

import numpy as np

NUM_HAND_LANDMARKS = 21


# =============================================================================
# Enums
# =============================================================================

class TrackingMode(Enum):
    """Whether the palm tracker may skip the detector this frame."""
    NO_CACHED_RECT = "no_cached_rect"
    HAS_CACHED_RECT = "has_cached_rect"


class GestureState(Enum):
    """Area-selection state machine states."""
    INIT = "init"
    DRAG = "drag"
    SELECTED = "selected"


class FingerStatus(IntEnum):
    """Pointing classifier reading."""
    INVALID = -1
    INDEX_AND_MIDDLE = 0
    INDEX_ONLY = 1


class Command(IntEnum):
    """Commands accepted by Pipeline.command()."""
    TOGGLE_DEBUG = 0


# =============================================================================
# Geometry
# =============================================================================

@dataclass(frozen=True)
class Anchor:
    """Normalized SSD prior box."""
    x_center: float
    y_center: float
    w: float
    h: float


@dataclass
class Detection:
    """Decoded detector candidate in top-left/size form."""
    score: float
    class_id: int
    x: float
    y: float
    w: float
    h: float
    keypoints: List[Tuple[float, float]] = field(default_factory=list)

    @property
    def area(self) -> float:
        return self.w * self.h

    def scaled(self, width: float, height: float) -> 'Detection':
        """Return a copy converted from normalized to pixel coordinates."""
        return Detection(
            score=self.score,
            class_id=self.class_id,
            x=self.x * width,
            y=self.y * height,
            w=self.w * width,
            h=self.h * height,
            keypoints=[(kx * width, ky * height) for kx, ky in self.keypoints],
        )


@dataclass
class OrientedRect:
    """Rectangle (top-left origin) with a signed rotation in radians."""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    rotation: float = 0.0
    score: float = 0.0

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def clamped(self, image_width: float, image_height: float) -> 'OrientedRect':
        """Clamp the rectangle so it lies inside the image."""
        x = min(float(image_width), max(self.x, 0.0))
        y = min(float(image_height), max(self.y, 0.0))
        return replace(
            self,
            x=x,
            y=y,
            width=min(image_width - x, max(self.width, 0.0)),
            height=min(image_height - y, max(self.height, 0.0)),
        )


@dataclass
class Rect:
    """Integer axis-aligned rectangle."""
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    @property
    def area(self) -> int:
        return self.width * self.height

    def clamped(self, image_width: int, image_height: int, min_size: int = 0) -> 'Rect':
        """Clamp into the image, keeping at least `min_size` pixels per side."""
        x = min(max(0, self.x), image_width)
        y = min(max(0, self.y), image_height)
        return Rect(
            x=x,
            y=y,
            width=min(max(min_size, self.width), image_width - x),
            height=min(max(min_size, self.height), image_height - y),
        )

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.x, self.y, self.width, self.height)

    @classmethod
    def from_points(cls, p0: Tuple[float, float], p1: Tuple[float, float]) -> 'Rect':
        """Rectangle spanned by two corner points."""
        return cls(
            x=int(min(p0[0], p1[0])),
            y=int(min(p0[1], p1[1])),
            width=int(abs(p0[0] - p1[0])),
            height=int(abs(p0[1] - p1[1])),
        )


# =============================================================================
# Data Containers
# =============================================================================

@dataclass
class HandLandmarkFrame:
    """One hand landmark inference in frame pixel coordinates."""
    handflag: float = 0.0
    handedness: float = 0.0
    pos: np.ndarray = field(
        default_factory=lambda: np.zeros((NUM_HAND_LANDMARKS, 3), dtype=np.float32))
    rect: OrientedRect = field(default_factory=OrientedRect)

    @classmethod
    def empty(cls) -> 'HandLandmarkFrame':
        """Frame reported when no hand landmark inference ran."""
        return cls()

    def point(self, index: int) -> Tuple[float, float]:
        """(x, y) of a landmark."""
        return (float(self.pos[index, 0]), float(self.pos[index, 1]))


@dataclass
class TrackingState:
    """Palm tracker state owned by one pipeline instance."""
    cached_rect: OrientedRect = field(default_factory=OrientedRect)
    is_valid: bool = False
    skip_counter: int = 0
    lost_counter: int = 0

    @property
    def mode(self) -> TrackingMode:
        if self.is_valid:
            return TrackingMode.HAS_CACHED_RECT
        return TrackingMode.NO_CACHED_RECT


class FrameResult:
    """Result of a single pipeline iteration."""

    __slots__ = (
        "frame_id", "palm_rect", "palm_detected", "detector_ran",
        "landmark", "tracking_mode", "gesture_state", "selected_area",
        "tracked_objects", "debug", "failed", "timings_ms",
    )

    def __init__(self, frame_id: int = 0):
        self.frame_id = frame_id
        self.palm_rect: Optional[OrientedRect] = None
        self.palm_detected = False
        self.detector_ran = False
        self.landmark: Optional[HandLandmarkFrame] = None
        self.tracking_mode = TrackingMode.NO_CACHED_RECT
        self.gesture_state = GestureState.INIT
        self.selected_area: Optional[Rect] = None
        self.tracked_objects = []
        self.debug = False
        self.failed = False
        self.timings_ms = {}

    def __repr__(self):
        return "FrameResult(id=%d, mode=%s, gesture=%s, objects=%d)" % (
            self.frame_id, self.tracking_mode.value,
            self.gesture_state.value, len(self.tracked_objects))
