"""
Palm detector scheduling and temporal smoothing of the tracked region.

Once a landmark inference is trusted, the rectangle derived from the
landmarks is reused as the next frame's crop and the (expensive) palm
detector is skipped. Every `enforce_interval` frames the detector runs
anyway to correct drift.

States:
    NO_CACHED_RECT  - the detector must run
    HAS_CACHED_RECT - the cached landmark rect may be reused
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence

from arprobe.core.types import HandLandmarkFrame, OrientedRect, TrackingMode, TrackingState
from arprobe.modules.detection.rect_geometry import normalize_radians

logger = logging.getLogger(__name__)


@dataclass
class PalmTrackerConfig:
    """Configuration for palm tracker."""
    handflag_threshold: float = 0.8
    ratio_pos: float = 0.6
    ratio_size: float = 0.4
    enforce_interval: int = 5
    lost_tolerance: int = 10

    @classmethod
    def from_dict(cls, d: dict) -> "PalmTrackerConfig":
        """Create config from dictionary."""
        return cls(
            handflag_threshold=d.get("handflag_threshold", 0.8),
            ratio_pos=d.get("ratio_pos", 0.6),
            ratio_size=d.get("ratio_size", 0.4),
            enforce_interval=d.get("enforce_interval", 5),
            lost_tolerance=d.get("lost_tolerance", 10),
        )


def smooth_rect(cached: OrientedRect, new: OrientedRect,
                ratio_pos: float, ratio_size: float) -> OrientedRect:
    """Exponential moving average of a rectangle.

    Position uses `ratio_pos`; size and rotation use `ratio_size`. When the
    cached rect is empty (width 0) the new sample is taken as is.
    """
    if cached.width == 0:
        ratio_pos = 1.0
        ratio_size = 1.0
    # Shortest arc, so angles on either side of +-pi average near pi
    delta_rotation = normalize_radians(new.rotation - cached.rotation)
    return OrientedRect(
        x=new.x * ratio_pos + cached.x * (1.0 - ratio_pos),
        y=new.y * ratio_pos + cached.y * (1.0 - ratio_pos),
        width=new.width * ratio_size + cached.width * (1.0 - ratio_size),
        height=new.height * ratio_size + cached.height * (1.0 - ratio_size),
        rotation=normalize_radians(cached.rotation + ratio_size * delta_rotation),
        score=new.score,
    )


class PalmTracker:
    """Decides once per frame whether to run the palm detector."""

    def __init__(self, config: PalmTrackerConfig = None):
        self._config = config or PalmTrackerConfig()
        self._state = TrackingState()

    # =========================================================================
    # Scheduling
    # =========================================================================

    def needs_detection(self) -> bool:
        """True if the palm detector must run this frame.

        Advances the enforce counter; call exactly once per frame.
        """
        self._state.skip_counter += 1
        enforce = (self._config.enforce_interval > 0
                   and self._state.skip_counter >= self._config.enforce_interval)
        due = (
            not self._state.is_valid
            or self._state.cached_rect.is_empty
            or enforce
        )
        if due:
            self._state.skip_counter = 0
        return due

    def select_region(self, palms: Optional[Sequence[OrientedRect]],
                      image_width: int, image_height: int) -> Optional[OrientedRect]:
        """Choose the region to feed the landmark model.

        Args:
            palms: Detector output for this frame, or None if it did not run
            image_width: Frame width
            image_height: Frame height

        Returns:
            Clamped region, or None when tracking is lost for this frame
        """
        if palms:
            # Use only one palm; restart smoothing from the landmark result
            self._state.cached_rect = OrientedRect()
            return palms[0].clamped(image_width, image_height)

        if palms is not None:
            logger.debug("Palm detector found nothing")
        if self._state.is_valid and not self._state.cached_rect.is_empty:
            return self._state.cached_rect.clamped(image_width, image_height)
        return None

    # =========================================================================
    # Update
    # =========================================================================

    def update(self, landmark: Optional[HandLandmarkFrame]) -> TrackingMode:
        """Fold this frame's landmark result into the tracking state.

        Args:
            landmark: Landmark inference result, or None if none ran

        Returns:
            The tracking mode for the next frame
        """
        previous = self._state.mode
        if landmark is not None and landmark.handflag >= self._config.handflag_threshold:
            self._state.cached_rect = smooth_rect(
                self._state.cached_rect, landmark.rect,
                self._config.ratio_pos, self._config.ratio_size)
            self._state.is_valid = True
            self._state.lost_counter = 0
        else:
            self._state.lost_counter += 1
            if self._state.is_valid and self._state.lost_counter > self._config.lost_tolerance:
                self._state.is_valid = False
                logger.debug("Palm tracking lost after %d untrusted frames",
                             self._state.lost_counter)

        mode = self._state.mode
        if mode != previous:
            logger.info("Palm tracker: %s -> %s", previous.value, mode.value)
        return mode

    def reset(self):
        """Forget the cached rectangle."""
        self._state = TrackingState()

    def snapshot(self) -> TrackingState:
        """Copy of the state, for rolling back a failed frame."""
        return replace(self._state, cached_rect=replace(self._state.cached_rect))

    def restore(self, state: TrackingState):
        self._state = state

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def mode(self) -> TrackingMode:
        return self._state.mode

    @property
    def cached_rect(self) -> OrientedRect:
        return replace(self._state.cached_rect)
