"""
Pool of OpenCV visual trackers following user-selected objects.

Each selected area gets its own tracker. Trackers are updated once per frame
and evicted after losing their target for too long, or when the tracked box
grows implausibly wide (tracker divergence).
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

import cv2
import numpy as np

from arprobe.core.errors import ConfigError
from arprobe.core.types import Rect

logger = logging.getLogger(__name__)

# Algorithm name -> constructor name; newer OpenCV builds move some into cv2.legacy
_TRACKER_CONSTRUCTORS = {
    "KCF": "TrackerKCF_create",
    "MIL": "TrackerMIL_create",
    "CSRT": "TrackerCSRT_create",
    "MEDIAN_FLOW": "TrackerMedianFlow_create",
    "MOSSE": "TrackerMOSSE_create",
    "BOOSTING": "TrackerBoosting_create",
    "TLD": "TrackerTLD_create",
}


def find_tracker_constructor(name: str) -> Callable[[], object]:
    """Look up the OpenCV constructor for an algorithm name.

    Raises:
        ValueError: Unknown algorithm name
        ConfigError: The installed OpenCV build lacks the algorithm
    """
    key = name.upper()
    if key not in _TRACKER_CONSTRUCTORS:
        raise ValueError("Unknown tracker algorithm: %s" % name)
    constructor_name = _TRACKER_CONSTRUCTORS[key]
    for namespace in (cv2, getattr(cv2, "legacy", None)):
        constructor = getattr(namespace, constructor_name, None) if namespace else None
        if constructor is not None:
            return constructor
    raise ConfigError("OpenCV build has no %s tracker (install opencv-contrib-python)" % key)


def create_tracker(name: str):
    """Build an OpenCV tracker by algorithm name (see find_tracker_constructor)."""
    return find_tracker_constructor(name)()


@dataclass
class TrackerPoolConfig:
    """Configuration for the object tracker pool."""
    max_lost_frames: int = 20
    large_area_ratio: float = 0.1
    large_tracker: str = "MEDIAN_FLOW"
    small_tracker: str = "KCF"
    max_width_ratio: float = 0.9

    @classmethod
    def from_dict(cls, d: dict) -> "TrackerPoolConfig":
        """Create config from dictionary."""
        return cls(
            max_lost_frames=d.get("max_lost_frames", 20),
            large_area_ratio=d.get("large_area_ratio", 0.1),
            large_tracker=d.get("large_tracker", "MEDIAN_FLOW"),
            small_tracker=d.get("small_tracker", "KCF"),
            max_width_ratio=d.get("max_width_ratio", 0.9),
        )


class TrackedObject:
    """One selected object and the tracker handle that follows it."""

    def __init__(self, object_id: int, label: str, rect: Rect, tracker, algorithm: str):
        self.object_id = object_id
        self.label = label
        self.first_rect = rect
        self.rect = rect
        self.tracker = tracker
        self.algorithm = algorithm
        self.lost_frames = 0

    def update(self, frame: np.ndarray) -> bool:
        """Run the tracker on a frame; True if the target was found.

        An OpenCV error (e.g. the frame size changed) counts as a miss.
        """
        try:
            ok, box = self.tracker.update(frame)
        except cv2.error as e:
            logger.warning("Tracker for object %d failed: %s", self.object_id, e)
            return False
        if ok:
            x, y, w, h = box
            self.rect = Rect(int(x), int(y), int(w), int(h))
        return bool(ok)

    def release(self):
        """Drop the tracker handle."""
        self.tracker = None

    @property
    def released(self) -> bool:
        return self.tracker is None

    def __repr__(self):
        return "TrackedObject(id=%d, label=%r, rect=%s, lost=%d)" % (
            self.object_id, self.label, self.rect.as_tuple(), self.lost_frames)


class ObjectTrackerPool:
    """Owns every TrackedObject; evicted objects are released exactly once."""

    def __init__(self, config: TrackerPoolConfig = None,
                 tracker_factory: Callable[[str], object] = create_tracker):
        self._config = config or TrackerPoolConfig()
        self._tracker_factory = tracker_factory
        self._objects: List[TrackedObject] = []
        self._ids = itertools.count()
        if tracker_factory is create_tracker:
            self._check_algorithms()

    def _check_algorithms(self):
        """Fail at startup rather than on the first selection."""
        for algorithm in (self._config.small_tracker, self._config.large_tracker):
            try:
                find_tracker_constructor(algorithm)
            except ValueError as e:
                raise ConfigError(str(e)) from e

    def choose_algorithm(self, rect: Rect, frame_width: int, frame_height: int) -> str:
        """KCF slows down on huge targets, so those get the large-object tracker."""
        if rect.area > frame_width * frame_height * self._config.large_area_ratio:
            return self._config.large_tracker
        return self._config.small_tracker

    def add(self, frame: np.ndarray, rect: Rect, label: str = "object") -> Optional[TrackedObject]:
        """Start tracking a selected area.

        Args:
            frame: Frame the area was selected in
            rect: Selected area in frame pixels
            label: Display label for the object

        Returns:
            The new object, or None if OpenCV rejected the initial box

        Raises:
            ConfigError: The tracker factory cannot build the algorithm
        """
        height, width = frame.shape[:2]
        algorithm = self.choose_algorithm(rect, width, height)
        tracker = self._tracker_factory(algorithm)
        try:
            tracker.init(frame, rect.as_tuple())
        except cv2.error as e:
            logger.warning("Could not start %s tracker at %s: %s", algorithm, rect.as_tuple(), e)
            return None
        tracked = TrackedObject(next(self._ids), label, rect, tracker, algorithm)
        self._objects.append(tracked)
        logger.info("Tracking object %d (%s) with %s at %s",
                    tracked.object_id, label, algorithm, rect.as_tuple())
        return tracked

    def update(self, frame: np.ndarray) -> List[TrackedObject]:
        """Update every tracker and evict lost or diverged ones.

        Returns:
            The objects evicted this frame
        """
        frame_width = frame.shape[1]
        kept = []
        evicted = []
        for tracked in self._objects:
            if tracked.update(frame):
                tracked.lost_frames = 0
                if tracked.rect.width > frame_width * self._config.max_width_ratio:
                    logger.debug("Object %d diverged (width %d)", tracked.object_id, tracked.rect.width)
                    evicted.append(tracked)
                    continue
            else:
                tracked.lost_frames += 1
                if tracked.lost_frames > self._config.max_lost_frames:
                    logger.debug("Object %d lost for %d frames", tracked.object_id, tracked.lost_frames)
                    evicted.append(tracked)
                    continue
            kept.append(tracked)

        self._objects = kept
        for tracked in evicted:
            tracked.release()
            logger.info("Evicted object %d (%s)", tracked.object_id, tracked.label)
        return evicted

    def clear(self):
        """Release and forget all objects."""
        for tracked in self._objects:
            tracked.release()
        self._objects = []

    def find(self, object_id: int) -> Optional[TrackedObject]:
        for tracked in self._objects:
            if tracked.object_id == object_id:
                return tracked
        return None

    @property
    def objects(self) -> List[TrackedObject]:
        return list(self._objects)

    def __len__(self):
        return len(self._objects)
