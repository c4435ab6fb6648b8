"""
Drag-to-select gesture recognition over hand landmarks.

The user points with the index finger to start a selection, drags the
fingertip to the opposite corner and adds the middle finger to confirm.

States:
    INIT     - waiting for an index-only pointing pose
    DRAG     - selection rectangle follows the index fingertip
    SELECTED - one-frame pulse; the caller picks up the selected area

Per-frame classifier readings are noisy, so they pass through a
ChatteringFilter before driving the state machine.
"""

import math
import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from arprobe.core.types import FingerStatus, GestureState, HandLandmarkFrame, Rect

logger = logging.getLogger(__name__)

# Hand landmark indices (start = MCP, end = tip)
INDEX_FINGER_START = 5
INDEX_FINGER_END = 8
MIDDLE_FINGER_START = 9
MIDDLE_FINGER_END = 12
RING_FINGER_START = 13
RING_FINGER_END = 16
LITTLE_FINGER_START = 17
LITTLE_FINGER_END = 20

MAX_GRADIENT = 30.0
THRESH_GRADIENT_INDEX_FINGER = 0.6


@dataclass
class AreaSelectorConfig:
    """Configuration for the area selector."""
    trust_threshold: float = 0.9
    untrusted_limit: int = 10
    debounce_count: int = 5

    @classmethod
    def from_dict(cls, d: dict) -> "AreaSelectorConfig":
        """Create config from dictionary."""
        return cls(
            trust_threshold=d.get("trust_threshold", 0.9),
            untrusted_limit=d.get("untrusted_limit", 10),
            debounce_count=d.get("debounce_count", 5),
        )


# =============================================================================
# Pointing Classifier
# =============================================================================

def _gradient(x0: float, y0: float, x1: float, y1: float) -> float:
    """Slope dy/dx capped at MAX_GRADIENT (vertical segments included)."""
    dx = x1 - x0
    if dx == 0:
        return MAX_GRADIENT
    return min((y1 - y0) / dx, MAX_GRADIENT)


def _relative_change(a: float, b: float) -> float:
    """|(a - b) / a|, infinite when only `a` is zero."""
    if a == 0:
        return 0.0 if b == 0 else math.inf
    return abs((a - b) / a)


class PointingClassifier:
    """Classifies a hand pose as index-only, index+middle, or neither.

    Thresholds depend on the gesture state so that a reading is harder to
    leave than to enter.
    """

    def finger_gradient(self, pos: np.ndarray, start: int, end: int) -> float:
        return _gradient(pos[start, 0], pos[start, 1], pos[end, 0], pos[end, 1])

    def joint_gradients(self, pos: np.ndarray, start: int, end: int) -> List[float]:
        return [_gradient(pos[i, 0], pos[i, 1], pos[i + 1, 0], pos[i + 1, 1])
                for i in range(start, end)]

    def fingers_held(self, pos: np.ndarray) -> bool:
        """True if ring and little fingers are folded against the pointing direction."""
        pointing_up = pos[INDEX_FINGER_END, 1] < pos[INDEX_FINGER_START, 1]
        for start, end in ((RING_FINGER_START, RING_FINGER_END),
                           (LITTLE_FINGER_START, LITTLE_FINGER_END)):
            tip_y = pos[end, 1]
            for i in range(start, end):
                if pointing_up and tip_y < pos[i, 1]:
                    return False
                if not pointing_up and tip_y > pos[i, 1]:
                    return False
        return True

    def classify(self, pos: np.ndarray, state: GestureState) -> FingerStatus:
        """Read the pointing pose of one hand.

        Args:
            pos: (21, 3) landmarks in frame pixels
            state: Current gesture state (selects thresholds)

        Returns:
            FingerStatus reading for this frame
        """
        if state == GestureState.INIT:
            thresh_gradient, thresh_distance = 0.6, 0.3
        else:
            thresh_gradient, thresh_distance = 0.8, 0.6

        if not self.fingers_held(pos):
            return FingerStatus.INVALID

        # The last joint tends not to be straight, so it is ignored
        index_joints = self.joint_gradients(pos, INDEX_FINGER_START, INDEX_FINGER_END)
        for i in range(len(index_joints) - 2):
            if _relative_change(index_joints[i], index_joints[i + 1]) > THRESH_GRADIENT_INDEX_FINGER:
                return FingerStatus.INVALID
            if index_joints[i] * index_joints[i + 1] < 0:
                return FingerStatus.INVALID

        middle_joints = self.joint_gradients(pos, MIDDLE_FINGER_START, MIDDLE_FINGER_END)
        for i in range(len(middle_joints) - 2):
            if _relative_change(middle_joints[i], middle_joints[i + 1]) > thresh_gradient:
                return FingerStatus.INDEX_ONLY
            if middle_joints[i] * middle_joints[i + 1] < 0:
                return FingerStatus.INDEX_ONLY

        index_gradient = self.finger_gradient(pos, INDEX_FINGER_START, INDEX_FINGER_END)
        middle_gradient = self.finger_gradient(pos, MIDDLE_FINGER_START, MIDDLE_FINGER_END)
        if _relative_change(index_gradient, middle_gradient) > thresh_gradient:
            return FingerStatus.INDEX_ONLY
        if index_gradient * middle_gradient < 0:
            return FingerStatus.INDEX_ONLY

        tip_distance = math.hypot(pos[INDEX_FINGER_END, 0] - pos[MIDDLE_FINGER_END, 0],
                                  pos[INDEX_FINGER_END, 1] - pos[MIDDLE_FINGER_END, 1])
        index_length = math.hypot(pos[INDEX_FINGER_START, 0] - pos[INDEX_FINGER_END, 0],
                                  pos[INDEX_FINGER_START, 1] - pos[INDEX_FINGER_END, 1])
        if tip_distance > index_length * thresh_distance:
            return FingerStatus.INDEX_ONLY

        return FingerStatus.INDEX_AND_MIDDLE


# =============================================================================
# Chattering Filter
# =============================================================================

class ChatteringFilter:
    """Accepts a new reading only after it repeats `debounce_count`+1 times in a row.

    INVALID readings are passed through immediately.
    """

    def __init__(self, debounce_count: int = 5):
        self._debounce_count = debounce_count
        self._accepted = FingerStatus.INVALID
        self._change_count = 0

    def update(self, value: FingerStatus) -> FingerStatus:
        if value != self._accepted:
            self._change_count += 1
            if self._change_count > self._debounce_count:
                self._change_count = 0
                self._accepted = value
        else:
            self._change_count = 0

        if value == FingerStatus.INVALID:
            return FingerStatus.INVALID
        return self._accepted

    def reset(self):
        self._accepted = FingerStatus.INVALID
        self._change_count = 0

    @property
    def accepted(self) -> FingerStatus:
        return self._accepted


# =============================================================================
# State Machine
# =============================================================================

class AreaSelector:
    """INIT -> DRAG -> SELECTED -> INIT state machine driven by hand pose."""

    def __init__(self, config: AreaSelectorConfig = None,
                 classifier: PointingClassifier = None):
        self._config = config or AreaSelectorConfig()
        self._classifier = classifier or PointingClassifier()
        self._filter = ChatteringFilter(self._config.debounce_count)
        self._state = GestureState.INIT
        self._untrusted_count = 0
        self._start_point = (0, 0)
        self._selected_area = Rect()
        self._finger_status = FingerStatus.INVALID

    def run(self, landmark: HandLandmarkFrame) -> GestureState:
        """Advance the state machine by one frame.

        Args:
            landmark: This frame's hand landmarks (empty frame if none ran)

        Returns:
            The gesture state after this frame
        """
        finger_status = FingerStatus.INVALID
        if landmark.handflag > self._config.trust_threshold:
            raw = self._classifier.classify(landmark.pos, self._state)
            finger_status = self._filter.update(raw)
            logger.debug("Finger status: raw=%s filtered=%s", raw.name, finger_status.name)
        self._finger_status = finger_status

        if finger_status == FingerStatus.INVALID:
            self._untrusted_count += 1
            if self._untrusted_count > self._config.untrusted_limit:
                self._state = GestureState.INIT
        else:
            self._untrusted_count = 0

        previous = self._state
        tip = landmark.point(INDEX_FINGER_END)
        if self._state == GestureState.INIT:
            self._selected_area = Rect()
            if finger_status == FingerStatus.INDEX_ONLY:
                self._state = GestureState.DRAG
                self._start_point = (int(tip[0]), int(tip[1]))
        elif self._state == GestureState.DRAG:
            if finger_status != FingerStatus.INVALID:
                self._selected_area = Rect.from_points(self._start_point, tip)
                if finger_status == FingerStatus.INDEX_AND_MIDDLE:
                    self._state = GestureState.SELECTED
        elif self._state == GestureState.SELECTED:
            self._state = GestureState.INIT

        if self._state != previous:
            logger.debug("Area selector: %s -> %s", previous.value, self._state.value)
        return self._state

    def reset(self):
        """Back to INIT with no selection."""
        self._filter.reset()
        self._state = GestureState.INIT
        self._untrusted_count = 0
        self._start_point = (0, 0)
        self._selected_area = Rect()
        self._finger_status = FingerStatus.INVALID

    @property
    def state(self) -> GestureState:
        return self._state

    @property
    def selected_area(self) -> Rect:
        return Rect(*self._selected_area.as_tuple())

    @property
    def start_point(self):
        return self._start_point

    @property
    def finger_status(self) -> FingerStatus:
        return self._finger_status

    @property
    def untrusted_count(self) -> int:
        return self._untrusted_count
