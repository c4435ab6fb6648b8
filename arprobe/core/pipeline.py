"""
Per-frame orchestrator for palm tracking and drag-to-select.

Architecture:
    PalmTracker (schedule) -> PalmDetector -> HandLandmarkEstimator
    -> PalmTracker (smooth) -> AreaSelector -> ObjectTrackerPool

All mutable state lives in the Pipeline instance, so several pipelines can
run side by side. A frame whose inference or decoding fails is logged and
reported with the previous state; it never raises to the caller.
"""

import logging
from typing import Callable, List, Optional

import numpy as np

from arprobe.core.errors import ConfigError, ConfigMismatch, InferenceError
from arprobe.core.events import EventBus, Events
from arprobe.core.types import (
    Command,
    FrameResult,
    GestureState,
    HandLandmarkFrame,
    Rect,
    TrackingMode,
)
from arprobe.models.inference_engine import create_engine
from arprobe.modules.detection.hand_landmark import HandLandmarkConfig, HandLandmarkEstimator
from arprobe.modules.detection.palm_detector import PalmDetector, PalmDetectorConfig
from arprobe.modules.recognition.area_selector import AreaSelector, AreaSelectorConfig
from arprobe.modules.tracking.object_tracker_pool import ObjectTrackerPool, TrackerPoolConfig
from arprobe.modules.tracking.palm_tracker import PalmTracker, PalmTrackerConfig
from arprobe.modules.utils.logger import FrameLogAdapter, setup_logging_from_config
from arprobe.modules.utils.performance_monitor import PerformanceMonitor

logger = logging.getLogger(__name__)

DEFAULT_OBJECT_LABEL = "object"


class Pipeline:
    """Palm tracking, gesture selection and object tracking for one video stream."""

    def __init__(
        self,
        palm_detector,
        landmark_estimator,
        palm_tracker: PalmTracker = None,
        area_selector: AreaSelector = None,
        tracker_pool: ObjectTrackerPool = None,
        classifier: Optional[Callable[[np.ndarray, Rect], str]] = None,
        event_bus: EventBus = None,
        performance_monitor: PerformanceMonitor = None,
        config: dict = None,
    ):
        self._detector = palm_detector
        self._estimator = landmark_estimator
        self._palm_tracker = palm_tracker or PalmTracker()
        self._area_selector = area_selector or AreaSelector()
        # An empty pool is falsy
        self._pool = tracker_pool if tracker_pool is not None else ObjectTrackerPool()
        self._classifier = classifier
        self._bus = event_bus or EventBus()
        self._perf = performance_monitor or PerformanceMonitor()
        self._log = FrameLogAdapter(logger)

        config = config or {}
        self._area_handflag_threshold = config.get("area_handflag_threshold", 0.8)
        self._debug = config.get("debug", False)

        self._frame_count = 0
        self._pending_commands: List[Command] = []
        self._last_result = FrameResult()

    @classmethod
    def from_config(cls, config, classifier=None, configure_logging: bool = False) -> "Pipeline":
        """Build and initialize a pipeline from a Config.

        Args:
            config: Loaded Config
            classifier: Optional (frame, area) -> label callable
            configure_logging: Also set up root logging from the 'logging' section

        Raises:
            ConfigError: A model or backend cannot be loaded
        """
        if configure_logging:
            logging_section = dict(config.get_section("logging"))
            if logging_section.get("file"):
                logging_section["file"] = config.resolve_path(logging_section["file"])
            setup_logging_from_config(logging_section)

        backend = config.get("inference.backend", "onnxruntime")
        num_threads = config.get("inference.num_threads", 4)

        detector_config = PalmDetectorConfig.from_dict(config.get_section("palm_detection"))
        detector = PalmDetector(create_engine(backend, num_threads), detector_config)
        detector.initialize(config.resolve_path(detector_config.model_path))

        landmark_config = HandLandmarkConfig.from_dict(config.get_section("hand_landmark"))
        estimator = HandLandmarkEstimator(create_engine(backend, num_threads), landmark_config)
        estimator.initialize(config.resolve_path(landmark_config.model_path))

        selector_section = config.get_section("area_selector")
        return cls(
            detector,
            estimator,
            palm_tracker=PalmTracker(PalmTrackerConfig.from_dict(config.get_section("palm_tracker"))),
            area_selector=AreaSelector(AreaSelectorConfig.from_dict(selector_section)),
            tracker_pool=ObjectTrackerPool(TrackerPoolConfig.from_dict(config.get_section("object_tracker"))),
            classifier=classifier,
            config={
                "area_handflag_threshold": selector_section.get("area_handflag_threshold", 0.8),
                "debug": config.get("pipeline.debug", False),
            },
        )

    # =========================================================================
    # Commands
    # =========================================================================

    def command(self, cmd: Command):
        """Queue a command; it takes effect at the start of the next frame."""
        self._pending_commands.append(Command(cmd))

    def _apply_commands(self):
        for cmd in self._pending_commands:
            if cmd == Command.TOGGLE_DEBUG:
                self._debug = not self._debug
                self._log.info("Debug mode %s", "on" if self._debug else "off")
                self._bus.emit(Events.DEBUG_TOGGLED, debug=self._debug)
        self._pending_commands = []

    # =========================================================================
    # Frame processing
    # =========================================================================

    def process(self, frame: np.ndarray) -> FrameResult:
        """Run one frame through every stage.

        Returns:
            FrameResult; on a recoverable failure it carries the previous
            frame's state with `failed` set
        """
        self._frame_count += 1
        self._log.set_frame(self._frame_count)
        self._apply_commands()
        snapshot = self._palm_tracker.snapshot()

        try:
            with self._perf.measure("total"):
                result = self._run_stages(frame)
        except (ConfigMismatch, InferenceError) as e:
            self._log.warning("Frame failed: %s", e)
            self._palm_tracker.restore(snapshot)
            self._perf.record_failure()
            self._bus.emit(Events.FRAME_FAILED, frame_id=self._frame_count, error=e)
            result = self._failed_result()

        self._perf.tick(result.detector_ran)
        self._last_result = result
        return result

    def _run_stages(self, frame: np.ndarray) -> FrameResult:
        image_height, image_width = frame.shape[:2]
        result = FrameResult(self._frame_count)
        result.debug = self._debug

        # --- 1. Palm detection (only when the cached rect cannot be used) ---
        palms = None
        if self._palm_tracker.needs_detection():
            with self._perf.measure("palm_detection"):
                detection = self._detector.process(frame)
            palms = detection.palms
            result.detector_ran = True
            result.timings_ms["palm_detection"] = sum(detection.timings.values())
            if palms:
                result.palm_detected = True
                self._bus.emit(Events.PALM_DETECTED, frame_id=self._frame_count,
                               rect=palms[0], count=len(palms))

        # --- 2. Hand landmarks ---
        region = self._palm_tracker.select_region(palms, image_width, image_height)
        result.palm_rect = region
        landmark = HandLandmarkFrame.empty()
        if region is not None and not region.is_empty:
            with self._perf.measure("hand_landmark"):
                estimate = self._estimator.process(frame, region)
            landmark = estimate.landmark
            result.timings_ms["hand_landmark"] = sum(estimate.timings.values())
        result.landmark = landmark

        # --- 3. Palm tracking ---
        previous_mode = self._palm_tracker.mode
        mode = self._palm_tracker.update(landmark if region is not None else None)
        result.tracking_mode = mode
        if mode != previous_mode:
            event = Events.TRACKING_RESTORED if mode == TrackingMode.HAS_CACHED_RECT else Events.TRACKING_LOST
            self._bus.emit(event, frame_id=self._frame_count)

        # --- 4. Area selection ---
        with self._perf.measure("area_selector"):
            previous_state = self._area_selector.state
            state = self._area_selector.run(landmark)
        result.gesture_state = state
        if state != previous_state:
            self._log.debug("Gesture %s -> %s", previous_state.value, state.value)
            self._bus.emit(Events.GESTURE_STATE_CHANGED, frame_id=self._frame_count,
                           previous=previous_state, current=state)

        if landmark.handflag >= self._area_handflag_threshold:
            area = self._area_selector.selected_area.clamped(image_width, image_height, min_size=1)
            if state != GestureState.INIT:
                result.selected_area = area
            if state == GestureState.SELECTED:
                self._on_area_selected(frame, area)

        # --- 5. Object tracking ---
        with self._perf.measure("object_tracking"):
            evicted = self._pool.update(frame)
        for tracked in evicted:
            self._bus.emit(Events.OBJECT_EVICTED, frame_id=self._frame_count,
                           object_id=tracked.object_id, label=tracked.label)
        result.tracked_objects = self._pool.objects

        return result

    def _on_area_selected(self, frame: np.ndarray, area: Rect):
        label = self._classifier(frame, area) if self._classifier else DEFAULT_OBJECT_LABEL
        self._bus.emit(Events.AREA_SELECTED, frame_id=self._frame_count, area=area, label=label)
        try:
            tracked = self._pool.add(frame, area, label)
        except ConfigError as e:
            self._log.warning("Cannot track '%s': %s", label, e)
            return
        if tracked is None:
            return
        self._bus.emit(Events.OBJECT_ADDED, frame_id=self._frame_count,
                       object_id=tracked.object_id, label=label, rect=tracked.rect)

    def _failed_result(self) -> FrameResult:
        """The previous frame's state, stamped with this frame's id."""
        previous = self._last_result
        result = FrameResult(self._frame_count)
        result.palm_rect = previous.palm_rect
        result.landmark = previous.landmark
        result.tracking_mode = self._palm_tracker.mode
        result.gesture_state = self._area_selector.state
        result.selected_area = previous.selected_area
        result.tracked_objects = self._pool.objects
        result.debug = self._debug
        result.failed = True
        return result

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def reset(self):
        """Forget all tracking state (keeps models loaded)."""
        self._palm_tracker.reset()
        self._area_selector.reset()
        self._pool.clear()
        self._last_result = FrameResult(self._frame_count)

    def close(self):
        """Release trackers and inference engines."""
        self._pool.clear()
        self._detector.finalize()
        self._estimator.finalize()
        logger.info("Pipeline closed after %d frames", self._frame_count)

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def performance(self) -> PerformanceMonitor:
        return self._perf

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def debug(self) -> bool:
        return self._debug

    @property
    def tracking_mode(self) -> TrackingMode:
        return self._palm_tracker.mode

    @property
    def gesture_state(self) -> GestureState:
        return self._area_selector.state

    @property
    def tracked_objects(self) -> list:
        return self._pool.objects

    @property
    def last_result(self) -> FrameResult:
        return self._last_result
