"""
Hand landmark stage: oriented palm region -> 21 hand landmarks.

The region is rotated upright, cropped and resized to the model input;
the model output is then projected back into frame coordinates.
"""

import math
import time
import logging
from dataclasses import dataclass
from typing import Dict

import cv2
import numpy as np

from arprobe.core.errors import ConfigMismatch
from arprobe.core.types import NUM_HAND_LANDMARKS, HandLandmarkFrame, OrientedRect
from arprobe.models.inference_engine import InferenceEngine, TensorSpec, output_values
from arprobe.modules.detection.landmark_geometry import (
    LANDMARK_RECT_SCALE,
    landmarks_to_rect,
    project_landmarks,
)
from arprobe.modules.utils.logger import log_timing

logger = logging.getLogger(__name__)


@dataclass
class HandLandmarkConfig:
    """Configuration for the hand landmark model."""
    model_path: str = "models/hand_landmark.onnx"
    input_name: str = "input_1"
    landmarks_name: str = "ld_21_3d"
    handflag_name: str = "output_handflag"
    handedness_name: str = "output_handedness"
    input_width: int = 256
    input_height: int = 256
    rect_scale: float = LANDMARK_RECT_SCALE

    @classmethod
    def from_dict(cls, d: dict) -> "HandLandmarkConfig":
        """Create config from dictionary."""
        return cls(
            model_path=d.get("model_path", "models/hand_landmark.onnx"),
            input_name=d.get("input_name", "input_1"),
            landmarks_name=d.get("landmarks_name", "ld_21_3d"),
            handflag_name=d.get("handflag_name", "output_handflag"),
            handedness_name=d.get("handedness_name", "output_handedness"),
            input_width=d.get("input_width", 256),
            input_height=d.get("input_height", 256),
            rect_scale=d.get("rect_scale", LANDMARK_RECT_SCALE),
        )


class HandLandmarkResult:
    """Landmarks of one hand plus stage timings."""

    __slots__ = ("landmark", "timings")

    def __init__(self, landmark: HandLandmarkFrame = None):
        self.landmark = landmark or HandLandmarkFrame.empty()
        self.timings: Dict[str, float] = {}


class HandLandmarkEstimator:
    """Runs the hand landmark model on a rotated palm crop."""

    def __init__(self, engine: InferenceEngine, config: HandLandmarkConfig = None):
        self._engine = engine
        self._config = config or HandLandmarkConfig()

    @log_timing
    def initialize(self, model_path: str = None):
        """Load the model.

        Raises:
            ConfigError: Model cannot be loaded or lacks the expected tensors
        """
        cfg = self._config
        self._engine.initialize(
            model_path or cfg.model_path,
            [TensorSpec(cfg.input_name, (1, cfg.input_height, cfg.input_width, 3))],
            [TensorSpec(cfg.landmarks_name), TensorSpec(cfg.handflag_name),
             TensorSpec(cfg.handedness_name)],
        )
        logger.info("Hand landmark estimator ready")

    def finalize(self):
        self._engine.finalize()

    def crop(self, frame: np.ndarray, region: OrientedRect) -> np.ndarray:
        """Rotate the frame about the region center and cut the region out upright."""
        center = region.center
        size = (max(1, int(round(region.width))), max(1, int(round(region.height))))
        trans = cv2.getRotationMatrix2D(center, math.degrees(region.rotation), 1.0)
        rotated = cv2.warpAffine(frame, trans, (frame.shape[1], frame.shape[0]))
        return cv2.getRectSubPix(rotated, size, center)

    def preprocess(self, crop: np.ndarray) -> np.ndarray:
        """BGR crop -> (1, H, W, 3) float32 in [0, 1]."""
        cfg = self._config
        img = cv2.resize(crop, (cfg.input_width, cfg.input_height))
        img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
        return (img.astype(np.float32) / 255.0)[np.newaxis, ...]

    def process(self, frame: np.ndarray, region: OrientedRect) -> HandLandmarkResult:
        """Estimate landmarks inside an oriented palm region.

        An empty region yields an empty landmark frame without inference.

        Raises:
            InferenceError: The engine failed
            ConfigMismatch: Outputs are missing or the landmark tensor has the wrong size
        """
        cfg = self._config
        if region.is_empty:
            return HandLandmarkResult()

        t0 = time.perf_counter()
        input_tensor = self.preprocess(self.crop(frame, region))
        t1 = time.perf_counter()
        outputs = self._engine.invoke({cfg.input_name: input_tensor})
        t2 = time.perf_counter()

        raw = output_values(outputs, cfg.landmarks_name)
        if raw.size != NUM_HAND_LANDMARKS * 3:
            raise ConfigMismatch(
                "%s has %d values, expected %d x 3" % (cfg.landmarks_name, raw.size, NUM_HAND_LANDMARKS),
                expected=(NUM_HAND_LANDMARKS, 3), actual=raw.shape)
        handflag = output_values(outputs, cfg.handflag_name)
        handedness = output_values(outputs, cfg.handedness_name)

        pos = project_landmarks(raw, cfg.input_width, cfg.input_height, region)
        landmark = HandLandmarkFrame(
            handflag=float(handflag.ravel()[0]),
            handedness=float(handedness.ravel()[0]),
            pos=pos,
            rect=landmarks_to_rect(pos, cfg.rect_scale, cfg.rect_scale),
        )
        t3 = time.perf_counter()

        result = HandLandmarkResult(landmark)
        result.timings = {
            "pre_process": (t1 - t0) * 1000,
            "inference": (t2 - t1) * 1000,
            "post_process": (t3 - t2) * 1000,
        }
        return result
