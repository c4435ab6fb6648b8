"""
Palm detection stage: frame -> oriented palm rectangles.

Pipeline:
    resize to model input -> RGB -> [-1, 1] -> inference
    -> SSD decode -> NMS -> pixel coordinates -> oriented crop rect
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Dict, List

import cv2
import numpy as np

from arprobe.core.errors import ConfigError
from arprobe.core.types import Detection, OrientedRect
from arprobe.models.inference_engine import InferenceEngine, TensorSpec, output_values
from arprobe.modules.detection.anchors import AnchorConfig, anchors_to_array, generate_anchors
from arprobe.modules.detection.decoder import DecoderConfig, decode_detections
from arprobe.modules.detection.nms import non_max_suppression
from arprobe.modules.detection.rect_geometry import RectTransform, detection_to_rect
from arprobe.modules.utils.logger import log_timing

logger = logging.getLogger(__name__)


@dataclass
class PalmDetectorConfig:
    """Configuration for the palm detection model."""
    model_path: str = "models/palm_detection.onnx"
    input_name: str = "input"
    regressors_name: str = "regressors"
    classificators_name: str = "classificators"
    input_width: int = 256
    input_height: int = 256
    iou_threshold: float = 0.5
    use_weighted_merge: bool = False
    anchors: AnchorConfig = field(default_factory=AnchorConfig)
    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    rect_transform: RectTransform = field(default_factory=RectTransform)

    @classmethod
    def from_dict(cls, d: dict) -> "PalmDetectorConfig":
        """Create config from dictionary."""
        return cls(
            model_path=d.get("model_path", "models/palm_detection.onnx"),
            input_name=d.get("input_name", "input"),
            regressors_name=d.get("regressors_name", "regressors"),
            classificators_name=d.get("classificators_name", "classificators"),
            input_width=d.get("input_width", 256),
            input_height=d.get("input_height", 256),
            iou_threshold=d.get("iou_threshold", 0.5),
            use_weighted_merge=d.get("use_weighted_merge", False),
            anchors=AnchorConfig.from_dict(d.get("anchors", {})),
            decoder=DecoderConfig.from_dict(d.get("decoder", {})),
            rect_transform=RectTransform.from_dict(d.get("rect_transform", {})),
        )


class PalmDetectionResult:
    """Palms found in one frame, largest first."""

    __slots__ = ("palms", "detections", "timings")

    def __init__(self):
        self.palms: List[OrientedRect] = []
        self.detections: List[Detection] = []
        self.timings: Dict[str, float] = {}


class PalmDetector:
    """Runs the palm detection model on full frames."""

    def __init__(self, engine: InferenceEngine, config: PalmDetectorConfig = None):
        self._engine = engine
        self._config = config or PalmDetectorConfig()
        self._anchors = None

    @log_timing
    def initialize(self, model_path: str = None):
        """Load the model and build the anchor grid.

        Raises:
            ConfigError: Model cannot be loaded or does not match the anchors
        """
        cfg = self._config
        self._engine.initialize(
            model_path or cfg.model_path,
            [TensorSpec(cfg.input_name, (1, cfg.input_height, cfg.input_width, 3))],
            [TensorSpec(cfg.regressors_name), TensorSpec(cfg.classificators_name)],
        )
        try:
            self._anchors = anchors_to_array(generate_anchors(cfg.anchors))
        except ValueError as e:
            raise ConfigError("Invalid anchor configuration: %s" % e) from e
        if self._anchors.shape[0] != cfg.decoder.num_boxes:
            raise ConfigError("Anchor grid has %d boxes but decoder expects %d"
                              % (self._anchors.shape[0], cfg.decoder.num_boxes))
        logger.info("Palm detector ready (%d anchors)", self._anchors.shape[0])

    def finalize(self):
        self._engine.finalize()
        self._anchors = None

    def preprocess(self, frame: np.ndarray) -> np.ndarray:
        """BGR frame -> (1, H, W, 3) float32 in [-1, 1]."""
        cfg = self._config
        img = cv2.resize(frame, (cfg.input_width, cfg.input_height))
        img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
        img = (img.astype(np.float32) / 255.0 - 0.5) / 0.5
        return img[np.newaxis, ...]

    def process(self, frame: np.ndarray) -> PalmDetectionResult:
        """Detect palms in a BGR frame.

        Raises:
            InferenceError: The engine failed
            ConfigMismatch: Output tensors disagree with the decoder config
        """
        cfg = self._config
        result = PalmDetectionResult()
        image_height, image_width = frame.shape[:2]

        t0 = time.perf_counter()
        input_tensor = self.preprocess(frame)
        t1 = time.perf_counter()
        outputs = self._engine.invoke({cfg.input_name: input_tensor})
        t2 = time.perf_counter()

        candidates = decode_detections(
            output_values(outputs, cfg.regressors_name),
            output_values(outputs, cfg.classificators_name),
            self._anchors,
            cfg.decoder,
        )
        kept = non_max_suppression(candidates, cfg.iou_threshold, cfg.use_weighted_merge)
        for detection in kept:
            pixel = detection.scaled(image_width, image_height)
            result.detections.append(pixel)
            result.palms.append(detection_to_rect(pixel, image_width, image_height, cfg.rect_transform))
        t3 = time.perf_counter()

        result.timings = {
            "pre_process": (t1 - t0) * 1000,
            "inference": (t2 - t1) * 1000,
            "post_process": (t3 - t2) * 1000,
        }
        if result.palms:
            logger.debug("Palm detector: %d palm(s), best score %.2f",
                         len(result.palms), result.palms[0].score)
        return result

    @property
    def anchors(self) -> np.ndarray:
        return self._anchors
