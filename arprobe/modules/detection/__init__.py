"""Palm detection decode and hand landmark geometry."""
from .anchors import AnchorConfig, generate_anchors
from .decoder import DecoderConfig, decode_detections
from .nms import non_max_suppression
from .rect_geometry import RectTransform, detection_to_rect

__all__ = [
    "AnchorConfig", "generate_anchors",
    "DecoderConfig", "decode_detections",
    "non_max_suppression",
    "RectTransform", "detection_to_rect",
]
