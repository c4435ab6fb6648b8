"""
Raw detector tensors -> candidate detections.

Decodes SSD box/keypoint regression against the anchor grid and picks the
best class per box. The result is in image-normalized [0, 1] coordinates
and is not sorted; NMS is responsible for ordering.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import numpy as np

from arprobe.core.errors import ConfigMismatch
from arprobe.core.types import Anchor, Detection
from arprobe.modules.detection.anchors import anchors_to_array

logger = logging.getLogger(__name__)


@dataclass
class DecoderConfig:
    """Decode constants of one detector model (palm detection defaults)."""
    num_boxes: int = 2944
    num_coords: int = 18            # bbox(2*2) + keypoints(7*2)
    num_classes: int = 1
    box_coord_offset: int = 0
    keypoint_coord_offset: int = 4
    num_keypoints: int = 7
    num_values_per_keypoint: int = 2
    x_scale: float = 256.0
    y_scale: float = 256.0
    w_scale: float = 256.0
    h_scale: float = 256.0
    reverse_output_order: bool = True
    apply_exponential_on_box_size: bool = False
    sigmoid_score: bool = True
    score_clipping_thresh: Optional[float] = 100.0
    min_score_thresh: float = 0.7

    @classmethod
    def from_dict(cls, d: dict) -> "DecoderConfig":
        """Create config from dictionary."""
        default = cls()
        values = {}
        for name in default.__dataclass_fields__:
            values[name] = d.get(name, getattr(default, name))
        return cls(**values)


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(x, -88.0, 88.0)))


def _as_matrix(tensor, rows: int, cols: int, name: str) -> np.ndarray:
    """View a (possibly batched or flat) tensor as a rows x cols float matrix."""
    array = np.asarray(tensor, dtype=np.float32)
    if array.size != rows * cols:
        raise ConfigMismatch(
            "%s has %d values, expected %d x %d" % (name, array.size, rows, cols),
            expected=(rows, cols), actual=array.shape)
    # A transposed (cols, rows) tensor has the right size but the wrong layout
    if array.ndim > 1 and cols > 1 and array.shape[-1] != cols:
        raise ConfigMismatch(
            "%s has shape %s, expected (..., %d, %d)" % (name, array.shape, rows, cols),
            expected=(rows, cols), actual=array.shape)
    return array.reshape(rows, cols)


def decode_boxes(raw_boxes: np.ndarray, anchors: np.ndarray, config: DecoderConfig) -> np.ndarray:
    """Decode box and keypoint regression.

    Args:
        raw_boxes: (num_boxes, num_coords) regression output
        anchors: (num_boxes, 4) array of [x_center, y_center, w, h]
        config: DecoderConfig

    Returns:
        (num_boxes, num_coords) array: [ymin, xmin, ymax, xmax] at
        box_coord_offset and (x, y) pairs at keypoint_coord_offset
    """
    offset = config.box_coord_offset
    if config.reverse_output_order:
        x_center = raw_boxes[:, offset]
        y_center = raw_boxes[:, offset + 1]
        w = raw_boxes[:, offset + 2]
        h = raw_boxes[:, offset + 3]
    else:
        y_center = raw_boxes[:, offset]
        x_center = raw_boxes[:, offset + 1]
        h = raw_boxes[:, offset + 2]
        w = raw_boxes[:, offset + 3]

    anchor_x = anchors[:, 0]
    anchor_y = anchors[:, 1]
    anchor_w = anchors[:, 2]
    anchor_h = anchors[:, 3]

    x_center = x_center / config.x_scale * anchor_w + anchor_x
    y_center = y_center / config.y_scale * anchor_h + anchor_y
    if config.apply_exponential_on_box_size:
        h = np.exp(h / config.h_scale) * anchor_h
        w = np.exp(w / config.w_scale) * anchor_w
    else:
        h = h / config.h_scale * anchor_h
        w = w / config.w_scale * anchor_w

    boxes = np.zeros_like(raw_boxes)
    boxes[:, offset] = y_center - h / 2.0
    boxes[:, offset + 1] = x_center - w / 2.0
    boxes[:, offset + 2] = y_center + h / 2.0
    boxes[:, offset + 3] = x_center + w / 2.0

    for k in range(config.num_keypoints):
        kp_offset = config.keypoint_coord_offset + k * config.num_values_per_keypoint
        if config.reverse_output_order:
            keypoint_x = raw_boxes[:, kp_offset]
            keypoint_y = raw_boxes[:, kp_offset + 1]
        else:
            keypoint_y = raw_boxes[:, kp_offset]
            keypoint_x = raw_boxes[:, kp_offset + 1]
        boxes[:, kp_offset] = keypoint_x / config.x_scale * anchor_w + anchor_x
        boxes[:, kp_offset + 1] = keypoint_y / config.y_scale * anchor_h + anchor_y

    return boxes


def decode_scores(raw_scores: np.ndarray, config: DecoderConfig):
    """Best class and its score for every box.

    Returns:
        (scores, class_ids) arrays of length num_boxes
    """
    scores = raw_scores
    if config.score_clipping_thresh is not None:
        scores = np.clip(scores, -config.score_clipping_thresh, config.score_clipping_thresh)
    if config.sigmoid_score:
        scores = _sigmoid(scores)
    class_ids = np.argmax(scores, axis=1)
    best = scores[np.arange(scores.shape[0]), class_ids]
    return best, class_ids


def decode_detections(
    raw_boxes,
    raw_scores,
    anchors: Union[Sequence[Anchor], np.ndarray],
    config: DecoderConfig,
) -> List[Detection]:
    """Decode raw regression/score tensors into detections above threshold.

    Raises:
        ConfigMismatch: If anchors or tensor sizes disagree with the config
    """
    anchor_array = anchors if isinstance(anchors, np.ndarray) else anchors_to_array(list(anchors))
    if anchor_array.shape[0] != config.num_boxes:
        raise ConfigMismatch(
            "anchor count %d does not match num_boxes %d" % (anchor_array.shape[0], config.num_boxes),
            expected=config.num_boxes, actual=anchor_array.shape[0])
    needed = config.keypoint_coord_offset + config.num_keypoints * config.num_values_per_keypoint
    if config.num_keypoints and needed > config.num_coords:
        raise ConfigMismatch(
            "num_coords %d cannot hold %d keypoints" % (config.num_coords, config.num_keypoints),
            expected=needed, actual=config.num_coords)
    if config.box_coord_offset + 4 > config.num_coords:
        raise ConfigMismatch("num_coords %d cannot hold a box" % config.num_coords,
                             expected=config.box_coord_offset + 4, actual=config.num_coords)

    box_matrix = _as_matrix(raw_boxes, config.num_boxes, config.num_coords, "raw_boxes")
    score_matrix = _as_matrix(raw_scores, config.num_boxes, config.num_classes, "raw_scores")

    boxes = decode_boxes(box_matrix, anchor_array, config)
    scores, class_ids = decode_scores(score_matrix, config)

    detections = []
    offset = config.box_coord_offset
    for i in np.flatnonzero(scores >= config.min_score_thresh):
        ymin, xmin, ymax, xmax = boxes[i, offset:offset + 4]
        keypoints = []
        for k in range(config.num_keypoints):
            kp_offset = config.keypoint_coord_offset + k * config.num_values_per_keypoint
            keypoints.append((float(boxes[i, kp_offset]), float(boxes[i, kp_offset + 1])))
        detections.append(Detection(
            score=float(scores[i]),
            class_id=int(class_ids[i]),
            x=float(xmin),
            y=float(ymin),
            w=float(xmax - xmin),
            h=float(ymax - ymin),
            keypoints=keypoints,
        ))

    logger.debug("Decoded %d / %d boxes above %.2f",
                 len(detections), config.num_boxes, config.min_score_thresh)
    return detections
