"""
SSD anchor grid generation for the palm detector.

Anchors are a pure function of the configuration: the same configuration
always yields the same count and ordering, and the decoder indexes them
positionally.
"""

import math
import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np

from arprobe.core.types import Anchor

logger = logging.getLogger(__name__)


@dataclass
class AnchorConfig:
    """Multi-scale anchor configuration (palm detection defaults)."""
    num_layers: int = 5
    min_scale: float = 0.1171875
    max_scale: float = 0.75
    input_size_height: int = 256
    input_size_width: int = 256
    anchor_offset_x: float = 0.5
    anchor_offset_y: float = 0.5
    strides: List[int] = field(default_factory=lambda: [8, 16, 32, 32, 32])
    aspect_ratios: List[float] = field(default_factory=lambda: [1.0])
    fixed_anchor_size: bool = True
    interpolated_scale_aspect_ratio: float = 1.0
    reduce_boxes_in_lowest_layer: bool = False
    feature_map_height: List[int] = field(default_factory=list)
    feature_map_width: List[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict) -> "AnchorConfig":
        """Create config from dictionary."""
        default = cls()
        return cls(
            num_layers=d.get("num_layers", default.num_layers),
            min_scale=d.get("min_scale", default.min_scale),
            max_scale=d.get("max_scale", default.max_scale),
            input_size_height=d.get("input_size_height", default.input_size_height),
            input_size_width=d.get("input_size_width", default.input_size_width),
            anchor_offset_x=d.get("anchor_offset_x", default.anchor_offset_x),
            anchor_offset_y=d.get("anchor_offset_y", default.anchor_offset_y),
            strides=list(d.get("strides", default.strides)),
            aspect_ratios=list(d.get("aspect_ratios", default.aspect_ratios)),
            fixed_anchor_size=d.get("fixed_anchor_size", default.fixed_anchor_size),
            interpolated_scale_aspect_ratio=d.get(
                "interpolated_scale_aspect_ratio", default.interpolated_scale_aspect_ratio),
            reduce_boxes_in_lowest_layer=d.get(
                "reduce_boxes_in_lowest_layer", default.reduce_boxes_in_lowest_layer),
            feature_map_height=list(d.get("feature_map_height", [])),
            feature_map_width=list(d.get("feature_map_width", [])),
        )


def calculate_scale(min_scale: float, max_scale: float,
                    stride_index: int, num_strides: int) -> float:
    """Linearly interpolate the anchor scale of a layer."""
    if num_strides == 1:
        return (min_scale + max_scale) * 0.5
    return min_scale + (max_scale - min_scale) * stride_index / (num_strides - 1.0)


def generate_anchors(config: AnchorConfig) -> List[Anchor]:
    """Build the ordered anchor list for a configuration.

    Consecutive layers sharing a stride are folded into one feature map;
    every cell of that map emits one anchor per (layer, aspect ratio), plus
    an interpolated-scale anchor per layer when enabled.

    Raises:
        ValueError: If the layer count does not match the stride list
    """
    if config.num_layers != len(config.strides):
        raise ValueError(
            "num_layers (%d) must match the number of strides (%d)"
            % (config.num_layers, len(config.strides)))
    if config.feature_map_height and len(config.feature_map_height) != config.num_layers:
        raise ValueError("feature_map_height must list one size per layer")

    anchors = []
    num_strides = len(config.strides)
    layer_id = 0
    while layer_id < config.num_layers:
        anchor_heights = []
        anchor_widths = []
        aspect_ratios = []
        scales = []

        last_same_stride_layer = layer_id
        while (last_same_stride_layer < num_strides
               and config.strides[last_same_stride_layer] == config.strides[layer_id]):
            scale = calculate_scale(config.min_scale, config.max_scale,
                                    last_same_stride_layer, num_strides)
            if last_same_stride_layer == 0 and config.reduce_boxes_in_lowest_layer:
                aspect_ratios.extend([1.0, 2.0, 0.5])
                scales.extend([0.1, scale, scale])
            else:
                for aspect_ratio in config.aspect_ratios:
                    aspect_ratios.append(aspect_ratio)
                    scales.append(scale)
                if config.interpolated_scale_aspect_ratio > 0.0:
                    if last_same_stride_layer == num_strides - 1:
                        scale_next = 1.0
                    else:
                        scale_next = calculate_scale(config.min_scale, config.max_scale,
                                                     last_same_stride_layer + 1, num_strides)
                    scales.append(math.sqrt(scale * scale_next))
                    aspect_ratios.append(config.interpolated_scale_aspect_ratio)
            last_same_stride_layer += 1

        for aspect_ratio, scale in zip(aspect_ratios, scales):
            ratio_sqrt = math.sqrt(aspect_ratio)
            anchor_heights.append(scale / ratio_sqrt)
            anchor_widths.append(scale * ratio_sqrt)

        if config.feature_map_height:
            feature_map_height = config.feature_map_height[layer_id]
            feature_map_width = config.feature_map_width[layer_id]
        else:
            stride = config.strides[layer_id]
            feature_map_height = int(math.ceil(config.input_size_height / stride))
            feature_map_width = int(math.ceil(config.input_size_width / stride))

        for y in range(feature_map_height):
            y_center = (y + config.anchor_offset_y) / feature_map_height
            for x in range(feature_map_width):
                x_center = (x + config.anchor_offset_x) / feature_map_width
                for anchor_width, anchor_height in zip(anchor_widths, anchor_heights):
                    if config.fixed_anchor_size:
                        anchors.append(Anchor(x_center, y_center, 1.0, 1.0))
                    else:
                        anchors.append(Anchor(x_center, y_center, anchor_width, anchor_height))

        layer_id = last_same_stride_layer

    logger.debug("Generated %d anchors (%d layers)", len(anchors), config.num_layers)
    return anchors


def anchors_to_array(anchors: List[Anchor]) -> np.ndarray:
    """Pack anchors into an (N, 4) float32 array of [x_center, y_center, w, h]."""
    if not anchors:
        return np.zeros((0, 4), dtype=np.float32)
    return np.array([[a.x_center, a.y_center, a.w, a.h] for a in anchors], dtype=np.float32)
