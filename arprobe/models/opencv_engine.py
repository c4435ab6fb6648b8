"""
OpenCV DNN inference engine.

Loads any model format cv2.dnn.readNet understands (ONNX, TFLite, ...).
Slowest backend, but needs nothing beyond OpenCV.
"""

import os
import logging

import cv2
import numpy as np

from arprobe.core.errors import ConfigError, InferenceError
from arprobe.models.inference_engine import InferenceEngine, OutputTensor, TensorSpec

logger = logging.getLogger(__name__)


class OpenCVEngine(InferenceEngine):
    """Runs a model through cv2.dnn on the CPU."""

    name = "opencv"

    def __init__(self, num_threads: int = 1):
        super().__init__(num_threads)
        self._net = None

    def initialize(self, model_path, input_specs, output_specs):
        if not os.path.isfile(model_path):
            raise ConfigError("Model not found: %s" % model_path)
        try:
            self._net = cv2.dnn.readNet(model_path)
        except cv2.error as e:
            raise ConfigError("cv2.dnn cannot load %s: %s" % (model_path, e)) from e

        self._net.setPreferableBackend(cv2.dnn.DNN_BACKEND_OPENCV)
        self._net.setPreferableTarget(cv2.dnn.DNN_TARGET_CPU)
        cv2.setNumThreads(self._num_threads)

        known = set(self._net.getLayerNames()) | set(self._net.getUnconnectedOutLayersNames())
        unknown = [s.name for s in output_specs if s.name not in known]
        if unknown:
            # Importers sometimes rename layers; forward() reports the real error
            logger.warning("Output layer(s) %s not listed by cv2.dnn", ", ".join(unknown))
        self._input_specs = [TensorSpec(s.name, s.shape, s.dtype) for s in input_specs]
        self._output_specs = [TensorSpec(s.name, s.shape, s.dtype) for s in output_specs]
        self._initialized = True
        logger.info("OpenCV DNN model loaded: %s", model_path)

    def invoke(self, inputs):
        self._require_initialized()
        try:
            for spec in self._input_specs:
                self._net.setInput(np.asarray(inputs[spec.name], dtype=np.float32), spec.name)
        except KeyError as e:
            raise InferenceError("missing input tensor %s" % e) from e

        names = [spec.name for spec in self._output_specs]
        try:
            outputs = self._net.forward(names)
        except cv2.error as e:
            raise InferenceError("OpenCV DNN inference failed: %s" % e) from e
        return {name: OutputTensor(name=name, data=np.asarray(data))
                for name, data in zip(names, outputs)}

    def set_num_threads(self, num_threads):
        super().set_num_threads(num_threads)
        cv2.setNumThreads(num_threads)

    def finalize(self):
        self._net = None
        super().finalize()
