"""
ONNX Runtime inference engine.

Prefers the CUDA execution provider when the installed onnxruntime offers
it, and falls back to CPU.
"""

import os
import logging

import numpy as np

from arprobe.core.errors import ConfigError, InferenceError
from arprobe.models.inference_engine import InferenceEngine, OutputTensor, TensorSpec

logger = logging.getLogger(__name__)

try:
    import onnxruntime as ort
    ONNX_AVAILABLE = True
except ImportError:
    ONNX_AVAILABLE = False
    logger.info("onnxruntime not available, onnxruntime backend disabled")


def _resolve_shape(requested, model_shape):
    """Fill unspecified dimensions of a requested shape from the model."""
    model_shape = tuple(d if isinstance(d, int) and d > 0 else 1 for d in model_shape)
    if requested is None:
        return model_shape
    return tuple(r if isinstance(r, int) and r > 0 else m
                 for r, m in zip(requested, model_shape))


class OnnxEngine(InferenceEngine):
    """Runs an ONNX model through an onnxruntime InferenceSession."""

    name = "onnxruntime"

    def __init__(self, num_threads: int = 1):
        super().__init__(num_threads)
        self._session = None

    def initialize(self, model_path, input_specs, output_specs):
        if not ONNX_AVAILABLE:
            raise ConfigError("onnxruntime is required for the onnxruntime backend "
                              "(pip install onnxruntime)")
        if not os.path.isfile(model_path):
            raise ConfigError("ONNX model not found: %s" % model_path)

        providers = ["CPUExecutionProvider"]
        if "CUDAExecutionProvider" in ort.get_available_providers():
            providers.insert(0, "CUDAExecutionProvider")

        options = ort.SessionOptions()
        options.intra_op_num_threads = self._num_threads
        options.execution_mode = ort.ExecutionMode.ORT_SEQUENTIAL
        try:
            self._session = ort.InferenceSession(model_path, sess_options=options, providers=providers)
        except Exception as e:
            raise ConfigError("Failed to load ONNX model %s: %s" % (model_path, e)) from e

        model_inputs = {i.name: i.shape for i in self._session.get_inputs()}
        model_outputs = {o.name: o.shape for o in self._session.get_outputs()}
        self._check_names("input", input_specs, list(model_inputs))
        self._check_names("output", output_specs, list(model_outputs))

        self._input_specs = [TensorSpec(s.name, _resolve_shape(s.shape, model_inputs[s.name]), s.dtype)
                             for s in input_specs]
        self._output_specs = [TensorSpec(s.name, s.shape, s.dtype) for s in output_specs]
        self._initialized = True
        logger.info("ONNX model loaded: %s with providers: %s",
                    model_path, self._session.get_providers())

    def invoke(self, inputs):
        self._require_initialized()
        try:
            feed = {spec.name: np.asarray(inputs[spec.name], dtype=spec.dtype)
                    for spec in self._input_specs}
        except KeyError as e:
            raise InferenceError("missing input tensor %s" % e) from e

        names = [spec.name for spec in self._output_specs]
        try:
            outputs = self._session.run(names, feed)
        except Exception as e:
            raise InferenceError("ONNX Runtime inference failed: %s" % e) from e
        return {name: OutputTensor(name=name, data=np.asarray(data))
                for name, data in zip(names, outputs)}

    def finalize(self):
        self._session = None
        super().finalize()
