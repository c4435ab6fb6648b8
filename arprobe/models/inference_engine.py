"""
Inference engine interface shared by every backend.

An engine is initialized once with a model file and the names/shapes of its
input and output tensors, then invoked synchronously once per frame.

Backends:
    - tensorrt     : serialized TensorRT engine (Jetson, FP16)
    - onnxruntime  : ONNX Runtime session (CPU or CUDA provider)
    - opencv       : cv2.dnn network (always available)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from arprobe.core.errors import ConfigError, ConfigMismatch, InferenceError

logger = logging.getLogger(__name__)


@dataclass
class TensorSpec:
    """Name, shape and dtype of one model input or output.

    A shape of None (or a -1/None dimension) is filled in from the model.
    """
    name: str
    shape: Optional[Tuple[int, ...]] = None
    dtype: str = "float32"

    @property
    def is_resolved(self) -> bool:
        return self.shape is not None and all(
            isinstance(d, (int, np.integer)) and d > 0 for d in self.shape)


@dataclass
class OutputTensor:
    """Raw output buffer with optional quantization parameters."""
    name: str
    data: np.ndarray
    scale: float = 1.0
    zero_point: int = 0

    def as_float(self) -> np.ndarray:
        """Dequantized float32 view of the data."""
        if np.issubdtype(self.data.dtype, np.floating) and self.scale == 1.0 and self.zero_point == 0:
            return self.data.astype(np.float32, copy=False)
        return ((self.data.astype(np.float32) - self.zero_point) * self.scale).astype(np.float32)

    @property
    def dims(self) -> Tuple[int, int, int, int]:
        """Shape as (batch, height, width, channel), left-padded with 1s."""
        shape = tuple(int(d) for d in self.data.shape)[-4:]
        return (1,) * (4 - len(shape)) + shape


class InferenceEngine(ABC):
    """Synchronous model runner."""

    name = "base"

    def __init__(self, num_threads: int = 1):
        self._num_threads = num_threads
        self._input_specs: List[TensorSpec] = []
        self._output_specs: List[TensorSpec] = []
        self._initialized = False

    @abstractmethod
    def initialize(self, model_path: str, input_specs: Sequence[TensorSpec],
                   output_specs: Sequence[TensorSpec]):
        """Load the model and negotiate tensor shapes.

        Raises:
            ConfigError: Missing model file, backend, or tensor name
        """

    @abstractmethod
    def invoke(self, inputs: Dict[str, np.ndarray]) -> Dict[str, OutputTensor]:
        """Run one inference.

        Raises:
            InferenceError: The backend failed
        """

    def set_num_threads(self, num_threads: int):
        self._num_threads = num_threads

    def finalize(self):
        """Release backend resources."""
        self._initialized = False

    @property
    def input_specs(self) -> List[TensorSpec]:
        return list(self._input_specs)

    @property
    def output_specs(self) -> List[TensorSpec]:
        return list(self._output_specs)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _require_initialized(self):
        if not self._initialized:
            raise InferenceError("%s engine is not initialized" % self.name)

    @staticmethod
    def _check_names(kind: str, wanted: Sequence[TensorSpec], available: Sequence[str]):
        missing = [spec.name for spec in wanted if spec.name not in available]
        if missing:
            raise ConfigError("%s tensor(s) %s not in model (has %s)"
                              % (kind, ", ".join(missing), ", ".join(available)))


def output_values(outputs: Dict[str, OutputTensor], name: str, min_size: int = 1) -> np.ndarray:
    """Dequantized data of a named output.

    Raises:
        ConfigMismatch: The output is missing or holds fewer than `min_size` values
    """
    tensor = outputs.get(name)
    if tensor is None:
        raise ConfigMismatch("output '%s' missing (got %s)" % (name, ", ".join(outputs) or "none"),
                             expected=name, actual=tuple(outputs))
    values = tensor.as_float()
    if values.size < min_size:
        raise ConfigMismatch("output '%s' has %d values, expected %d" % (name, values.size, min_size),
                             expected=min_size, actual=values.shape)
    return values


def create_engine(backend: str, num_threads: int = 1) -> InferenceEngine:
    """Instantiate an engine by backend name.

    Raises:
        ConfigError: Unknown backend name
    """
    key = backend.lower()
    if key == "tensorrt":
        from arprobe.models.tensorrt_engine import TensorRTEngine
        engine = TensorRTEngine(num_threads)
    elif key == "onnxruntime":
        from arprobe.models.onnx_engine import OnnxEngine
        engine = OnnxEngine(num_threads)
    elif key == "opencv":
        from arprobe.models.opencv_engine import OpenCVEngine
        engine = OpenCVEngine(num_threads)
    else:
        raise ConfigError("Unknown inference backend: %s" % backend)
    logger.debug("Created %s engine (threads=%d)", engine.name, num_threads)
    return engine
