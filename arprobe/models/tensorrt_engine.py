"""
TensorRT inference engine.

Loads a serialized TensorRT engine (.engine / .trt) built from the ONNX
export of a model and runs it on the GPU. Uses the named-tensor API
(TensorRT >= 8.5).

Requirements (pre-installed with JetPack):
    - tensorrt
    - pycuda
"""

import os
import logging

import numpy as np

from arprobe.core.errors import ConfigError, InferenceError
from arprobe.models.inference_engine import InferenceEngine, OutputTensor, TensorSpec

logger = logging.getLogger(__name__)

# TensorRT + PyCUDA: available on Jetson, optional on dev machines
try:
    import tensorrt as trt
    import pycuda.driver as cuda
    import pycuda.autoinit  # noqa: F401  (initialises CUDA context)
    TRT_AVAILABLE = True
    TRT_LOGGER = trt.Logger(trt.Logger.WARNING)
except ImportError:
    TRT_AVAILABLE = False
    logger.info("TensorRT/PyCUDA not available, tensorrt backend disabled")


class TensorRTEngine(InferenceEngine):
    """Wraps a serialized TensorRT engine for single-batch inference."""

    name = "tensorrt"

    def __init__(self, num_threads: int = 1):
        super().__init__(num_threads)
        self._engine = None
        self._context = None
        self._stream = None
        self._buffers = {}  # tensor name -> {"host", "device", "shape", "is_input"}

    def initialize(self, model_path, input_specs, output_specs):
        if not TRT_AVAILABLE:
            raise ConfigError(
                "TensorRT and PyCUDA are required for the tensorrt backend. "
                "These are pre-installed on Jetson with JetPack."
            )
        if not os.path.isfile(model_path):
            raise ConfigError("TensorRT engine not found: %s" % model_path)

        with open(model_path, "rb") as f:
            runtime = trt.Runtime(TRT_LOGGER)
            self._engine = runtime.deserialize_cuda_engine(f.read())
        if self._engine is None:
            raise ConfigError("Failed to deserialize TensorRT engine: %s" % model_path)

        self._context = self._engine.create_execution_context()
        self._stream = cuda.Stream()

        names = [self._engine.get_tensor_name(i) for i in range(self._engine.num_io_tensors)]
        self._check_names("input", input_specs, names)
        self._check_names("output", output_specs, names)

        for name in names:
            shape = tuple(self._engine.get_tensor_shape(name))
            dtype = trt.nptype(self._engine.get_tensor_dtype(name))
            size = abs(int(np.prod(shape)))

            host_mem = cuda.pagelocked_empty(size, dtype)
            device_mem = cuda.mem_alloc(host_mem.nbytes)
            self._context.set_tensor_address(name, int(device_mem))
            self._buffers[name] = {
                "host": host_mem,
                "device": device_mem,
                "shape": shape,
                "is_input": self._engine.get_tensor_mode(name) == trt.TensorIOMode.INPUT,
            }

        self._input_specs = [TensorSpec(s.name, self._buffers[s.name]["shape"], s.dtype)
                             for s in input_specs]
        self._output_specs = [TensorSpec(s.name, self._buffers[s.name]["shape"], s.dtype)
                              for s in output_specs]
        self._initialized = True
        logger.info("TensorRT engine loaded: %s (%d tensors)", model_path, len(names))

    def invoke(self, inputs):
        self._require_initialized()
        try:
            for spec in self._input_specs:
                buffer = self._buffers[spec.name]
                data = np.asarray(inputs[spec.name], dtype=buffer["host"].dtype).ravel()
                np.copyto(buffer["host"][:data.size], data)
                cuda.memcpy_htod_async(buffer["device"], buffer["host"], self._stream)

            self._context.execute_async_v3(stream_handle=self._stream.handle)

            for spec in self._output_specs:
                buffer = self._buffers[spec.name]
                cuda.memcpy_dtoh_async(buffer["host"], buffer["device"], self._stream)
            self._stream.synchronize()
        except KeyError as e:
            raise InferenceError("missing input tensor %s" % e) from e
        except (RuntimeError, cuda.Error) as e:
            raise InferenceError("TensorRT inference failed: %s" % e) from e

        return {
            spec.name: OutputTensor(
                name=spec.name,
                data=self._buffers[spec.name]["host"].reshape(self._buffers[spec.name]["shape"]).copy(),
            )
            for spec in self._output_specs
        }

    def finalize(self):
        """Release GPU resources."""
        self._buffers.clear()
        self._context = None
        self._engine = None
        self._stream = None
        super().finalize()
        logger.info("TensorRT engine destroyed")
