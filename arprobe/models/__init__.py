"""
Inference backends.

Provides:
    - InferenceEngine: Backend-neutral model runner interface
    - TensorSpec / OutputTensor: Tensor descriptions and results
    - create_engine: Backend selection by name
"""

from arprobe.models.inference_engine import (
    InferenceEngine,
    OutputTensor,
    TensorSpec,
    create_engine,
)

__all__ = [
    "InferenceEngine",
    "OutputTensor",
    "TensorSpec",
    "create_engine",
]
