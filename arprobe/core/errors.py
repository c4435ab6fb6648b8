"""
Error taxonomy for the palm tracking pipeline.

Initialization failures (ConfigError) are raised to the caller and prevent
the pipeline from starting. Per-frame failures (ConfigMismatch,
InferenceError) are caught by the Pipeline, which keeps the previous
tracking state. GeometryDegenerate never leaves the geometry helpers.
"""


class ArprobeError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(ArprobeError):
    """Model load, tensor negotiation or configuration failure at startup."""


class ConfigMismatch(ArprobeError):
    """Tensor shape or anchor count disagrees with the decode configuration."""

    def __init__(self, message: str, expected=None, actual=None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class InferenceError(ArprobeError):
    """The inference engine failed while running a model."""


class GeometryDegenerate(ArprobeError):
    """A geometric quantity is undefined (e.g. zero-length reference vector)."""
