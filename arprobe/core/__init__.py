"""Data model, errors, event bus and the per-frame pipeline."""
from .errors import ArprobeError, ConfigError, ConfigMismatch, GeometryDegenerate, InferenceError
from .events import EventBus, EventRecord, Events

__all__ = [
    "ArprobeError", "ConfigError", "ConfigMismatch", "GeometryDegenerate", "InferenceError",
    "EventBus", "EventRecord", "Events",
]
