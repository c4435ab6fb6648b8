"""Palm region tracking and the selected-object tracker pool."""
from .palm_tracker import PalmTracker, PalmTrackerConfig
from .object_tracker_pool import ObjectTrackerPool, TrackerPoolConfig

__all__ = ["PalmTracker", "PalmTrackerConfig", "ObjectTrackerPool", "TrackerPoolConfig"]
