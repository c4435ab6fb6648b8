"""
Per-pipeline event bus.

The pipeline announces tracking and gesture milestones (palm found, area
selected, object evicted, ...) here instead of calling into overlays or
application code directly. Each Pipeline owns its own bus.

Usage:
    bus = EventBus()
    bus.subscribe(Events.AREA_SELECTED, on_area)
    bus.emit(Events.AREA_SELECTED, frame_id=42, area=rect, label="cup")
"""

import time
import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventRecord:
    """History entry for one emitted event."""
    name: str
    frame_id: Optional[int]
    timestamp: float
    keys: Tuple[str, ...]


@dataclass
class _Listener:
    priority: int
    callback: Callable
    once: bool = False


class EventBus:
    """Synchronous publish/subscribe with priority ordering.

    Listeners run in the emitting thread, highest priority first and in
    subscription order within a priority.
    """

    def __init__(self, max_history: int = 100):
        self._listeners = defaultdict(list)  # event name -> [_Listener]
        self._lock = threading.Lock()
        self._history = deque(maxlen=max_history)
        self._enabled = True

    def subscribe(self, event_name: str, callback: Callable, priority: int = 0,
                  once: bool = False) -> Callable[[], None]:
        """Register a listener.

        Args:
            event_name: One of the Events names
            callback: Called with the keyword arguments given to emit()
            priority: Higher runs first
            once: Drop the listener after its first call

        Returns:
            A function that unsubscribes this listener
        """
        listener = _Listener(priority, callback, once)
        with self._lock:
            listeners = self._listeners[event_name]
            index = len(listeners)
            while index > 0 and listeners[index - 1].priority < priority:
                index -= 1
            listeners.insert(index, listener)
        logger.debug("Subscribed %s to '%s' (priority=%d)",
                     getattr(callback, "__name__", repr(callback)), event_name, priority)
        return lambda: self._remove(event_name, lambda item: item is listener)

    def unsubscribe(self, event_name: str, callback: Callable):
        """Remove every registration of `callback` for an event."""
        self._remove(event_name, lambda item: item.callback is callback)

    def _remove(self, event_name: str, match):
        with self._lock:
            remaining = [item for item in self._listeners.get(event_name, []) if not match(item)]
            if remaining:
                self._listeners[event_name] = remaining
            else:
                self._listeners.pop(event_name, None)

    def emit(self, event_name: str, **kwargs):
        """Deliver an event; a failing listener is logged and skipped."""
        if not self._enabled:
            return

        with self._lock:
            listeners = list(self._listeners.get(event_name, []))
        self._history.append(EventRecord(
            name=event_name,
            frame_id=kwargs.get("frame_id"),
            timestamp=time.time(),
            keys=tuple(kwargs),
        ))

        for listener in listeners:
            if listener.once:
                self._remove(event_name, lambda item, target=listener: item is target)
            try:
                listener.callback(**kwargs)
            except Exception as e:
                logger.error("Listener %s failed on '%s': %s",
                             getattr(listener.callback, "__name__", repr(listener.callback)),
                             event_name, e)

    def clear(self, event_name: str = None):
        """Drop all listeners, or only those of one event."""
        with self._lock:
            if event_name:
                self._listeners.pop(event_name, None)
            else:
                self._listeners.clear()

    def set_enabled(self, enabled: bool):
        self._enabled = enabled

    @property
    def registered_events(self) -> List[str]:
        with self._lock:
            return [name for name, listeners in self._listeners.items() if listeners]

    @property
    def listener_count(self) -> int:
        with self._lock:
            return sum(len(listeners) for listeners in self._listeners.values())

    def get_history(self, last_n: int = 10) -> List[EventRecord]:
        """Most recent events, oldest first."""
        return list(self._history)[-last_n:]


class Events:
    """Event names emitted by the pipeline."""

    # Palm tracking
    PALM_DETECTED = "palm_detected"
    TRACKING_LOST = "tracking_lost"
    TRACKING_RESTORED = "tracking_restored"

    # Gesture
    GESTURE_STATE_CHANGED = "gesture_state_changed"
    AREA_SELECTED = "area_selected"

    # Object tracking
    OBJECT_ADDED = "object_added"
    OBJECT_EVICTED = "object_evicted"

    # Pipeline
    FRAME_FAILED = "frame_failed"
    DEBUG_TOGGLED = "debug_toggled"
