"""
Per-stage latency, frame rate and detector duty-cycle statistics.

The palm detector is the expensive stage and only runs when the tracker
cannot reuse its cached rectangle, so besides latencies the monitor keeps
the fraction of frames on which the detector actually ran.
"""

import time
import threading
import logging
from collections import deque
from contextlib import contextmanager
from typing import Deque, Dict

import numpy as np

logger = logging.getLogger(__name__)

PIPELINE_STAGES = (
    "palm_detection", "hand_landmark", "area_selector", "object_tracking", "total",
)


class StageStats:
    """Rolling window of latency samples for one stage (ms)."""

    __slots__ = ("samples",)

    def __init__(self, window_size: int):
        self.samples: Deque[float] = deque(maxlen=window_size)

    def add(self, elapsed_ms: float):
        self.samples.append(elapsed_ms)

    @property
    def mean(self) -> float:
        return float(np.mean(self.samples)) if self.samples else 0.0

    def percentile(self, q: float) -> float:
        return float(np.percentile(self.samples, q)) if self.samples else 0.0

    def summary(self) -> Dict[str, float]:
        return {
            "mean": round(self.mean, 2),
            "p95": round(self.percentile(95), 2),
            "max": round(max(self.samples), 2) if self.samples else 0.0,
        }


class PerformanceMonitor:
    """Tracks frame rate, stage latencies, detector runs and failed frames."""

    def __init__(self, window_size=100):
        self._window_size = window_size
        self._lock = threading.Lock()
        self._stages = {name: StageStats(window_size) for name in PIPELINE_STAGES}
        self._reset_counters()

    def _reset_counters(self):
        self._intervals = deque(maxlen=self._window_size)
        self._last_tick = None
        self._frame_count = 0
        self._detector_runs = 0
        self._failed_frames = 0
        self._start_time = time.time()

    @contextmanager
    def measure(self, stage_name: str):
        """Time the enclosed block; recorded even if it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record(stage_name, (time.perf_counter() - start) * 1000)

    def record(self, stage_name: str, elapsed_ms: float):
        with self._lock:
            stats = self._stages.get(stage_name)
            if stats is None:
                stats = self._stages[stage_name] = StageStats(self._window_size)
            stats.add(elapsed_ms)

    def tick(self, detector_ran: bool = False):
        """Close the current frame."""
        now = time.perf_counter()
        with self._lock:
            if self._last_tick is not None:
                self._intervals.append(now - self._last_tick)
            self._last_tick = now
            self._frame_count += 1
            if detector_ran:
                self._detector_runs += 1

    def record_failure(self):
        """Count a frame whose inference or decoding failed."""
        with self._lock:
            self._failed_frames += 1

    @property
    def fps(self) -> float:
        with self._lock:
            if len(self._intervals) < 2:
                return 0.0
            mean_interval = sum(self._intervals) / len(self._intervals)
        return 1.0 / mean_interval if mean_interval > 0 else 0.0

    @property
    def detector_run_rate(self) -> float:
        """Fraction of frames on which the palm detector ran."""
        with self._lock:
            return self._detector_runs / self._frame_count if self._frame_count else 0.0

    def get_stage_latency(self, stage_name: str) -> float:
        """Mean latency of a stage in ms (0 if never measured)."""
        with self._lock:
            stats = self._stages.get(stage_name)
            return stats.mean if stats else 0.0

    def get_all_latencies(self) -> dict:
        with self._lock:
            return {name: stats.mean for name, stats in self._stages.items()}

    def get_report(self) -> dict:
        with self._lock:
            stages = {name: stats.summary() for name, stats in self._stages.items()}
            frames = self._frame_count
            failed = self._failed_frames
            uptime = time.time() - self._start_time
        return {
            "fps": round(self.fps, 1),
            "total_frames": frames,
            "failed_frames": failed,
            "failure_rate": round(failed / max(frames, 1) * 100, 2),
            "detector_run_rate": round(self.detector_run_rate, 3),
            "uptime_seconds": round(uptime, 1),
            "latencies_ms": stages,
        }

    def print_report(self):
        """Log the report as a table."""
        report = self.get_report()
        logger.info("-" * 52)
        logger.info("frames %d (failed %d, %.2f%%)  fps %.1f  detector %.0f%%",
                    report["total_frames"], report["failed_frames"], report["failure_rate"],
                    report["fps"], report["detector_run_rate"] * 100)
        logger.info("%-18s %9s %9s %9s", "stage", "mean", "p95", "max")
        for stage, summary in report["latencies_ms"].items():
            logger.info("%-18s %9.2f %9.2f %9.2f",
                        stage, summary["mean"], summary["p95"], summary["max"])
        logger.info("-" * 52)

    def reset(self):
        with self._lock:
            for stats in self._stages.values():
                stats.samples.clear()
            self._reset_counters()
