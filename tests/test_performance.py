"""
Tests for Performance Monitoring
=================================
"""

import pytest
import time
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from arprobe.modules.utils.performance_monitor import PIPELINE_STAGES, PerformanceMonitor, StageStats


class TestStageStats:
    """Test suite for StageStats."""

    def test_empty(self):
        stats = StageStats(10)
        assert stats.mean == 0.0
        assert stats.summary() == {"mean": 0.0, "p95": 0.0, "max": 0.0}

    def test_summary(self):
        stats = StageStats(100)
        for value in range(1, 101):
            stats.add(float(value))
        summary = stats.summary()
        assert summary["mean"] == pytest.approx(50.5)
        assert summary["max"] == 100.0
        assert 94.0 <= summary["p95"] <= 96.0


class TestPerformanceMonitor:
    """Test suite for PerformanceMonitor class."""

    @pytest.fixture
    def monitor(self):
        return PerformanceMonitor(window_size=10)

    def test_initial_state(self, monitor):
        assert monitor.fps == 0.0
        assert monitor.detector_run_rate == 0.0
        assert monitor.get_stage_latency("palm_detection") == 0.0
        assert set(monitor.get_all_latencies()) == set(PIPELINE_STAGES)

    def test_measure_records_latency(self, monitor):
        with monitor.measure("hand_landmark"):
            time.sleep(0.01)
        assert monitor.get_stage_latency("hand_landmark") >= 9

    def test_measure_records_on_exception(self, monitor):
        with pytest.raises(RuntimeError):
            with monitor.measure("area_selector"):
                raise RuntimeError("stage failed")
        assert len(monitor._stages["area_selector"].samples) == 1

    def test_record_averages(self, monitor):
        monitor.record("palm_detection", 10.0)
        monitor.record("palm_detection", 20.0)
        assert monitor.get_stage_latency("palm_detection") == pytest.approx(15.0)

    def test_unknown_stage_is_added(self, monitor):
        monitor.record("custom", 5.0)
        assert monitor.get_all_latencies()["custom"] == pytest.approx(5.0)

    def test_window_is_rolling(self, monitor):
        for value in range(20):
            monitor.record("total", float(value))
        assert monitor.get_stage_latency("total") == pytest.approx(sum(range(10, 20)) / 10)

    def test_fps(self, monitor):
        for _ in range(4):
            monitor.tick()
            time.sleep(0.02)
        assert 0 < monitor.fps < 60

    def test_detector_run_rate(self, monitor):
        for ran in (True, False, False, False):
            monitor.tick(detector_ran=ran)
        assert monitor.detector_run_rate == pytest.approx(0.25)

    def test_report(self, monitor):
        for _ in range(4):
            monitor.tick()
        monitor.record_failure()

        report = monitor.get_report()

        assert report["total_frames"] == 4
        assert report["failed_frames"] == 1
        assert report["failure_rate"] == 25.0
        assert set(report["latencies_ms"]["palm_detection"]) == {"mean", "p95", "max"}

    def test_print_report(self, monitor, caplog):
        monitor.tick()
        monitor.record("total", 4.0)
        with caplog.at_level("INFO"):
            monitor.print_report()
        assert "hand_landmark" in caplog.text
        assert "frames 1" in caplog.text

    def test_reset(self, monitor):
        monitor.tick(detector_ran=True)
        monitor.record("total", 3.0)
        monitor.record_failure()
        monitor.reset()

        report = monitor.get_report()
        assert report["total_frames"] == 0
        assert report["failed_frames"] == 0
        assert monitor.detector_run_rate == 0.0
        assert monitor.get_stage_latency("total") == 0.0
