#!/usr/bin/env python3
"""
Test the performance logger used to time synchronization operations.
"""

import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from gitvcs.performance import PerformanceLogger, get_performance_logger


def test_time_operation_records_metrics():
    """Successful operations are recorded with their context."""
    print("Testing operation timing")
    print("-" * 40)

    perf = PerformanceLogger(logger_name='gitvcs.performance.test')
    with perf.time_operation("checkout", {"working_copy": "/srv/config"}):
        pass

    metrics = perf.get_metrics("checkout")
    assert metrics is not None
    assert metrics.success
    assert metrics.duration >= 0
    assert metrics.context == {"working_copy": "/srv/config"}
    print("  ✓ Metrics recorded")


def test_failed_operation_is_recorded_and_reraised():
    perf = PerformanceLogger(logger_name='gitvcs.performance.test')

    try:
        with perf.time_operation("update"):
            raise RuntimeError("pull failed")
    except RuntimeError as e:
        assert str(e) == "pull failed"
    else:
        raise AssertionError("error was swallowed")

    assert perf.get_metrics("update").success is False
    print("  ✓ Failure recorded")


def test_slow_operation_warning(caplog):
    perf = PerformanceLogger(logger_name='gitvcs.performance.test', slow_threshold=-1.0)

    with caplog.at_level(logging.WARNING, logger='gitvcs.performance.test'):
        with perf.time_operation("shadow_refresh"):
            pass

    assert any("Slow operation detected" in record.getMessage() for record in caplog.records)


def test_performance_summary():
    perf = PerformanceLogger(logger_name='gitvcs.performance.test')
    assert perf.get_performance_summary()["total_operations"] == 0

    with perf.time_operation("checkout"):
        pass
    try:
        with perf.time_operation("commit"):
            raise ValueError("rejected")
    except ValueError:
        pass

    summary = perf.get_performance_summary()
    assert summary["total_operations"] == 2
    assert summary["success_rate"] == 0.5
    assert summary["slowest_operation"]["name"] in ("checkout", "commit")
    perf.log_performance_summary()
    print("  ✓ Summary computed")


def test_global_logger_is_shared():
    assert get_performance_logger() is get_performance_logger()


if __name__ == "__main__":
    test_time_operation_records_metrics()
    test_failed_operation_is_recorded_and_reraised()
    test_performance_summary()
    test_global_logger_is_shared()
    print("\n✅ Performance logger tests passed")
