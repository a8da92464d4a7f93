"""Performance logging utilities for synchronization operations."""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional, Any, Generator


@dataclass
class PerformanceMetrics:
    """Performance metrics for a synchronization operation."""
    operation: str
    duration: float
    start_time: float
    end_time: float
    context: Optional[Dict[str, Any]] = None
    success: bool = True


class PerformanceLogger:
    """
    Performance logger for synchronization operations.

    Times engine operations and keeps the most recent metrics per operation
    name for summary logging.
    """

    def __init__(self, logger_name: str = 'gitvcs.performance', slow_threshold: float = 10.0):
        """
        Initialize performance logger.

        Args:
            logger_name: Name for the logger instance
            slow_threshold: Duration in seconds above which an operation is reported as slow
        """
        self.logger = logging.getLogger(logger_name)
        self.slow_threshold = slow_threshold
        self._metrics: Dict[str, PerformanceMetrics] = {}

    @contextmanager
    def time_operation(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        log_level: int = logging.DEBUG
    ) -> Generator[None, None, None]:
        """
        Context manager for timing operations.

        Args:
            operation: Name of the operation being timed
            context: Additional context information (must not contain secrets)
            log_level: Logging level for performance messages

        Yields:
            None
        """
        start_time = time.monotonic()
        self.logger.log(log_level, f"Starting {operation}")

        success = True
        try:
            yield
        except Exception as e:
            success = False
            self.logger.debug(f"{operation} failed after {time.monotonic() - start_time:.3f}s: {e}")
            raise
        finally:
            end_time = time.monotonic()
            duration = end_time - start_time

            self._metrics[operation] = PerformanceMetrics(
                operation=operation,
                duration=duration,
                start_time=start_time,
                end_time=end_time,
                context=context,
                success=success
            )

            if success:
                self.logger.log(log_level, f"{operation} completed in {duration:.3f}s")
                if context:
                    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
                    self.logger.debug(f"{operation} context: {context_str}")

            if duration > self.slow_threshold:
                self.logger.warning(f"Slow operation detected: '{operation}' took {duration:.3f}s")

    def get_metrics(self, operation: str) -> Optional[PerformanceMetrics]:
        return self._metrics.get(operation)

    def get_performance_summary(self) -> Dict[str, Any]:
        """
        Get a summary of performance metrics.

        Returns:
            Dictionary containing performance summary
        """
        if not self._metrics:
            return {"total_operations": 0, "average_duration": 0.0}

        total_operations = len(self._metrics)
        total_duration = sum(m.duration for m in self._metrics.values())
        successful_ops = sum(1 for m in self._metrics.values() if m.success)
        slowest_op = max(self._metrics.values(), key=lambda m: m.duration)

        return {
            "total_operations": total_operations,
            "total_duration": total_duration,
            "average_duration": total_duration / total_operations,
            "success_rate": successful_ops / total_operations,
            "slowest_operation": {
                "name": slowest_op.operation,
                "duration": slowest_op.duration
            }
        }

    def log_performance_summary(self) -> None:
        """Log a summary of all performance metrics."""
        summary = self.get_performance_summary()

        if summary["total_operations"] == 0:
            self.logger.info("No performance metrics available")
            return

        self.logger.info(
            f"Performance Summary: {summary['total_operations']} operations, "
            f"avg {summary['average_duration']:.3f}s, "
            f"{summary['success_rate']:.1%} success rate"
        )
        slowest = summary["slowest_operation"]
        self.logger.info(f"Slowest operation: {slowest['name']} ({slowest['duration']:.3f}s)")


# Global performance logger instance
_performance_logger: Optional[PerformanceLogger] = None


def get_performance_logger() -> PerformanceLogger:
    """Get or create the global performance logger instance."""
    global _performance_logger
    if _performance_logger is None:
        _performance_logger = PerformanceLogger()
    return _performance_logger
