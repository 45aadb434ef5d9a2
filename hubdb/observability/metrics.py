"""
Metrics collection for HUBDB.

Every collection operation records its duration and outcome here, tagged
with the backend kind and collection name, so the HTTP layer can expose a
per-backend latency summary.
"""

import functools
import inspect
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..constants import MAX_METRICS


@dataclass
class OperationMetrics:
    """Metrics for a single operation series."""

    operation_name: str
    count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float("inf")
    max_duration_ms: float = 0.0
    error_count: int = 0
    last_execution: datetime | None = None

    @property
    def avg_duration_ms(self) -> float:
        return self.total_duration_ms / self.count if self.count > 0 else 0.0

    @property
    def error_rate(self) -> float:
        return (self.error_count / self.count * 100) if self.count > 0 else 0.0

    def record(self, duration_ms: float, success: bool = True) -> None:
        """Record a single operation execution."""
        self.count += 1
        self.total_duration_ms += duration_ms
        self.min_duration_ms = min(self.min_duration_ms, duration_ms)
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        if not success:
            self.error_count += 1
        self.last_execution = datetime.now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation_name,
            "count": self.count,
            "avg_duration_ms": round(self.avg_duration_ms, 2),
            "min_duration_ms": (
                round(self.min_duration_ms, 2) if self.min_duration_ms != float("inf") else 0.0
            ),
            "max_duration_ms": round(self.max_duration_ms, 2),
            "error_count": self.error_count,
            "error_rate_percent": round(self.error_rate, 2),
            "last_execution": (self.last_execution.isoformat() if self.last_execution else None),
        }


class MetricsCollector:
    """
    Thread-safe metrics collector with bounded, LRU-evicted storage.

    Series are keyed by operation name plus sorted tags, e.g.
    ``insert_one[backend=file_collection=users]``.
    """

    def __init__(self, max_metrics: int = MAX_METRICS):
        self._metrics: OrderedDict[str, OperationMetrics] = OrderedDict()
        self._lock = threading.Lock()
        self._max_metrics = max_metrics

    def record_operation(
        self, operation_name: str, duration_ms: float, success: bool = True, **tags: Any
    ) -> None:
        """
        Record an operation execution.

        Args:
            operation_name: Name of the operation (e.g., "update_one")
            duration_ms: Duration in milliseconds
            success: Whether the operation succeeded
            **tags: Additional tags (backend, collection, ...)
        """
        key = operation_name
        if tags:
            tag_str = "_".join(f"{k}={v}" for k, v in sorted(tags.items()))
            key = f"{operation_name}[{tag_str}]"

        with self._lock:
            is_new = key not in self._metrics
            if is_new and len(self._metrics) >= self._max_metrics:
                self._metrics.popitem(last=False)
            if is_new:
                self._metrics[key] = OperationMetrics(operation_name=operation_name)
            else:
                self._metrics.move_to_end(key)
            self._metrics[key].record(duration_ms, success)

    def get_metrics(self, operation_name: str | None = None) -> dict[str, Any]:
        """Get metrics, optionally filtered by operation-name prefix."""
        with self._lock:
            metrics = {
                k: v.to_dict()
                for k, v in self._metrics.items()
                if operation_name is None or k.startswith(operation_name)
            }
            total_operations = len(self._metrics)

        return {
            "timestamp": datetime.now().isoformat(),
            "metrics": metrics,
            "total_operations": total_operations,
        }

    def get_operation_count(self, operation_name: str) -> int:
        """Total executions of an operation across all tag combinations."""
        with self._lock:
            return sum(
                metric.count
                for metric in self._metrics.values()
                if metric.operation_name == operation_name
            )

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._metrics.clear()


_metrics_collector: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get or create the global metrics collector."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def record_operation(
    operation_name: str, duration_ms: float, success: bool = True, **tags: Any
) -> None:
    """Record an operation in the global metrics collector."""
    get_metrics_collector().record_operation(operation_name, duration_ms, success, **tags)


def timed_operation(operation_name: str, **tags: Any):
    """
    Decorator to time and record an operation.

    Usage:
        @timed_operation("relational.initialize")
        async def initialize(self):
            ...
    """

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.perf_counter()
                success = True
                try:
                    return await func(*args, **kwargs)
                except Exception:
                    success = False
                    raise
                finally:
                    duration_ms = (time.perf_counter() - start_time) * 1000
                    record_operation(operation_name, duration_ms, success, **tags)

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            success = True
            try:
                return func(*args, **kwargs)
            except Exception:
                success = False
                raise
            finally:
                duration_ms = (time.perf_counter() - start_time) * 1000
                record_operation(operation_name, duration_ms, success, **tags)

        return sync_wrapper

    return decorator
