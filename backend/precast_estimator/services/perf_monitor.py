"""Performance monitoring for the quotation pipeline."""
import time
import logging
import threading
import functools
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

logger = logging.getLogger("precast-api.perf")


def timed(func: Callable) -> Callable:
    """
    Decorator that measures and logs execution time for synchronous functions.

    Usage::

        @timed
        def my_function():
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                "function timed",
                extra={
                    "function_name": func.__qualname__,
                    "function_module": func.__module__,
                    "duration_ms": duration_ms,
                },
            )
    return wrapper


class PerformanceTracker:
    """
    Thread-safe in-memory tracker for quotation metrics.

    Tracks calculations completed, their cumulative duration, per-stage
    durations (pricing, freight, assembly, ...), the slowest stage seen and
    error counts keyed by error code.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calculations: int = 0
        self._total_duration_ms: float = 0.0
        self._stage_durations: Dict[str, List[float]] = {}
        self._error_counts: Dict[str, int] = {}
        self._slowest_stage: Optional[str] = None
        self._slowest_stage_ms: float = 0.0

    # ------------------------------------------------------------------
    # Write API
    # ------------------------------------------------------------------

    def record_calculation_complete(self, duration_ms: float) -> None:
        with self._lock:
            self._calculations += 1
            self._total_duration_ms += duration_ms

    def record_stage_duration(self, stage: str, duration_ms: float) -> None:
        with self._lock:
            self._stage_durations.setdefault(stage, []).append(duration_ms)
            if duration_ms > self._slowest_stage_ms:
                self._slowest_stage_ms = duration_ms
                self._slowest_stage = stage

    def record_error(self, code: str) -> None:
        with self._lock:
            self._error_counts[code] = self._error_counts.get(code, 0) + 1

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time a block and record it under ``name``, even when it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_stage_duration(name, (time.perf_counter() - start) * 1000)

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        """
        Snapshot of all collected metrics.

        Keys: calculations_processed, avg_calculation_ms, slowest_stage,
        slowest_stage_ms, error_count, error_count_by_code, stage_avg_ms.
        """
        with self._lock:
            avg = (
                round(self._total_duration_ms / self._calculations, 2)
                if self._calculations > 0
                else 0.0
            )
            stage_avgs = {
                stage: round(sum(d) / len(d), 2) if d else 0.0
                for stage, d in self._stage_durations.items()
            }
            return {
                "calculations_processed": self._calculations,
                "avg_calculation_ms": avg,
                "slowest_stage": self._slowest_stage,
                "slowest_stage_ms": round(self._slowest_stage_ms, 2),
                "error_count": sum(self._error_counts.values()),
                "error_count_by_code": dict(self._error_counts),
                "stage_avg_ms": stage_avgs,
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._calculations = 0
            self._total_duration_ms = 0.0
            self._stage_durations.clear()
            self._error_counts.clear()
            self._slowest_stage = None
            self._slowest_stage_ms = 0.0


# Module-level singleton; import this instance everywhere else.
tracker = PerformanceTracker()
