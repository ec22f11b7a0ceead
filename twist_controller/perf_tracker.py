"""
Lightweight tick performance tracker using Welford's online algorithm.

Tracks solver tick processing time, the interval between ticks and timing
violations against a target period with O(1) space.

Usage:
    tracker = TickPerfTracker(enabled=True)

    while running:
        tracker.tick_start()
        # ... solve ...
        tracker.tick_end(target_period_s=0.01)  # 100 Hz target

    stats = tracker.get_stats()
"""

import threading
import time
from typing import Any, Dict, Optional

__all__ = ['TickPerfTracker']


class _Welford:
    """Running mean / variance / min / max."""

    __slots__ = ('n', 'mean', 'm2', 'min', 'max')

    def __init__(self):
        self.n = 0
        self.mean = 0.0
        self.m2 = 0.0
        self.min = float('inf')
        self.max = float('-inf')

    def add(self, x: float) -> None:
        self.n += 1
        delta = x - self.mean
        self.mean += delta / self.n
        self.m2 += delta * (x - self.mean)
        if x < self.min:
            self.min = x
        if x > self.max:
            self.max = x

    def std(self) -> float:
        if self.n > 1:
            return (self.m2 / (self.n - 1)) ** 0.5
        return 0.0


class TickPerfTracker:
    """Tick timing statistics. Thread-safe with a single lock.

    Cost when disabled: single boolean check per call.
    """

    __slots__ = (
        '_enabled', '_lock', '_interval', '_proc',
        '_violation_count', '_total_count',
        '_last_tick_start', '_current_tick_start',
    )

    def __init__(self, enabled: bool = False):
        self._enabled = bool(enabled)
        self._lock = threading.Lock()
        self._reset_internal()

    def _reset_internal(self) -> None:
        self._interval = _Welford()
        self._proc = _Welford()
        self._violation_count = 0
        self._total_count = 0
        self._last_tick_start: Optional[float] = None
        self._current_tick_start: Optional[float] = None

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable tracking at runtime."""
        self._enabled = bool(enabled)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def reset(self) -> None:
        """Reset all statistics."""
        with self._lock:
            self._reset_internal()

    def tick_start(self) -> None:
        """Call when a tick begins."""
        if not self._enabled:
            return

        now = time.perf_counter()
        if self._last_tick_start is not None:
            interval = now - self._last_tick_start
            if interval > 0:
                with self._lock:
                    self._interval.add(interval)

        self._last_tick_start = now
        self._current_tick_start = now

    def tick_end(self, target_period_s: float = 0.0) -> None:
        """Call when a tick is done.

        Args:
            target_period_s: Control period in seconds; ticks taking longer count
                             as violations. 0 disables violation tracking.
        """
        if not self._enabled or self._current_tick_start is None:
            return

        proc_time = time.perf_counter() - self._current_tick_start
        with self._lock:
            self._total_count += 1
            self._proc.add(proc_time)
            if target_period_s > 0 and proc_time > target_period_s:
                self._violation_count += 1

        self._current_tick_start = None

    def get_stats(self) -> Dict[str, Any]:
        """Timing stats in milliseconds; empty dict when disabled."""
        if not self._enabled:
            return {}

        def safe(val: float) -> float:
            return 0.0 if val in (float('inf'), float('-inf')) else val

        with self._lock:
            violation_pct = 0.0
            if self._total_count > 0:
                violation_pct = (self._violation_count / self._total_count) * 100.0

            return {
                'interval_avg_ms': float(self._interval.mean * 1000.0),
                'interval_std_ms': float(self._interval.std() * 1000.0),
                'proc_avg_ms': float(self._proc.mean * 1000.0),
                'proc_std_ms': float(self._proc.std() * 1000.0),
                'proc_min_ms': float(safe(self._proc.min) * 1000.0),
                'proc_max_ms': float(safe(self._proc.max) * 1000.0),
                'violation_pct': float(violation_pct),
                'samples': int(self._total_count),
            }
