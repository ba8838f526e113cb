from __future__ import annotations

"""
Rolling cold-stage temperature history.

Fixed-capacity ring buffer of (timestamp, temperature) samples. One buffer
serves both the long-baseline cooling-rate estimate and the recent-window
stall check. Storage is two preallocated numpy arrays; the buffer is never
resized after construction.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class TemperatureSample:
    timestamp_ms: int
    temperature_k: float


class TemperatureHistory:
    def __init__(self, capacity: int = 20) -> None:
        if capacity < 2:
            raise ValueError(f"history capacity must be >= 2, got {capacity}")
        self.capacity = int(capacity)
        self._t = np.zeros(self.capacity, dtype=np.int64)
        self._k = np.zeros(self.capacity, dtype=np.float64)
        self._head = 0   # next write slot
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def clear(self) -> None:
        self._head = 0
        self._count = 0

    def push_sample(self, timestamp_ms: int, temperature_k: float) -> None:
        self._t[self._head] = int(timestamp_ms)
        self._k[self._head] = float(temperature_k)
        self._head = (self._head + 1) % self.capacity
        if self._count < self.capacity:
            self._count += 1

    def _index(self, i: int) -> int:
        # logical 0 = oldest, count-1 = newest
        return (self._head - self._count + i) % self.capacity

    def sample_at(self, i: int) -> TemperatureSample:
        if not (0 <= i < self._count):
            raise IndexError(f"sample index {i} out of range (count={self._count})")
        idx = self._index(i)
        return TemperatureSample(int(self._t[idx]), float(self._k[idx]))

    def oldest(self) -> TemperatureSample | None:
        return self.sample_at(0) if self._count else None

    def newest(self) -> TemperatureSample | None:
        return self.sample_at(self._count - 1) if self._count else None

    def samples(self) -> list[TemperatureSample]:
        return [self.sample_at(i) for i in range(self._count)]

    def as_arrays(self) -> tuple[np.ndarray, np.ndarray]:
        """Return (timestamps_ms, temperatures_k) in time order (copies)."""
        order = [self._index(i) for i in range(self._count)]
        return self._t[order].copy(), self._k[order].copy()

    def cooling_rate_k_per_min(self) -> float:
        """Cooling rate over the whole retained window; positive means cooling."""
        if self._count < 2:
            return 0.0
        oldest, newest = self.sample_at(0), self.sample_at(self._count - 1)
        dt_ms = newest.timestamp_ms - oldest.timestamp_ms
        if dt_ms == 0:
            return 0.0
        return (oldest.temperature_k - newest.temperature_k) / (dt_ms / 60000.0)

    def is_stalled(self, window_ms: int, min_drop_k: float) -> bool:
        """True when the drop across the trailing window is below min_drop_k.

        The reference is the oldest retained sample whose timestamp lies within
        window_ms of the newest. If the buffer does not reach back that far the
        oldest sample is used. Only meaningful while actively cooling.
        """
        if self._count < 2:
            return False
        newest = self.sample_at(self._count - 1)
        window_start = max(newest.timestamp_ms - int(window_ms), 0)
        ref_k = newest.temperature_k
        for i in range(self._count):
            s = self.sample_at(i)
            if s.timestamp_ms >= window_start:
                ref_k = s.temperature_k
                break
        return (ref_k - newest.temperature_k) < min_drop_k
