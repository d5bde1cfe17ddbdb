"""Bounded, time-ordered ring buffer of :class:`SensorSample` objects."""

from __future__ import annotations

import math
from collections import deque
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

import numpy as np

from gait_auth.errors import EmptyWindowError
from gait_auth.models import SensorSample


@dataclass(frozen=True, slots=True)
class WindowStatistics:
    """Aggregate view over the samples currently held by a window."""

    count: int
    mean_acc: tuple[float, float, float]
    rms_acc: tuple[float, float, float]
    mean_gyro: tuple[float, float, float]
    rms_gyro: tuple[float, float, float]
    synchronized_ratio: float
    mean_interval_s: float | None
    duration_s: float


class _TimeFilter(Iterable[SensorSample]):
    """Lazy, restartable view: each iteration re-scans the window."""

    def __init__(self, window: SensorWindow, start_us: int, end_us: int | None) -> None:
        self._window = window
        self._start = start_us
        self._end = end_us

    def __iter__(self) -> Iterator[SensorSample]:
        for sample in self._window:
            if sample.timestamp_us < self._start:
                continue
            if self._end is not None and sample.timestamp_us > self._end:
                break
            yield sample


class SensorWindow:
    """Fixed-capacity sample buffer with oldest-eviction on overflow.

    Samples must arrive in non-decreasing timestamp order.  A window is
    owned by exactly one consumer at a time and performs no locking.
    """

    def __init__(self, capacity: int = 1000) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._samples: deque[SensorSample] = deque(maxlen=capacity)
        self._evicted = 0

    # ── Mutation ──────────────────────────────────────────────

    def push(self, sample: SensorSample) -> None:
        """Append *sample*, evicting the oldest one when full."""
        if self._samples and sample.timestamp_us < self._samples[-1].timestamp_us:
            raise ValueError(
                f"out-of-order sample: {sample.timestamp_us} < {self._samples[-1].timestamp_us}"
            )
        if len(self._samples) == self._samples.maxlen:
            self._evicted += 1
        self._samples.append(sample)

    def extend(self, samples: Iterable[SensorSample]) -> None:
        for s in samples:
            self.push(s)

    def clear(self) -> None:
        self._samples.clear()

    # ── Queries ───────────────────────────────────────────────

    @property
    def capacity(self) -> int:
        return self._samples.maxlen or 0

    @property
    def evicted(self) -> int:
        """Number of samples dropped due to overflow since creation."""
        return self._evicted

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[SensorSample]:
        return iter(self._samples)

    def __bool__(self) -> bool:
        return bool(self._samples)

    @property
    def newest(self) -> SensorSample | None:
        return self._samples[-1] if self._samples else None

    def recent(self, duration_s: float, now_us: int | None = None) -> Iterable[SensorSample]:
        """Samples with ``timestamp >= now - duration``, oldest first.

        *now_us* defaults to the newest sample's timestamp.
        """
        if now_us is None:
            now_us = self._samples[-1].timestamp_us if self._samples else 0
        return _TimeFilter(self, now_us - int(round(duration_s * 1_000_000)), None)

    def range(self, start_us: int, end_us: int) -> Iterable[SensorSample]:
        """Samples with ``start_us <= timestamp <= end_us`` (inclusive)."""
        return _TimeFilter(self, start_us, end_us)

    def last(self, n: int) -> list[SensorSample]:
        if n <= 0:
            return []
        return list(self._samples)[-n:]

    def synchronized(self) -> list[SensorSample]:
        return [s for s in self._samples if s.synchronized]

    def statistics(self) -> WindowStatistics:
        """Count, per-axis mean / RMS and synchronization ratio.

        Raises :class:`EmptyWindowError` when the window holds no samples.
        """
        if not self._samples:
            raise EmptyWindowError("statistics requested on an empty sensor window")

        data = np.array(
            [(s.ax, s.ay, s.az, s.gx, s.gy, s.gz) for s in self._samples],
            dtype=np.float64,
        )
        mean = data.mean(axis=0)
        rms = np.sqrt((data ** 2).mean(axis=0))
        synced = sum(1 for s in self._samples if s.synchronized)

        first = self._samples[0].timestamp_us
        last = self._samples[-1].timestamp_us
        duration_s = (last - first) / 1_000_000
        mean_interval = duration_s / (len(self._samples) - 1) if len(self._samples) > 1 else None

        return WindowStatistics(
            count=len(self._samples),
            mean_acc=_triple(mean[:3]),
            rms_acc=_triple(rms[:3]),
            mean_gyro=_triple(mean[3:]),
            rms_gyro=_triple(rms[3:]),
            synchronized_ratio=synced / len(self._samples),
            mean_interval_s=mean_interval,
            duration_s=duration_s,
        )


def _triple(values: np.ndarray) -> tuple[float, float, float]:
    a, b, c = (float(v) for v in values)
    if any(math.isnan(v) for v in (a, b, c)):
        raise ValueError("non-finite sensor values in window")
    return a, b, c
