"""Deterministic simulated sensor source.

Generates (or replays) 6-axis walking data so calibration and
authentication sessions can be exercised without hardware.  The synthetic
signal follows the usual smartphone-in-pocket picture: vertical bounce at
the step frequency on ``az``, forward surge on ``ay``, lateral sway at half
the step frequency on ``ax``, plus small rotations.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Iterable, Iterator

import numpy as np
import structlog

from gait_auth.errors import SensorError
from gait_auth.models import SensorSample
from gait_auth.sensors.base import BaseSensorSource, SensorGroup
from gait_auth.streaming.channel import SampleChannel

logger = structlog.get_logger(__name__)

GRAVITY = 9.81


def generate_walking_samples(
    count: int,
    *,
    sampling_rate_hz: float = 50.0,
    step_frequency_hz: float = 2.0,
    amplitude: float = 1.5,
    sync_ratio: float = 1.0,
    noise: float = 0.05,
    seed: int = 0,
    start_us: int = 0,
) -> list[SensorSample]:
    """Return *count* samples of synthetic walking at a fixed rate.

    Unsynchronized samples are spread evenly so that the synchronized
    fraction equals *sync_ratio* (e.g. every 20th sample for 0.95).
    """
    return list(
        iter_walking_samples(
            count,
            sampling_rate_hz=sampling_rate_hz,
            step_frequency_hz=step_frequency_hz,
            amplitude=amplitude,
            sync_ratio=sync_ratio,
            noise=noise,
            seed=seed,
            start_us=start_us,
        )
    )


def iter_walking_samples(
    count: int | None = None,
    *,
    sampling_rate_hz: float = 50.0,
    step_frequency_hz: float = 2.0,
    amplitude: float = 1.5,
    sync_ratio: float = 1.0,
    noise: float = 0.05,
    seed: int = 0,
    start_us: int = 0,
) -> Iterator[SensorSample]:
    """Lazy variant of :func:`generate_walking_samples`; ``count=None`` is endless."""
    rng = np.random.default_rng(seed)
    interval_us = 1_000_000 / sampling_rate_hz
    unsync = 1.0 - sync_ratio
    i = 0
    while count is None or i < count:
        t = i / sampling_rate_hz
        phase = 2.0 * math.pi * step_frequency_hz * t
        jitter = rng.normal(0.0, noise, size=6) if noise > 0 else np.zeros(6)
        synchronized = math.floor((i + 1) * unsync + 1e-9) == math.floor(i * unsync + 1e-9)
        yield SensorSample(
            timestamp_us=start_us + int(round(i * interval_us)),
            ax=0.4 * math.sin(phase / 2 + math.pi / 4) + float(jitter[0]),
            ay=1.0 + 0.3 * math.sin(phase) + float(jitter[1]),
            az=GRAVITY + amplitude * math.sin(phase) + float(jitter[2]),
            gx=0.2 * math.cos(phase / 2) + float(jitter[3]) * 0.5,
            gy=0.15 * math.sin(phase / 2 + math.pi / 2) + float(jitter[4]) * 0.5,
            gz=0.1 * math.sin(phase / 4) + float(jitter[5]) * 0.5,
            synchronized=synchronized,
        )
        i += 1


class SimulatedSensorSource(BaseSensorSource):
    """Push-based source backed by a sample iterable or the walking generator.

    Parameters
    ----------
    samples:
        Samples to replay.  ``None`` generates endless synthetic walking.
    pace:
        Sleep ``1 / sampling_rate`` between samples (real-time playback).
        When ``False`` samples are pushed as fast as the channel accepts.
    hold_open:
        Keep the channel open once *samples* are exhausted (a real sensor
        never ends its stream).  ``False`` closes the channel instead.
    fail_after:
        Forward a :class:`SensorError` after this many samples.
    available:
        Axis groups reported as present by :meth:`is_available`.
    """

    def __init__(
        self,
        samples: Iterable[SensorSample] | None = None,
        *,
        sampling_rate: float = 50.0,
        pace: bool = False,
        hold_open: bool = True,
        fail_after: int | None = None,
        available: Iterable[SensorGroup] = (SensorGroup.ACCELEROMETER, SensorGroup.GYROSCOPE),
        seed: int = 0,
        sync_tolerance_ms: float = 50.0,
    ) -> None:
        self._samples = samples
        self._sampling_rate = sampling_rate
        self._pace = pace
        self._hold_open = hold_open
        self._fail_after = fail_after
        self._available = set(available)
        self._seed = seed
        self.sync_tolerance_ms = sync_tolerance_ms
        self._task: asyncio.Task[None] | None = None
        self.start_count = 0
        self.emitted = 0

    async def is_available(self, group: SensorGroup) -> bool:
        return group in self._available

    async def set_sampling_rate(self, hz: float) -> None:
        if hz <= 0 or hz > 1000:
            raise SensorError("Sampling rate must be between 0 and 1000 Hz")
        self._sampling_rate = hz

    @property
    def sampling_rate(self) -> float:
        return self._sampling_rate

    @property
    def is_streaming(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, channel: SampleChannel) -> None:
        if self.is_streaming:
            return
        self.start_count += 1
        self.emitted = 0
        self._task = asyncio.create_task(self._produce(channel), name="simulated-sensor")
        logger.info("simulated_sensor.started", rate_hz=self._sampling_rate)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("simulated_sensor.stopped", emitted=self.emitted)

    # ── Producer loop ─────────────────────────────────────────

    def _source_iter(self) -> Iterator[SensorSample]:
        if self._samples is not None:
            return iter(self._samples)
        return iter_walking_samples(sampling_rate_hz=self._sampling_rate, seed=self._seed)

    async def _produce(self, channel: SampleChannel) -> None:
        delay = 1.0 / self._sampling_rate
        for sample in self._source_iter():
            if self._fail_after is not None and self.emitted >= self._fail_after:
                await channel.publish_error(SensorError("simulated sensor failure"))
                return
            await channel.publish(sample)
            self.emitted += 1
            if self._pace:
                await asyncio.sleep(delay)
            elif self.emitted % 50 == 0:
                await asyncio.sleep(0)

        if self._fail_after is not None and self.emitted >= self._fail_after:
            await channel.publish_error(SensorError("simulated sensor failure"))
        elif not self._hold_open:
            await channel.close()
