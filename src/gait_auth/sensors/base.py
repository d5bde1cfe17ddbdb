"""Abstract base class for sensor-stream sources."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from gait_auth.streaming.channel import SampleChannel


class SensorGroup(str, Enum):
    """Axis groups a device may or may not provide."""
    ACCELEROMETER = "accelerometer"
    GYROSCOPE = "gyroscope"


class BaseSensorSource(ABC):
    """Contract that every sensor-stream source must implement.

    A source pushes synchronized 6-axis :class:`SensorSample` objects into
    the :class:`SampleChannel` it was started with.  Samples are emitted in
    timestamp order; the ``synchronized`` flag of each sample honours
    :attr:`sync_tolerance_ms`.
    """

    sync_tolerance_ms: float = 50.0

    @abstractmethod
    async def is_available(self, group: SensorGroup) -> bool:
        """Whether the device exposes the given axis group."""

    @abstractmethod
    async def set_sampling_rate(self, hz: float) -> None:
        """Request a sampling rate.  Raises :class:`SensorError` if unsupported."""

    @abstractmethod
    async def start(self, channel: SampleChannel) -> None:
        """Begin pushing samples into *channel* (returns immediately)."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop pushing samples.  Safe to call when not started."""

    @property
    @abstractmethod
    def sampling_rate(self) -> float:
        """Currently configured sampling rate in Hz."""

    @property
    def is_streaming(self) -> bool:
        return False
