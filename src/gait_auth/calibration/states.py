"""Calibration lifecycle states.

``Idle → Collecting → {Completed | Failed | Cancelled}``; the last three
are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from gait_auth.errors import (
    CalibrationTimeoutError,
    GaitAuthError,
    InsufficientDataError,
    InsufficientSignalError,
    SensorError,
)
from gait_auth.models import BaselineProfile, CalibrationQuality


class CalibrationFailureReason(str, Enum):
    INSUFFICIENT_GAIT_CYCLES = "insufficient usable gait cycles"
    TIMEOUT = "timeout"
    INSUFFICIENT_DATA = "insufficient data"
    SENSOR_ERROR = "sensor error"


@dataclass(frozen=True, slots=True)
class CalibrationIdle:
    terminal = False


@dataclass(frozen=True, slots=True)
class CalibrationCollecting:
    """Progress snapshot emitted after every pushed sample batch."""

    reading_count: int
    target_reading_count: int
    progress: float
    quality: float
    terminal = False


@dataclass(frozen=True, slots=True)
class CalibrationCompleted:
    baseline: BaselineProfile
    quality: float
    acceptance_ratio: float
    terminal = True

    @property
    def quality_tier(self) -> CalibrationQuality:
        return CalibrationQuality.from_score(self.quality)


@dataclass(frozen=True, slots=True)
class CalibrationFailed:
    reason: CalibrationFailureReason
    detail: str = ""
    terminal = True

    def to_exception(self) -> GaitAuthError:
        """The error that describes this failure to a caller awaiting a baseline."""
        message = f"calibration failed: {self.reason.value}"
        if self.detail:
            message = f"{message} ({self.detail})"
        if self.reason is CalibrationFailureReason.TIMEOUT:
            return CalibrationTimeoutError(message)
        if self.reason is CalibrationFailureReason.INSUFFICIENT_DATA:
            return InsufficientDataError(message)
        if self.reason is CalibrationFailureReason.INSUFFICIENT_GAIT_CYCLES:
            return InsufficientSignalError(message)
        return SensorError(message)


@dataclass(frozen=True, slots=True)
class CalibrationCancelled:
    terminal = True


CalibrationState = Union[
    CalibrationIdle,
    CalibrationCollecting,
    CalibrationCompleted,
    CalibrationFailed,
    CalibrationCancelled,
]
