"""Shared Pydantic models used across the gait authentication core.

Units
-----
* timestamps: monotonic microseconds (``timestamp_us``)
* acceleration: m/s²
* angular velocity: rad/s
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    """Naive UTC ``datetime`` (the storage layer persists naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


# ── Enums ─────────────────────────────────────────────────────

class CalibrationType(str, Enum):
    """Kind of motion a baseline was recorded for."""
    WALKING = "walking"
    STAIRS = "stairs"
    RUNNING = "running"


class CalibrationPreset(str, Enum):
    """Calibration length presets; the target reading count follows the sampling rate."""
    FAST = "fast"
    STANDARD = "standard"
    EXTENDED = "extended"

    @property
    def duration_seconds(self) -> int:
        return {"fast": 30, "standard": 120, "extended": 300}[self.value]

    def target_reading_count(self, sampling_rate_hz: float) -> int:
        return round(self.duration_seconds * sampling_rate_hz)


class CalibrationStatus(str, Enum):
    PENDING = "pending"
    COLLECTING = "collecting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CalibrationQuality(str, Enum):
    """Discrete quality tier derived from a [0, 1] quality score."""
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"

    @classmethod
    def from_score(cls, score: float) -> CalibrationQuality:
        if score >= 0.9:
            return cls.EXCELLENT
        if score >= 0.7:
            return cls.GOOD
        if score >= 0.5:
            return cls.FAIR
        return cls.POOR


class RejectionReason(str, Enum):
    """Why an authentication attempt did not succeed."""
    LOW_CONFIDENCE = "low-confidence"
    NO_BASELINE = "no-baseline"
    INSUFFICIENT_SIGNAL = "insufficient-signal"
    SENSOR_ERROR = "sensor-error"


_TERMINAL_STATUSES = {
    CalibrationStatus.COMPLETED,
    CalibrationStatus.FAILED,
    CalibrationStatus.CANCELLED,
}


# ── Sensor data ───────────────────────────────────────────────

class SensorSample(BaseModel):
    """One synchronized 6-axis reading (accelerometer + gyroscope)."""

    model_config = ConfigDict(frozen=True)

    timestamp_us: int = Field(ge=0)
    ax: float
    ay: float
    az: float
    gx: float
    gy: float
    gz: float
    synchronized: bool = True

    @classmethod
    def from_readings(
        cls,
        accel_timestamp_us: int,
        accel: tuple[float, float, float],
        gyro_timestamp_us: int,
        gyro: tuple[float, float, float],
        *,
        tolerance_ms: float = 50.0,
    ) -> SensorSample:
        """Pair an accelerometer and a gyroscope reading into one sample.

        The sample carries the accelerometer timestamp.  It is flagged as
        synchronized when both readings lie strictly within *tolerance_ms*.
        """
        gap_us = abs(accel_timestamp_us - gyro_timestamp_us)
        return cls(
            timestamp_us=accel_timestamp_us,
            ax=accel[0], ay=accel[1], az=accel[2],
            gx=gyro[0], gy=gyro[1], gz=gyro[2],
            synchronized=gap_us < tolerance_ms * 1000,
        )

    @property
    def acc_magnitude(self) -> float:
        return math.sqrt(self.ax ** 2 + self.ay ** 2 + self.az ** 2)

    @property
    def gyro_magnitude(self) -> float:
        return math.sqrt(self.gx ** 2 + self.gy ** 2 + self.gz ** 2)


# ── Features ──────────────────────────────────────────────────

class GaitFeatureVector(BaseModel):
    """Fixed-size, named, ordered gait descriptor extracted from one window.

    Two vectors are only comparable when they were extracted with the same
    configuration (feature names, window size, sampling-rate assumption).
    """

    model_config = ConfigDict(frozen=True)

    names: tuple[str, ...]
    values: tuple[float, ...]
    window_size: int
    sampling_rate_hz: float

    @model_validator(mode="after")
    def _check_lengths(self) -> GaitFeatureVector:
        if len(self.names) != len(self.values):
            raise ValueError(
                f"feature names ({len(self.names)}) and values ({len(self.values)}) differ in length"
            )
        return self

    def __len__(self) -> int:
        return len(self.values)

    def __getitem__(self, name: str) -> float:
        try:
            return self.values[self.names.index(name)]
        except ValueError:
            raise KeyError(name) from None

    def as_dict(self) -> dict[str, float]:
        return dict(zip(self.names, self.values))

    def to_array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=np.float64)

    def is_comparable(self, other: GaitFeatureVector) -> bool:
        return (
            self.names == other.names
            and self.window_size == other.window_size
            and self.sampling_rate_hz == other.sampling_rate_hz
        )


# ── Calibration ───────────────────────────────────────────────

class CalibrationSession(BaseModel):
    """Lifecycle record of one calibration run.

    Instances are immutable; every transition returns a copy via
    :meth:`model_copy`.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    user_id: str
    calibration_type: CalibrationType = CalibrationType.WALKING
    status: CalibrationStatus = CalibrationStatus.PENDING
    target_reading_count: int = Field(500, gt=0)
    reading_count: int = 0
    quality_score: float = Field(0.0, ge=0.0, le=1.0)
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: datetime | None = None
    failure_reason: str | None = None
    baseline_mean: tuple[float, ...] | None = None
    baseline_spread: tuple[float, ...] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def quality(self) -> CalibrationQuality:
        return CalibrationQuality.from_score(self.quality_score)

    @property
    def progress(self) -> float:
        return min(1.0, self.reading_count / self.target_reading_count)

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL_STATUSES


class BaselineProfile(BaseModel):
    """Durable per-user gait fingerprint produced by a completed calibration."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    user_id: str
    calibration_type: CalibrationType = CalibrationType.WALKING
    session_id: str | None = None
    feature_names: tuple[str, ...]
    mean: tuple[float, ...]
    spread: tuple[float, ...]  # per-feature standard deviation
    sample_count: int = 0
    window_count: int = 0
    quality_score: float = Field(0.0, ge=0.0, le=1.0)
    window_size: int
    sampling_rate_hz: float
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_dimensions(self) -> BaselineProfile:
        if not (len(self.feature_names) == len(self.mean) == len(self.spread)):
            raise ValueError("baseline names, mean and spread must have equal length")
        return self

    @property
    def quality(self) -> CalibrationQuality:
        return CalibrationQuality.from_score(self.quality_score)

    def mean_vector(self) -> GaitFeatureVector:
        """The baseline mean as a feature vector (useful for self-comparison)."""
        return GaitFeatureVector(
            names=self.feature_names,
            values=self.mean,
            window_size=self.window_size,
            sampling_rate_hz=self.sampling_rate_hz,
        )


# ── Decisions ─────────────────────────────────────────────────

class AuthenticationDecision(BaseModel):
    """Outcome of a single authentication attempt.  Retained as history."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    user_id: str
    baseline_id: str | None = None
    features: GaitFeatureVector | None = None
    distance: float | None = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    threshold: float = Field(0.7, ge=0.0, le=1.0)
    authenticated: bool = False
    reason: RejectionReason | None = None
    attempt: int = 1
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def confidence_category(self) -> str:
        if self.confidence >= 0.8:
            return "high"
        if self.confidence >= 0.6:
            return "medium"
        if self.confidence >= 0.4:
            return "low"
        return "very_low"
