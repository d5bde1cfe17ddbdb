"""Calibration engine — builds a per-user baseline from a stream of samples.

The engine is a synchronous state machine.  It owns its sample buffer and
is driven by exactly one consumer (the session coordinator), so it needs
no locking.  Time is read from an injectable monotonic clock to make the
wall-clock budget testable.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable

import numpy as np
import structlog

from gait_auth.calibration.states import (
    CalibrationCancelled,
    CalibrationCollecting,
    CalibrationCompleted,
    CalibrationFailed,
    CalibrationFailureReason,
    CalibrationIdle,
    CalibrationState,
)
from gait_auth.config import Settings
from gait_auth.errors import InsufficientSignalError
from gait_auth.features.extractor import FeatureConfig, FeatureExtractor
from gait_auth.models import (
    BaselineProfile,
    CalibrationSession,
    CalibrationStatus,
    CalibrationType,
    GaitFeatureVector,
    SensorSample,
    utcnow,
)
from gait_auth.sensors.window import SensorWindow

logger = structlog.get_logger(__name__)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class CalibrationEngine:
    """Drive one calibration session from first sample to baseline.

    Parameters
    ----------
    user_id : str
        Owner of the resulting baseline.
    calibration_type : CalibrationType
        Motion the baseline describes.
    target_reading_count : int
        Samples (synchronized or not) to collect before completing.
    target_rate_hz : float
        Expected sampling rate; used for the rate-stability term.
    min_acceptance : float
        Minimum fraction of windows that must yield a gait feature vector.
    max_duration_s : float
        Wall-clock budget checked by :meth:`check_timeout`.
    window_capacity : int
        Lower bound on the sample buffer size.
    extractor : FeatureExtractor | None
        Defaults to an extractor at *target_rate_hz*.
    clock : Callable[[], float]
        Monotonic seconds source.
    """

    def __init__(
        self,
        user_id: str,
        calibration_type: CalibrationType = CalibrationType.WALKING,
        *,
        target_reading_count: int = 500,
        target_rate_hz: float = 50.0,
        min_acceptance: float = 0.6,
        max_duration_s: float = 120.0,
        window_capacity: int = 1000,
        extractor: FeatureExtractor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if target_reading_count <= 0:
            raise ValueError("target_reading_count must be positive")
        self._extractor = extractor or FeatureExtractor(FeatureConfig(sampling_rate_hz=target_rate_hz))
        self._target_rate = target_rate_hz
        self._min_acceptance = min_acceptance
        self._max_duration = max_duration_s
        self._clock = clock
        self._buffer = SensorWindow(capacity=max(window_capacity, target_reading_count))

        self.session = CalibrationSession(
            user_id=user_id,
            calibration_type=calibration_type,
            target_reading_count=target_reading_count,
        )
        self._state: CalibrationState = CalibrationIdle()
        self._started_at: float | None = None
        self._synced_count = 0
        self._first_ts: int | None = None
        self._last_ts: int | None = None

    @classmethod
    def from_settings(
        cls,
        user_id: str,
        calibration_type: CalibrationType,
        settings: Settings,
        *,
        target_reading_count: int | None = None,
        extractor: FeatureExtractor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> CalibrationEngine:
        return cls(
            user_id,
            calibration_type,
            target_reading_count=target_reading_count or settings.calibration_target_readings,
            target_rate_hz=settings.sampling_rate_hz,
            min_acceptance=settings.calibration_min_acceptance,
            max_duration_s=settings.calibration_max_duration_seconds,
            window_capacity=settings.window_capacity,
            extractor=extractor or FeatureExtractor(FeatureConfig.from_settings(settings)),
            clock=clock,
        )

    # ── Introspection ─────────────────────────────────────────

    @property
    def state(self) -> CalibrationState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state.terminal

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    @property
    def realtime_quality(self) -> float:
        """``0.5 * sync_ratio + 0.5 * rate_stability`` over the samples so far."""
        count = self.session.reading_count
        if count == 0:
            return 0.0
        sync_ratio = self._synced_count / count
        stability = 0.0
        if count > 1 and self._first_ts is not None and self._last_ts is not None:
            expected = 1.0 / self._target_rate
            mean_interval = (self._last_ts - self._first_ts) / 1_000_000 / (count - 1)
            stability = _clamp(1.0 - abs(mean_interval - expected) / expected)
        return _clamp(0.5 * sync_ratio + 0.5 * stability)

    # ── Transitions ───────────────────────────────────────────

    def start(self) -> CalibrationState:
        if not isinstance(self._state, CalibrationIdle):
            return self._state
        self._started_at = self._clock()
        self.session = self.session.model_copy(update={"status": CalibrationStatus.COLLECTING})
        self._state = self._collecting()
        logger.info(
            "calibration.started",
            session=self.session.id,
            user=self.session.user_id,
            target=self.session.target_reading_count,
        )
        return self._state

    def push(self, sample: SensorSample) -> CalibrationState:
        """Buffer one sample; completes the session when the target is reached."""
        if self._state.terminal:
            return self._state
        if isinstance(self._state, CalibrationIdle):
            raise RuntimeError("calibration has not been started")

        self._buffer.push(sample)
        if self._first_ts is None:
            self._first_ts = sample.timestamp_us
        self._last_ts = sample.timestamp_us
        if sample.synchronized:
            self._synced_count += 1

        count = self.session.reading_count + 1
        self.session = self.session.model_copy(
            update={"reading_count": count, "quality_score": self.realtime_quality}
        )
        if count >= self.session.target_reading_count:
            return self._complete()
        self._state = self._collecting()
        return self._state

    def push_many(self, samples: Iterable[SensorSample]) -> CalibrationState:
        for sample in samples:
            self.push(sample)
            if self._state.terminal:
                break
        return self._state

    def cancel(self) -> CalibrationState:
        """Abort collection.  A no-op on terminal states."""
        if self._state.terminal:
            return self._state
        self._buffer.clear()
        self.session = self.session.model_copy(
            update={"status": CalibrationStatus.CANCELLED, "ended_at": utcnow()}
        )
        self._state = CalibrationCancelled()
        logger.info("calibration.cancelled", session=self.session.id)
        return self._state

    def check_timeout(self) -> CalibrationState:
        """Fail with ``timeout`` once the wall-clock budget is exhausted."""
        if not isinstance(self._state, CalibrationCollecting) or self._started_at is None:
            return self._state
        if self._clock() - self._started_at >= self._max_duration:
            return self.fail(CalibrationFailureReason.TIMEOUT)
        return self._state

    def fail(self, reason: CalibrationFailureReason, detail: str = "") -> CalibrationState:
        if self._state.terminal:
            return self._state
        self.session = self.session.model_copy(
            update={
                "status": CalibrationStatus.FAILED,
                "failure_reason": reason.value,
                "ended_at": utcnow(),
            }
        )
        self._state = CalibrationFailed(reason=reason, detail=detail)
        logger.warning(
            "calibration.failed",
            session=self.session.id,
            reason=reason.value,
            readings=self.session.reading_count,
        )
        return self._state

    # ── Internals ─────────────────────────────────────────────

    def _collecting(self) -> CalibrationCollecting:
        return CalibrationCollecting(
            reading_count=self.session.reading_count,
            target_reading_count=self.session.target_reading_count,
            progress=self.session.progress,
            quality=self.session.quality_score,
        )

    def _window_vectors(self) -> tuple[list[GaitFeatureVector], int]:
        size = self._extractor.config.window_size
        synced = self._buffer.synchronized()
        total = len(synced) // size
        accepted: list[GaitFeatureVector] = []
        for i in range(total):
            chunk = synced[i * size:(i + 1) * size]
            try:
                accepted.append(self._extractor.extract(chunk))
            except InsufficientSignalError as exc:
                logger.debug("calibration.window_rejected", window=i, error=str(exc))
        return accepted, total

    def _complete(self) -> CalibrationState:
        vectors, total = self._window_vectors()
        if total == 0:
            return self.fail(CalibrationFailureReason.INSUFFICIENT_DATA)

        acceptance = len(vectors) / total
        if acceptance < self._min_acceptance:
            return self.fail(
                CalibrationFailureReason.INSUFFICIENT_GAIT_CYCLES,
                detail=f"{len(vectors)}/{total} windows usable",
            )

        matrix = np.vstack([v.to_array() for v in vectors])
        mean = matrix.mean(axis=0)
        spread = matrix.std(axis=0, ddof=1) if len(vectors) > 1 else np.zeros(matrix.shape[1])
        quality = _clamp(0.5 * self.realtime_quality + 0.5 * acceptance)

        template = vectors[0]
        baseline = BaselineProfile(
            user_id=self.session.user_id,
            calibration_type=self.session.calibration_type,
            session_id=self.session.id,
            feature_names=template.names,
            mean=tuple(float(v) for v in mean),
            spread=tuple(float(v) for v in spread),
            sample_count=self.session.reading_count,
            window_count=len(vectors),
            quality_score=quality,
            window_size=template.window_size,
            sampling_rate_hz=template.sampling_rate_hz,
        )
        self.session = self.session.model_copy(
            update={
                "status": CalibrationStatus.COMPLETED,
                "quality_score": quality,
                "ended_at": utcnow(),
                "baseline_mean": baseline.mean,
                "baseline_spread": baseline.spread,
            }
        )
        self._state = CalibrationCompleted(
            baseline=baseline, quality=quality, acceptance_ratio=acceptance
        )
        logger.info(
            "calibration.completed",
            session=self.session.id,
            windows=len(vectors),
            rejected=total - len(vectors),
            quality=round(quality, 3),
        )
        return self._state
