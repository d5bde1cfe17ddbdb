"""Tests for the calibration engine and failure guidance."""

import pytest

from gait_auth.calibration.engine import CalibrationEngine
from gait_auth.calibration.guidance import CalibrationErrorType, analyze_failure
from gait_auth.calibration.states import (
    CalibrationCancelled,
    CalibrationCollecting,
    CalibrationCompleted,
    CalibrationFailed,
    CalibrationFailureReason,
    CalibrationIdle,
)
from gait_auth.errors import (
    CalibrationTimeoutError,
    InsufficientDataError,
    InsufficientSignalError,
    SensorError,
)
from gait_auth.features.extractor import FEATURE_NAMES
from gait_auth.models import CalibrationPreset, CalibrationQuality, CalibrationStatus


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _engine(**kwargs) -> CalibrationEngine:
    return CalibrationEngine("U001", **kwargs)


class TestLifecycle:
    def test_idle_until_started(self):
        engine = _engine()
        assert isinstance(engine.state, CalibrationIdle)
        with pytest.raises(RuntimeError):
            engine.push(None)  # type: ignore[arg-type]
        assert isinstance(engine.start(), CalibrationCollecting)
        assert engine.session.status == CalibrationStatus.COLLECTING

    def test_progress_and_realtime_quality(self, walking_samples):
        engine = _engine()
        engine.start()
        state = engine.push_many(walking_samples[:250])
        assert isinstance(state, CalibrationCollecting)
        assert state.progress == pytest.approx(0.5)
        assert state.reading_count == 250
        # 95 % synchronized, perfectly regular 20 ms spacing.
        assert engine.realtime_quality == pytest.approx(0.5 * (238 / 250) + 0.5, abs=1e-9)

    def test_completes_with_good_quality(self, walking_samples):
        engine = _engine()
        engine.start()
        state = engine.push_many(walking_samples)
        assert isinstance(state, CalibrationCompleted)
        assert state.quality > 0.7
        assert state.quality == pytest.approx(0.5 * 0.975 + 0.5 * 1.0, abs=1e-9)
        assert state.acceptance_ratio == 1.0
        assert state.quality_tier == CalibrationQuality.EXCELLENT

        baseline = state.baseline
        assert baseline.feature_names == FEATURE_NAMES
        assert baseline.window_count == 4
        assert baseline.sample_count == 500
        assert len(baseline.mean) == len(baseline.spread) == len(FEATURE_NAMES)
        assert all(s >= 0 for s in baseline.spread)
        assert baseline.mean_vector()["step_frequency_hz"] == pytest.approx(2.0, abs=0.2)

        session = engine.session
        assert session.status == CalibrationStatus.COMPLETED
        assert session.baseline_mean == baseline.mean
        assert session.ended_at is not None

    def test_completion_fires_once(self, walking_samples):
        engine = _engine()
        engine.start()
        completed = engine.push_many(walking_samples)
        again = engine.push(walking_samples[-1])
        assert again is completed
        assert engine.session.reading_count == 500

    def test_single_window_has_zero_spread(self, clean_walk):
        engine = _engine(target_reading_count=100)
        engine.start()
        state = engine.push_many(clean_walk[:100])
        assert isinstance(state, CalibrationCompleted)
        assert state.baseline.spread == tuple(0.0 for _ in FEATURE_NAMES)


class TestFailures:
    def test_too_few_synchronized_samples(self, walking_samples):
        engine = _engine(target_reading_count=90)
        engine.start()
        state = engine.push_many(walking_samples[:90])
        assert isinstance(state, CalibrationFailed)
        assert state.reason is CalibrationFailureReason.INSUFFICIENT_DATA
        assert engine.session.failure_reason == "insufficient data"

    def test_rejected_windows_fail_acceptance(self, make_flat):
        engine = _engine(target_reading_count=300)
        engine.start()
        state = engine.push_many(make_flat(300))
        assert isinstance(state, CalibrationFailed)
        assert state.reason is CalibrationFailureReason.INSUFFICIENT_GAIT_CYCLES

    def test_partial_acceptance_above_minimum(self, clean_walk, make_flat):
        # Three walking windows followed by one still window: 75 % usable.
        still = [
            s.model_copy(update={"timestamp_us": s.timestamp_us + 10_000_000})
            for s in make_flat(100)
        ]
        engine = _engine(target_reading_count=400)
        engine.start()
        state = engine.push_many(clean_walk[:300] + still)
        assert isinstance(state, CalibrationCompleted)
        assert state.acceptance_ratio == pytest.approx(0.75)
        assert state.baseline.window_count == 3

    def test_timeout(self, walking_samples):
        clock = FakeClock()
        engine = _engine(max_duration_s=5.0, clock=clock)
        engine.start()
        engine.push_many(walking_samples[:200])
        clock.now = 4.9
        assert isinstance(engine.check_timeout(), CalibrationCollecting)
        clock.now = 5.0
        state = engine.check_timeout()
        assert isinstance(state, CalibrationFailed)
        assert state.reason is CalibrationFailureReason.TIMEOUT
        assert engine.session.status == CalibrationStatus.FAILED

        error = state.to_exception()
        assert isinstance(error, CalibrationTimeoutError)
        assert isinstance(error, TimeoutError)
        assert str(error) == "calibration failed: timeout"

    def test_failure_exceptions_by_reason(self):
        cases = {
            CalibrationFailureReason.INSUFFICIENT_DATA: InsufficientDataError,
            CalibrationFailureReason.INSUFFICIENT_GAIT_CYCLES: InsufficientSignalError,
            CalibrationFailureReason.SENSOR_ERROR: SensorError,
        }
        for reason, error_type in cases.items():
            error = CalibrationFailed(reason, "detail").to_exception()
            assert type(error) is error_type
            assert str(error).endswith("(detail)")

    def test_sensor_failure(self):
        engine = _engine()
        engine.start()
        state = engine.fail(CalibrationFailureReason.SENSOR_ERROR, "gyroscope stalled")
        assert isinstance(state, CalibrationFailed)
        assert state.detail == "gyroscope stalled"


class TestCancel:
    def test_cancel_clears_buffer(self, walking_samples):
        engine = _engine()
        engine.start()
        engine.push_many(walking_samples[:100])
        state = engine.cancel()
        assert isinstance(state, CalibrationCancelled)
        assert engine.buffered == 0
        assert engine.session.status == CalibrationStatus.CANCELLED

    def test_cancel_is_idempotent(self):
        engine = _engine()
        engine.start()
        first = engine.cancel()
        assert engine.cancel() is first

    def test_cancel_after_completion_is_noop(self, walking_samples):
        engine = _engine()
        engine.start()
        completed = engine.push_many(walking_samples)
        assert engine.cancel() is completed
        assert engine.session.status == CalibrationStatus.COMPLETED


class TestPresets:
    def test_target_from_preset(self):
        assert CalibrationPreset.FAST.target_reading_count(50) == 1500
        assert CalibrationPreset.STANDARD.target_reading_count(50) == 6000
        assert CalibrationPreset.EXTENDED.duration_seconds == 300


class TestGuidance:
    def test_poor_gait_suggests_walking_naturally(self):
        info = analyze_failure(CalibrationFailed(CalibrationFailureReason.INSUFFICIENT_GAIT_CYCLES))
        assert info.error_type is CalibrationErrorType.DATA_QUALITY_POOR
        assert info.can_retry
        assert info.recovery_actions

    def test_reason_string(self):
        info = analyze_failure("insufficient data")
        assert info.error_type is CalibrationErrorType.INSUFFICIENT_DATA

    def test_unavailable_sensor_cannot_retry(self):
        info = analyze_failure(SensorError("gyroscope not available"))
        assert info.error_type is CalibrationErrorType.SENSOR_UNAVAILABLE
        assert not info.can_retry

    def test_timeout_error(self):
        info = analyze_failure(CalibrationTimeoutError("120 s budget exhausted"))
        assert info.error_type is CalibrationErrorType.TIMEOUT
        assert info.technical_message == "120 s budget exhausted"

    def test_cancelled(self):
        info = analyze_failure(CalibrationCancelled())
        assert info.error_type is CalibrationErrorType.USER_CANCELLED
