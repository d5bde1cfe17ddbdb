"""User-facing guidance for failed or interrupted calibrations.

Maps a failure reason (or the exception that caused it) to a message, a
suggested next step and a list of recovery actions a front-end can show.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from gait_auth.calibration.states import (
    CalibrationCancelled,
    CalibrationFailed,
    CalibrationFailureReason,
    CalibrationState,
)
from gait_auth.errors import (
    CalibrationTimeoutError,
    ConcurrentSessionError,
    InsufficientDataError,
    InsufficientSignalError,
    SensorError,
)


class CalibrationErrorType(str, Enum):
    SENSOR_UNAVAILABLE = "sensor_unavailable"
    SENSOR_ERROR = "sensor_error"
    INSUFFICIENT_DATA = "insufficient_data"
    DATA_QUALITY_POOR = "data_quality_poor"
    TIMEOUT = "timeout"
    SESSION_CONFLICT = "session_conflict"
    USER_CANCELLED = "user_cancelled"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RecoveryActionType(str, Enum):
    RETRY = "retry"
    EXTEND_DURATION = "extend_duration"
    IMPROVE_TECHNIQUE = "improve_technique"
    CHANGE_ENVIRONMENT = "change_environment"
    CHECK_PERMISSIONS = "check_permissions"
    CHECK_DEVICE = "check_device"
    RESUME = "resume"
    WAIT = "wait"


@dataclass(frozen=True, slots=True)
class RecoveryAction:
    title: str
    description: str
    action_type: RecoveryActionType


@dataclass(frozen=True, slots=True)
class CalibrationErrorInfo:
    error_type: CalibrationErrorType
    user_message: str
    suggested_action: str
    can_retry: bool
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    technical_message: str = ""
    recovery_actions: tuple[RecoveryAction, ...] = field(default=())


_RECOVERY_ACTIONS: dict[CalibrationErrorType, tuple[RecoveryAction, ...]] = {
    CalibrationErrorType.SENSOR_UNAVAILABLE: (
        RecoveryAction("Check device permissions", "Make sure motion sensors are enabled in the device settings", RecoveryActionType.CHECK_PERMISSIONS),
        RecoveryAction("Check device", "Confirm the device has an accelerometer and a gyroscope", RecoveryActionType.CHECK_DEVICE),
    ),
    CalibrationErrorType.SENSOR_ERROR: (
        RecoveryAction("Wait and retry", "Sensors may be temporarily busy", RecoveryActionType.RETRY),
        RecoveryAction("Check device motion", "Ensure the device is functioning normally", RecoveryActionType.CHECK_DEVICE),
    ),
    CalibrationErrorType.INSUFFICIENT_DATA: (
        RecoveryAction("Extend duration", "Walk for longer during calibration", RecoveryActionType.EXTEND_DURATION),
        RecoveryAction("Keep the device on you", "Carry the device in a pocket or hand while walking", RecoveryActionType.IMPROVE_TECHNIQUE),
    ),
    CalibrationErrorType.DATA_QUALITY_POOR: (
        RecoveryAction("Walk naturally", "Walk at a steady, natural pace without stopping", RecoveryActionType.IMPROVE_TECHNIQUE),
        RecoveryAction("Change environment", "Move to a flat, open surface", RecoveryActionType.CHANGE_ENVIRONMENT),
    ),
    CalibrationErrorType.TIMEOUT: (
        RecoveryAction("Try again", "Start a new calibration and keep walking until it finishes", RecoveryActionType.RETRY),
        RecoveryAction("Use a shorter preset", "The fast preset needs only 30 seconds of walking", RecoveryActionType.EXTEND_DURATION),
    ),
    CalibrationErrorType.SESSION_CONFLICT: (
        RecoveryAction("Wait", "Let the running calibration finish or cancel it first", RecoveryActionType.WAIT),
    ),
    CalibrationErrorType.USER_CANCELLED: (
        RecoveryAction("Restart calibration", "Start a new calibration session", RecoveryActionType.RESUME),
    ),
}

_DEFAULT_ACTIONS = (
    RecoveryAction("Try again", "Restart the calibration process", RecoveryActionType.RETRY),
)


def recovery_actions(error_type: CalibrationErrorType) -> tuple[RecoveryAction, ...]:
    return _RECOVERY_ACTIONS.get(error_type, _DEFAULT_ACTIONS)


def _info(
    error_type: CalibrationErrorType,
    user_message: str,
    suggested_action: str,
    *,
    can_retry: bool = True,
    severity: ErrorSeverity = ErrorSeverity.MEDIUM,
    technical_message: str = "",
) -> CalibrationErrorInfo:
    return CalibrationErrorInfo(
        error_type=error_type,
        user_message=user_message,
        suggested_action=suggested_action,
        can_retry=can_retry,
        severity=severity,
        technical_message=technical_message,
        recovery_actions=recovery_actions(error_type),
    )


def _from_reason(reason: CalibrationFailureReason, detail: str = "") -> CalibrationErrorInfo:
    if reason is CalibrationFailureReason.INSUFFICIENT_GAIT_CYCLES:
        return _info(
            CalibrationErrorType.DATA_QUALITY_POOR,
            "We could not detect a steady walking pattern",
            "Walk more naturally at a steady pace and try again",
            technical_message=detail,
        )
    if reason is CalibrationFailureReason.INSUFFICIENT_DATA:
        return _info(
            CalibrationErrorType.INSUFFICIENT_DATA,
            "Not enough motion data was collected",
            "Walk longer during calibration",
            technical_message=detail,
        )
    if reason is CalibrationFailureReason.TIMEOUT:
        return _info(
            CalibrationErrorType.TIMEOUT,
            "Calibration took too long to finish",
            "Start again and keep walking until calibration completes",
            severity=ErrorSeverity.LOW,
            technical_message=detail,
        )
    return _info(
        CalibrationErrorType.SENSOR_ERROR,
        "A sensor error occurred during calibration",
        "Retry the sensor setup",
        severity=ErrorSeverity.HIGH,
        technical_message=detail,
    )


def analyze_failure(
    failure: CalibrationFailureReason | CalibrationState | Exception | str,
) -> CalibrationErrorInfo:
    """Translate a calibration failure into user guidance.

    Accepts a failure reason (enum or its string value), a terminal
    calibration state, or the exception raised while starting or running a
    session.
    """
    if isinstance(failure, CalibrationFailed):
        return _from_reason(failure.reason, failure.detail)
    if isinstance(failure, CalibrationCancelled):
        return _info(
            CalibrationErrorType.USER_CANCELLED,
            "Calibration was cancelled",
            "Start a new calibration when you are ready",
            severity=ErrorSeverity.LOW,
        )
    if isinstance(failure, CalibrationFailureReason):
        return _from_reason(failure)
    if isinstance(failure, str):
        try:
            return _from_reason(CalibrationFailureReason(failure))
        except ValueError:
            return _info(CalibrationErrorType.UNKNOWN, "Calibration failed", "Try again", technical_message=failure)
    if isinstance(failure, SensorError):
        message = str(failure)
        if "not available" in message or "unavailable" in message:
            return _info(
                CalibrationErrorType.SENSOR_UNAVAILABLE,
                "Device sensors are not available",
                "Check device compatibility and permissions",
                can_retry=False,
                severity=ErrorSeverity.HIGH,
                technical_message=message,
            )
        return _from_reason(CalibrationFailureReason.SENSOR_ERROR, message)
    if isinstance(failure, ConcurrentSessionError):
        return _info(
            CalibrationErrorType.SESSION_CONFLICT,
            "A calibration is already in progress",
            "Wait for it to finish or cancel it",
            severity=ErrorSeverity.LOW,
            technical_message=str(failure),
        )
    if isinstance(failure, CalibrationTimeoutError):
        return _from_reason(CalibrationFailureReason.TIMEOUT, str(failure))
    if isinstance(failure, InsufficientDataError):
        return _from_reason(CalibrationFailureReason.INSUFFICIENT_DATA, str(failure))
    if isinstance(failure, InsufficientSignalError):
        return _from_reason(CalibrationFailureReason.INSUFFICIENT_GAIT_CYCLES, str(failure))
    return _info(
        CalibrationErrorType.UNKNOWN,
        "Calibration failed unexpectedly",
        "Restart the calibration process",
        technical_message=str(failure),
    )
