"""Error taxonomy for the gait authentication core.

Only :class:`InsufficientSignalError` is ever recovered inside the core
(a rejected calibration window).  Everything else surfaces to the session
coordinator, which maps it onto a typed session state.
"""

from __future__ import annotations


class GaitAuthError(Exception):
    """Base class for every error raised by :mod:`gait_auth`."""


class InsufficientDataError(GaitAuthError):
    """Too few samples for the requested operation."""

    def __init__(self, message: str, *, available: int = 0, required: int = 0) -> None:
        super().__init__(message)
        self.available = available
        self.required = required


class InsufficientSignalError(GaitAuthError):
    """No plausible gait cycle was detected in a window."""


class EmptyWindowError(GaitAuthError):
    """Statistics were requested on a window holding no samples."""


class NoBaselineError(GaitAuthError):
    """No completed calibration exists for the user / calibration type."""


class SensorError(GaitAuthError):
    """Raised by (or on behalf of) the sensor-stream collaborator."""


class ConcurrentSessionError(GaitAuthError):
    """A calibration for the same (user, type) pair is already collecting."""


class CalibrationTimeoutError(GaitAuthError, TimeoutError):
    """A calibration exceeded its maximum wall-clock duration."""


class FeatureMismatchError(GaitAuthError, ValueError):
    """Two feature vectors were extracted with different configurations."""
