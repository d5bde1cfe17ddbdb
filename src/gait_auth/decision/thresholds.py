"""Security levels and adaptive confidence-threshold recommendations."""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import Any

from gait_auth.models import AuthenticationDecision

_MIN_DECISIONS = 5
_TARGET_SUCCESS_RATE = 0.75


class SecurityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    MAX = "max"

    @property
    def offset(self) -> float:
        return {"low": -0.1, "medium": 0.0, "high": 0.1, "max": 0.2}[self.value]


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def success_rate(decisions: Sequence[AuthenticationDecision]) -> float:
    if not decisions:
        return 0.0
    return sum(1 for d in decisions if d.authenticated) / len(decisions)


class ThresholdManager:
    """Derive the confidence threshold from a base value and a security level.

    Parameters
    ----------
    base_threshold : float
        Threshold at :attr:`SecurityLevel.MEDIUM`.
    security_level : SecurityLevel
        Shifts the base threshold by -0.1 / 0 / +0.1 / +0.2.
    """

    def __init__(
        self,
        base_threshold: float = 0.7,
        security_level: SecurityLevel = SecurityLevel.MEDIUM,
    ) -> None:
        self.base_threshold = base_threshold
        self.security_level = security_level

    @property
    def current_threshold(self) -> float:
        return _clamp(self.base_threshold + self.security_level.offset, 0.0, 1.0)

    def adjust_for_performance(
        self,
        recent: Sequence[AuthenticationDecision],
        current: float,
    ) -> float:
        """Nudge *current* up when nearly everything passes, down when most fails.

        Needs at least five decisions; otherwise *current* is returned as is.
        """
        if len(recent) < _MIN_DECISIONS:
            return current
        rate = success_rate(recent)
        if rate > 0.9:
            return _clamp(current + 0.05, 0.5, 0.95)
        if rate < 0.5:
            return _clamp(current - 0.05, 0.3, 0.8)
        return current

    def recommendations(
        self,
        recent: Sequence[AuthenticationDecision],
        current: float,
    ) -> dict[str, Any]:
        if len(recent) < _MIN_DECISIONS:
            return {"message": "Not enough data for recommendations"}

        rate = success_rate(recent)
        if rate > 0.85:
            recommended, action = _clamp(current - 0.05, 0.4, 0.9), "consider_decreasing"
        elif rate < 0.6:
            recommended, action = _clamp(current + 0.05, 0.5, 0.9), "consider_increasing"
        else:
            recommended, action = current, "maintain"

        return {
            "success_rate": {
                "current": round(rate, 2),
                "target": _TARGET_SUCCESS_RATE,
                "status": "good" if rate >= _TARGET_SUCCESS_RATE else "needs_improvement",
            },
            "threshold_adjustment": {
                "current": round(current, 2),
                "recommended": round(recommended, 2),
                "action": action,
            },
        }
