"""Persistence contracts used by the session coordinator.

Two implementations ship with the package: :mod:`gait_auth.storage.memory`
(process-local, used by tests and the simulator) and
:mod:`gait_auth.storage.repository` (SQLAlchemy async).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from gait_auth.models import (
    AuthenticationDecision,
    BaselineProfile,
    CalibrationSession,
    CalibrationStatus,
    CalibrationType,
    SensorSample,
)


class CalibrationStore(ABC):
    """Calibration sessions and the raw samples collected for them."""

    @abstractmethod
    async def create(self, session: CalibrationSession) -> None: ...

    @abstractmethod
    async def update(self, session: CalibrationSession) -> None: ...

    @abstractmethod
    async def get(self, session_id: str) -> CalibrationSession | None: ...

    @abstractmethod
    async def list_sessions(
        self,
        user_id: str | None = None,
        *,
        calibration_type: CalibrationType | None = None,
        status: CalibrationStatus | None = None,
    ) -> list[CalibrationSession]:
        """Sessions ordered by ``started_at`` (oldest first)."""

    @abstractmethod
    async def save_samples(self, session_id: str, samples: Sequence[SensorSample]) -> int:
        """Append *samples* to the session.  Returns the number stored."""

    @abstractmethod
    async def get_samples(self, session_id: str) -> list[SensorSample]: ...

    @abstractmethod
    async def delete_samples(self, session_id: str) -> int: ...

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Remove a session and its samples.  Returns ``False`` if unknown."""


class BaselineStore(ABC):
    """Durable baseline profiles.  The newest one per (user, type) wins."""

    @abstractmethod
    async def save(self, baseline: BaselineProfile) -> None: ...

    @abstractmethod
    async def get(self, baseline_id: str) -> BaselineProfile | None: ...

    @abstractmethod
    async def get_latest(
        self, user_id: str, calibration_type: CalibrationType
    ) -> BaselineProfile | None: ...

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[BaselineProfile]: ...


class DecisionStore(ABC):
    """Append-only authentication decision history."""

    @abstractmethod
    async def save(self, decision: AuthenticationDecision) -> None: ...

    @abstractmethod
    async def history(
        self, user_id: str | None = None, *, limit: int | None = None
    ) -> list[AuthenticationDecision]:
        """Decisions in chronological order; *limit* keeps the newest ones."""
