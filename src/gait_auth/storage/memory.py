"""Process-local implementations of the persistence contracts."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence

from gait_auth.models import (
    AuthenticationDecision,
    BaselineProfile,
    CalibrationSession,
    CalibrationStatus,
    CalibrationType,
    SensorSample,
)
from gait_auth.storage.base import BaselineStore, CalibrationStore, DecisionStore


class InMemoryCalibrationStore(CalibrationStore):
    def __init__(self) -> None:
        self._sessions: dict[str, CalibrationSession] = {}
        self._samples: dict[str, list[SensorSample]] = defaultdict(list)

    async def create(self, session: CalibrationSession) -> None:
        if session.id in self._sessions:
            raise ValueError(f"calibration session {session.id} already exists")
        self._sessions[session.id] = session

    async def update(self, session: CalibrationSession) -> None:
        if session.id not in self._sessions:
            raise KeyError(session.id)
        self._sessions[session.id] = session

    async def get(self, session_id: str) -> CalibrationSession | None:
        return self._sessions.get(session_id)

    async def list_sessions(
        self,
        user_id: str | None = None,
        *,
        calibration_type: CalibrationType | None = None,
        status: CalibrationStatus | None = None,
    ) -> list[CalibrationSession]:
        sessions = [
            s for s in self._sessions.values()
            if (user_id is None or s.user_id == user_id)
            and (calibration_type is None or s.calibration_type == calibration_type)
            and (status is None or s.status == status)
        ]
        return sorted(sessions, key=lambda s: s.started_at)

    async def save_samples(self, session_id: str, samples: Sequence[SensorSample]) -> int:
        self._samples[session_id].extend(samples)
        return len(samples)

    async def get_samples(self, session_id: str) -> list[SensorSample]:
        return list(self._samples.get(session_id, []))

    async def delete_samples(self, session_id: str) -> int:
        return len(self._samples.pop(session_id, []))

    async def delete(self, session_id: str) -> bool:
        self._samples.pop(session_id, None)
        return self._sessions.pop(session_id, None) is not None


class InMemoryBaselineStore(BaselineStore):
    def __init__(self) -> None:
        self._baselines: list[BaselineProfile] = []

    async def save(self, baseline: BaselineProfile) -> None:
        self._baselines.append(baseline)

    async def get(self, baseline_id: str) -> BaselineProfile | None:
        return next((b for b in self._baselines if b.id == baseline_id), None)

    async def get_latest(
        self, user_id: str, calibration_type: CalibrationType
    ) -> BaselineProfile | None:
        # Later saves win ties on created_at.
        latest: BaselineProfile | None = None
        for b in self._baselines:
            if b.user_id != user_id or b.calibration_type != calibration_type:
                continue
            if latest is None or b.created_at >= latest.created_at:
                latest = b
        return latest

    async def list_for_user(self, user_id: str) -> list[BaselineProfile]:
        return sorted(
            (b for b in self._baselines if b.user_id == user_id),
            key=lambda b: b.created_at,
        )


class InMemoryDecisionStore(DecisionStore):
    def __init__(self) -> None:
        self._decisions: list[AuthenticationDecision] = []

    async def save(self, decision: AuthenticationDecision) -> None:
        self._decisions.append(decision)

    async def history(
        self, user_id: str | None = None, *, limit: int | None = None
    ) -> list[AuthenticationDecision]:
        rows = [d for d in self._decisions if user_id is None or d.user_id == user_id]
        if limit is not None:
            rows = rows[-limit:] if limit > 0 else []
        return rows
