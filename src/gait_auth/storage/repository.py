"""Data-access layer — thin async wrappers around SQLAlchemy queries."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gait_auth.models import (
    AuthenticationDecision,
    BaselineProfile,
    CalibrationSession,
    CalibrationStatus,
    CalibrationType,
    GaitFeatureVector,
    RejectionReason,
    SensorSample,
)
from gait_auth.storage.base import BaselineStore, CalibrationStore, DecisionStore
from gait_auth.storage.database import (
    BaselineRow,
    CalibrationSampleRow,
    CalibrationSessionRow,
    DecisionRow,
    get_session_factory,
)


def _dump_floats(values: Sequence[float] | None) -> str | None:
    return None if values is None else json.dumps(list(values))


def _load_floats(raw: str | None) -> tuple[float, ...] | None:
    return None if raw is None else tuple(float(v) for v in json.loads(raw))


class BaseRepository:
    """Shared base with session management for all repositories."""

    def __init__(self, session: AsyncSession | None = None) -> None:
        self._external_session = session

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        if self._external_session is not None:
            yield self._external_session
            return
        async with get_session_factory()() as session:
            yield session


class CalibrationRepository(BaseRepository, CalibrationStore):
    """CRUD operations for :class:`CalibrationSession` objects and their samples."""

    # ── Mapping ───────────────────────────────────────────────

    @staticmethod
    def _apply(row: CalibrationSessionRow, s: CalibrationSession) -> CalibrationSessionRow:
        row.user_id = s.user_id
        row.calibration_type = s.calibration_type.value
        row.status = s.status.value
        row.target_reading_count = s.target_reading_count
        row.reading_count = s.reading_count
        row.quality_score = s.quality_score
        row.started_at = s.started_at
        row.ended_at = s.ended_at
        row.failure_reason = s.failure_reason
        row.baseline_mean_json = _dump_floats(s.baseline_mean)
        row.baseline_spread_json = _dump_floats(s.baseline_spread)
        row.metadata_json = json.dumps(s.metadata)
        return row

    @staticmethod
    def _to_model(row: CalibrationSessionRow) -> CalibrationSession:
        return CalibrationSession(
            id=row.id,
            user_id=row.user_id,
            calibration_type=CalibrationType(row.calibration_type),
            status=CalibrationStatus(row.status),
            target_reading_count=row.target_reading_count,
            reading_count=row.reading_count,
            quality_score=row.quality_score,
            started_at=row.started_at,
            ended_at=row.ended_at,
            failure_reason=row.failure_reason,
            baseline_mean=_load_floats(row.baseline_mean_json),
            baseline_spread=_load_floats(row.baseline_spread_json),
            metadata=json.loads(row.metadata_json or "{}"),
        )

    # ── Sessions ──────────────────────────────────────────────

    async def create(self, session: CalibrationSession) -> None:
        async with self._session() as db:
            db.add(self._apply(CalibrationSessionRow(id=session.id), session))
            await db.commit()

    async def update(self, session: CalibrationSession) -> None:
        async with self._session() as db:
            row = await db.get(CalibrationSessionRow, session.id)
            if row is None:
                raise KeyError(session.id)
            self._apply(row, session)
            await db.commit()

    async def get(self, session_id: str) -> CalibrationSession | None:
        async with self._session() as db:
            row = await db.get(CalibrationSessionRow, session_id)
            return self._to_model(row) if row else None

    async def list_sessions(
        self,
        user_id: str | None = None,
        *,
        calibration_type: CalibrationType | None = None,
        status: CalibrationStatus | None = None,
    ) -> list[CalibrationSession]:
        stmt = select(CalibrationSessionRow).order_by(CalibrationSessionRow.started_at)
        if user_id is not None:
            stmt = stmt.where(CalibrationSessionRow.user_id == user_id)
        if calibration_type is not None:
            stmt = stmt.where(CalibrationSessionRow.calibration_type == calibration_type.value)
        if status is not None:
            stmt = stmt.where(CalibrationSessionRow.status == status.value)
        async with self._session() as db:
            result = await db.execute(stmt)
            return [self._to_model(r) for r in result.scalars().all()]

    async def delete(self, session_id: str) -> bool:
        async with self._session() as db:
            await db.execute(
                delete(CalibrationSampleRow).where(CalibrationSampleRow.session_id == session_id)
            )
            result = await db.execute(
                delete(CalibrationSessionRow).where(CalibrationSessionRow.id == session_id)
            )
            await db.commit()
            return (result.rowcount or 0) > 0

    # ── Samples ───────────────────────────────────────────────

    async def save_samples(self, session_id: str, samples: Sequence[SensorSample]) -> int:
        rows = [
            CalibrationSampleRow(
                session_id=session_id,
                timestamp_us=s.timestamp_us,
                ax=s.ax, ay=s.ay, az=s.az,
                gx=s.gx, gy=s.gy, gz=s.gz,
                synchronized=s.synchronized,
            )
            for s in samples
        ]
        async with self._session() as db:
            db.add_all(rows)
            await db.commit()
        return len(rows)

    async def get_samples(self, session_id: str) -> list[SensorSample]:
        stmt = (
            select(CalibrationSampleRow)
            .where(CalibrationSampleRow.session_id == session_id)
            .order_by(CalibrationSampleRow.id)
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return [
                SensorSample(
                    timestamp_us=r.timestamp_us,
                    ax=r.ax, ay=r.ay, az=r.az,
                    gx=r.gx, gy=r.gy, gz=r.gz,
                    synchronized=r.synchronized,
                )
                for r in result.scalars().all()
            ]

    async def count_samples(self, session_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(CalibrationSampleRow)
            .where(CalibrationSampleRow.session_id == session_id)
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return result.scalar() or 0

    async def delete_samples(self, session_id: str) -> int:
        async with self._session() as db:
            result = await db.execute(
                delete(CalibrationSampleRow).where(CalibrationSampleRow.session_id == session_id)
            )
            await db.commit()
            return result.rowcount or 0


class BaselineRepository(BaseRepository, BaselineStore):
    """Storage for :class:`BaselineProfile` objects."""

    @staticmethod
    def _to_model(row: BaselineRow) -> BaselineProfile:
        return BaselineProfile(
            id=row.id,
            user_id=row.user_id,
            calibration_type=CalibrationType(row.calibration_type),
            session_id=row.session_id,
            feature_names=tuple(json.loads(row.feature_names_json)),
            mean=_load_floats(row.mean_json) or (),
            spread=_load_floats(row.spread_json) or (),
            sample_count=row.sample_count,
            window_count=row.window_count,
            quality_score=row.quality_score,
            window_size=row.window_size,
            sampling_rate_hz=row.sampling_rate_hz,
            created_at=row.created_at,
        )

    async def save(self, baseline: BaselineProfile) -> None:
        row = BaselineRow(
            id=baseline.id,
            user_id=baseline.user_id,
            calibration_type=baseline.calibration_type.value,
            session_id=baseline.session_id,
            feature_names_json=json.dumps(list(baseline.feature_names)),
            mean_json=_dump_floats(baseline.mean),
            spread_json=_dump_floats(baseline.spread),
            sample_count=baseline.sample_count,
            window_count=baseline.window_count,
            quality_score=baseline.quality_score,
            window_size=baseline.window_size,
            sampling_rate_hz=baseline.sampling_rate_hz,
            created_at=baseline.created_at,
        )
        async with self._session() as db:
            result = await db.execute(select(func.max(BaselineRow.sequence)))
            row.sequence = (result.scalar() or 0) + 1
            db.add(row)
            await db.commit()

    async def get(self, baseline_id: str) -> BaselineProfile | None:
        async with self._session() as db:
            row = await db.get(BaselineRow, baseline_id)
            return self._to_model(row) if row else None

    async def get_latest(
        self, user_id: str, calibration_type: CalibrationType
    ) -> BaselineProfile | None:
        stmt = (
            select(BaselineRow)
            .where(
                BaselineRow.user_id == user_id,
                BaselineRow.calibration_type == calibration_type.value,
            )
            .order_by(BaselineRow.created_at.desc(), BaselineRow.sequence.desc())
            .limit(1)
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            row = result.scalars().first()
            return self._to_model(row) if row else None

    async def list_for_user(self, user_id: str) -> list[BaselineProfile]:
        stmt = (
            select(BaselineRow)
            .where(BaselineRow.user_id == user_id)
            .order_by(BaselineRow.created_at, BaselineRow.sequence)
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return [self._to_model(r) for r in result.scalars().all()]


class DecisionRepository(BaseRepository, DecisionStore):
    """Append-only storage for :class:`AuthenticationDecision` objects."""

    @staticmethod
    def _to_model(row: DecisionRow) -> AuthenticationDecision:
        features = (
            GaitFeatureVector.model_validate_json(row.features_json)
            if row.features_json
            else None
        )
        return AuthenticationDecision(
            id=row.id,
            user_id=row.user_id,
            baseline_id=row.baseline_id,
            features=features,
            distance=row.distance,
            confidence=row.confidence,
            threshold=row.threshold,
            authenticated=row.authenticated,
            reason=RejectionReason(row.reason) if row.reason else None,
            attempt=row.attempt,
            timestamp=row.timestamp,
        )

    async def save(self, decision: AuthenticationDecision) -> None:
        row = DecisionRow(
            id=decision.id,
            user_id=decision.user_id,
            baseline_id=decision.baseline_id,
            features_json=decision.features.model_dump_json() if decision.features else None,
            distance=decision.distance,
            confidence=decision.confidence,
            threshold=decision.threshold,
            authenticated=decision.authenticated,
            reason=decision.reason.value if decision.reason else None,
            attempt=decision.attempt,
            timestamp=decision.timestamp,
        )
        async with self._session() as db:
            db.add(row)
            await db.commit()

    async def history(
        self, user_id: str | None = None, *, limit: int | None = None
    ) -> list[AuthenticationDecision]:
        stmt = select(DecisionRow).order_by(DecisionRow.timestamp.desc())
        if user_id is not None:
            stmt = stmt.where(DecisionRow.user_id == user_id)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as db:
            result = await db.execute(stmt)
            rows = [self._to_model(r) for r in result.scalars().all()]
        rows.reverse()
        return rows
