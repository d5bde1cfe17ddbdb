"""Tests for the SQL repositories and the in-memory stores."""

from datetime import timedelta

import pytest

from gait_auth.models import (
    AuthenticationDecision,
    BaselineProfile,
    CalibrationSession,
    CalibrationStatus,
    CalibrationType,
    RejectionReason,
)
from gait_auth.storage.memory import (
    InMemoryBaselineStore,
    InMemoryCalibrationStore,
    InMemoryDecisionStore,
)
from gait_auth.storage.repository import (
    BaselineRepository,
    CalibrationRepository,
    DecisionRepository,
)


def _decision(live_vector, **overrides) -> AuthenticationDecision:
    fields = dict(
        user_id="U001",
        features=live_vector,
        distance=0.123456789012345,
        confidence=1 / 1.123456789012345,
        threshold=0.7,
        authenticated=True,
    )
    fields.update(overrides)
    return AuthenticationDecision(**fields)


# ── SQL repositories ──────────────────────────────────────────


class TestCalibrationRepository:
    @pytest.mark.asyncio
    async def test_session_round_trip(self, db):
        repo = CalibrationRepository()
        session = CalibrationSession(user_id="U001", target_reading_count=500, metadata={"device": "pixel"})
        await repo.create(session)

        done = session.model_copy(update={
            "status": CalibrationStatus.COMPLETED,
            "reading_count": 500,
            "quality_score": 0.9875,
            "ended_at": session.started_at + timedelta(seconds=10),
            "baseline_mean": (0.1, 2.000000000000001, 1e-17),
            "baseline_spread": (0.0, 0.5, 3.3),
        })
        await repo.update(done)

        loaded = await repo.get(session.id)
        assert loaded == done

    @pytest.mark.asyncio
    async def test_update_unknown_session(self, db):
        with pytest.raises(KeyError):
            await CalibrationRepository().update(CalibrationSession(user_id="U001"))

    @pytest.mark.asyncio
    async def test_list_filters(self, db):
        repo = CalibrationRepository()
        a = CalibrationSession(user_id="U001")
        b = CalibrationSession(user_id="U001", calibration_type=CalibrationType.STAIRS)
        c = CalibrationSession(user_id="U002", status=CalibrationStatus.FAILED)
        for s in (a, b, c):
            await repo.create(s)

        assert {s.id for s in await repo.list_sessions("U001")} == {a.id, b.id}
        stairs = await repo.list_sessions("U001", calibration_type=CalibrationType.STAIRS)
        assert [s.id for s in stairs] == [b.id]
        failed = await repo.list_sessions(status=CalibrationStatus.FAILED)
        assert [s.id for s in failed] == [c.id]

    @pytest.mark.asyncio
    async def test_samples_round_trip(self, db, walking_samples):
        repo = CalibrationRepository()
        session = CalibrationSession(user_id="U001")
        await repo.create(session)

        assert await repo.save_samples(session.id, walking_samples[:60]) == 60
        await repo.save_samples(session.id, walking_samples[60:100])
        assert await repo.count_samples(session.id) == 100
        assert await repo.get_samples(session.id) == walking_samples[:100]

        assert await repo.delete_samples(session.id) == 100
        assert await repo.get_samples(session.id) == []
        assert await repo.get(session.id) is not None

    @pytest.mark.asyncio
    async def test_delete_session(self, db, walking_samples):
        repo = CalibrationRepository()
        session = CalibrationSession(user_id="U001")
        await repo.create(session)
        await repo.save_samples(session.id, walking_samples[:10])

        assert await repo.delete(session.id) is True
        assert await repo.get(session.id) is None
        assert await repo.count_samples(session.id) == 0
        assert await repo.delete(session.id) is False


class TestBaselineRepository:
    @pytest.mark.asyncio
    async def test_round_trip(self, db, baseline):
        repo = BaselineRepository()
        await repo.save(baseline)
        assert await repo.get(baseline.id) == baseline

    @pytest.mark.asyncio
    async def test_latest_per_user_and_type(self, db, baseline):
        repo = BaselineRepository()
        newer = baseline.model_copy(update={
            "id": "newer",
            "created_at": baseline.created_at + timedelta(minutes=1),
        })
        stairs = baseline.model_copy(update={
            "id": "stairs",
            "calibration_type": CalibrationType.STAIRS,
            "created_at": baseline.created_at + timedelta(minutes=2),
        })
        for b in (baseline, newer, stairs):
            await repo.save(b)

        latest = await repo.get_latest("U001", CalibrationType.WALKING)
        assert latest is not None and latest.id == "newer"
        assert (await repo.get_latest("U001", CalibrationType.STAIRS)).id == "stairs"
        assert await repo.get_latest("U002", CalibrationType.WALKING) is None
        assert [b.id for b in await repo.list_for_user("U001")] == [baseline.id, "newer", "stairs"]

    @pytest.mark.asyncio
    async def test_later_save_wins_created_at_tie(self, db, baseline):
        repo = BaselineRepository()
        for baseline_id in ("zzz", "aaa", "mmm"):
            await repo.save(baseline.model_copy(update={"id": baseline_id}))
            latest = await repo.get_latest("U001", CalibrationType.WALKING)
            assert latest.id == baseline_id

        # An earlier timestamp still loses, however late it is saved.
        await repo.save(baseline.model_copy(update={
            "id": "backdated",
            "created_at": baseline.created_at - timedelta(minutes=1),
        }))
        assert (await repo.get_latest("U001", CalibrationType.WALKING)).id == "mmm"
        assert [b.id for b in await repo.list_for_user("U001")] == ["backdated", "zzz", "aaa", "mmm"]


class TestDecisionRepository:
    @pytest.mark.asyncio
    async def test_round_trip(self, db, live_vector):
        repo = DecisionRepository()
        decision = _decision(live_vector)
        await repo.save(decision)

        [loaded] = await repo.history("U001")
        assert loaded == decision
        assert loaded.features == live_vector

    @pytest.mark.asyncio
    async def test_rejection_without_features(self, db):
        repo = DecisionRepository()
        decision = AuthenticationDecision(
            user_id="U001", reason=RejectionReason.NO_BASELINE, authenticated=False,
        )
        await repo.save(decision)
        [loaded] = await repo.history()
        assert loaded.features is None
        assert loaded.reason is RejectionReason.NO_BASELINE

    @pytest.mark.asyncio
    async def test_history_is_chronological_and_limited(self, db, live_vector):
        repo = DecisionRepository()
        first = _decision(live_vector, attempt=1)
        decisions = [
            first.model_copy(update={"id": f"d{i}", "attempt": i, "timestamp": first.timestamp + timedelta(seconds=i)})
            for i in range(1, 6)
        ]
        for d in reversed(decisions):
            await repo.save(d)
        await repo.save(_decision(live_vector, user_id="U002"))

        assert [d.attempt for d in await repo.history("U001")] == [1, 2, 3, 4, 5]
        assert [d.attempt for d in await repo.history("U001", limit=2)] == [4, 5]
        assert len(await repo.history()) == 6


# ── In-memory stores ──────────────────────────────────────────


class TestInMemoryStores:
    @pytest.mark.asyncio
    async def test_calibration_store(self, walking_samples):
        store = InMemoryCalibrationStore()
        session = CalibrationSession(user_id="U001")
        await store.create(session)
        with pytest.raises(ValueError):
            await store.create(session)

        await store.save_samples(session.id, walking_samples[:5])
        assert await store.get_samples(session.id) == walking_samples[:5]
        assert await store.delete_samples(session.id) == 5
        assert await store.delete(session.id) is True
        with pytest.raises(KeyError):
            await store.update(session)

    @pytest.mark.asyncio
    async def test_baseline_latest_wins_ties(self, baseline):
        store = InMemoryBaselineStore()
        twin = baseline.model_copy(update={"id": "twin"})
        await store.save(baseline)
        await store.save(twin)
        assert (await store.get_latest("U001", CalibrationType.WALKING)).id == "twin"
        assert await store.get("twin") is twin

    @pytest.mark.asyncio
    async def test_decision_history_limit(self, live_vector):
        store = InMemoryDecisionStore()
        for i in range(1, 4):
            await store.save(_decision(live_vector, attempt=i))
        assert [d.attempt for d in await store.history("U001", limit=2)] == [2, 3]
        assert await store.history("U001", limit=0) == []
        assert await store.history("U999") == []


def test_baseline_dimension_check():
    with pytest.raises(ValueError):
        BaselineProfile(
            user_id="U001",
            feature_names=("a", "b"),
            mean=(1.0,),
            spread=(0.0, 0.0),
            window_size=100,
            sampling_rate_hz=50.0,
        )
