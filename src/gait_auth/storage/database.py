"""SQLAlchemy async engine, session factory, and ORM table definitions."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from sqlalchemy import BigInteger, Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from gait_auth.config import get_settings


# ── Base ──────────────────────────────────────────────────────

class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


# ── ORM tables ────────────────────────────────────────────────

class CalibrationSessionRow(Base):
    """Persisted calibration session."""

    __tablename__ = "calibration_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    calibration_type: Mapped[str] = mapped_column(String(16), index=True)
    status: Mapped[str] = mapped_column(String(16))
    target_reading_count: Mapped[int] = mapped_column(Integer)
    reading_count: Mapped[int] = mapped_column(Integer, default=0)
    quality_score: Mapped[float] = mapped_column(Float, default=0.0)
    started_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    baseline_mean_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    baseline_spread_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")


class CalibrationSampleRow(Base):
    """One raw 6-axis sample collected during a calibration session."""

    __tablename__ = "calibration_samples"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), index=True)
    timestamp_us: Mapped[int] = mapped_column(BigInteger, index=True)
    ax: Mapped[float] = mapped_column(Float)
    ay: Mapped[float] = mapped_column(Float)
    az: Mapped[float] = mapped_column(Float)
    gx: Mapped[float] = mapped_column(Float)
    gy: Mapped[float] = mapped_column(Float)
    gz: Mapped[float] = mapped_column(Float)
    synchronized: Mapped[bool] = mapped_column(Boolean, default=True)


class BaselineRow(Base):
    """Persisted baseline profile (feature vectors as JSON arrays)."""

    __tablename__ = "baselines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    calibration_type: Mapped[str] = mapped_column(String(16), index=True)
    session_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    feature_names_json: Mapped[str] = mapped_column(Text)
    mean_json: Mapped[str] = mapped_column(Text)
    spread_json: Mapped[str] = mapped_column(Text)
    sample_count: Mapped[int] = mapped_column(Integer, default=0)
    window_count: Mapped[int] = mapped_column(Integer, default=0)
    quality_score: Mapped[float] = mapped_column(Float, default=0.0)
    window_size: Mapped[int] = mapped_column(Integer)
    sampling_rate_hz: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    # Save order; breaks created_at ties in favour of the later save.
    sequence: Mapped[int] = mapped_column(Integer, index=True, default=0)


class DecisionRow(Base):
    """Persisted authentication decision."""

    __tablename__ = "authentication_decisions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    baseline_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    features_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    distance: Mapped[float | None] = mapped_column(Float, nullable=True)
    confidence: Mapped[float] = mapped_column(Float)
    threshold: Mapped[float] = mapped_column(Float)
    authenticated: Mapped[bool] = mapped_column(Boolean)
    reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    attempt: Mapped[int] = mapped_column(Integer, default=1)
    timestamp: Mapped[datetime] = mapped_column(DateTime, index=True)


# ── Engine & session ──────────────────────────────────────────

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_database_url: str | None = None


def configure(database_url: str) -> None:
    """Point the module-level engine at *database_url* (before first use)."""
    global _engine, _session_factory, _database_url
    _database_url = database_url
    _engine = None
    _session_factory = None


def _get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = _database_url or get_settings().database_url
        _engine = create_async_engine(url, echo=False)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(_get_engine(), expire_on_commit=False)
    return _session_factory


async def init_db() -> None:
    """Create all tables (idempotent)."""
    engine = _get_engine()
    url = str(engine.url)
    if url.startswith("sqlite") and "///" in url:
        # URL format: sqlite+aiosqlite:///path/to/db
        db_path = url.split("///", 1)[-1]
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_db() -> None:
    """Close pooled connections and forget the engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
