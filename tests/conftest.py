"""Shared pytest fixtures."""

from __future__ import annotations

import math

import pytest
import pytest_asyncio

from gait_auth.config import Settings
from gait_auth.models import BaselineProfile, GaitFeatureVector, SensorSample
from gait_auth.features.extractor import FEATURE_NAMES
from gait_auth.sensors.simulated import generate_walking_samples
from gait_auth.storage import database


def sine_samples(
    count: int,
    *,
    frequency_hz: float = 2.0,
    amplitude: float = 2.0,
    rate_hz: float = 50.0,
) -> list[SensorSample]:
    """Pure vertical sinusoid on top of gravity; no gyroscope motion."""
    return [
        SensorSample(
            timestamp_us=int(round(i * 1_000_000 / rate_hz)),
            ax=0.0,
            ay=0.0,
            az=9.81 + amplitude * math.sin(2 * math.pi * frequency_hz * i / rate_hz),
            gx=0.0,
            gy=0.0,
            gz=0.0,
        )
        for i in range(count)
    ]


def flat_samples(count: int, *, rate_hz: float = 50.0) -> list[SensorSample]:
    """Device lying still."""
    return [
        SensorSample(
            timestamp_us=int(round(i * 1_000_000 / rate_hz)),
            ax=0.0, ay=0.0, az=9.81, gx=0.0, gy=0.0, gz=0.0,
        )
        for i in range(count)
    ]


@pytest.fixture
def make_sine():
    return sine_samples


@pytest.fixture
def make_flat():
    return flat_samples


@pytest.fixture
def settings() -> Settings:
    return Settings(
        sampling_rate_hz=50.0,
        poll_interval_seconds=0.01,
        calibration_target_readings=500,
        calibration_max_duration_seconds=10.0,
        auth_max_duration_seconds=10.0,
        webhook_url="",
    )


@pytest.fixture
def walking_samples() -> list[SensorSample]:
    """500 samples at 50 Hz, 2 Hz steps, every 20th sample unsynchronized."""
    return generate_walking_samples(500, sync_ratio=0.95, seed=7)


@pytest.fixture
def clean_walk() -> list[SensorSample]:
    """Noise-free, fully synchronized walk; every 100-sample window is identical."""
    return generate_walking_samples(500, noise=0.0)


@pytest.fixture
def baseline() -> BaselineProfile:
    n = len(FEATURE_NAMES)
    return BaselineProfile(
        user_id="U001",
        feature_names=FEATURE_NAMES,
        mean=tuple(1.0 for _ in range(n)),
        spread=tuple(0.5 for _ in range(n)),
        window_size=100,
        sampling_rate_hz=50.0,
        quality_score=0.9,
    )


@pytest.fixture
def live_vector(baseline: BaselineProfile) -> GaitFeatureVector:
    return baseline.mean_vector()


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh SQLite database file per test."""
    database.configure(f"sqlite+aiosqlite:///{tmp_path / 'gait_auth_test.db'}")
    await database.init_db()
    yield
    await database.dispose_db()
