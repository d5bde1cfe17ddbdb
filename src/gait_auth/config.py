"""Centralised application settings loaded from environment / .env file."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def _resolve_db_dir() -> Path:
    """Return the directory that holds the SQLite file (created lazily by ``init_db``)."""
    return _PROJECT_ROOT / "data"


_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{_resolve_db_dir() / 'gait_auth.db'}"


class Settings(BaseSettings):
    """All runtime configuration for the gait authentication core.

    Values are read from environment variables first, then from a *.env* file
    located at the project root.  Every variable lives in the flat
    ``GAIT_AUTH_`` namespace (stripped automatically by *pydantic-settings*).

    The numeric knobs below (epsilon, acceptance fraction, cadence bounds,
    quality weights) are calibration parameters: they should be tuned
    against real recordings rather than treated as fixed contracts.
    """

    model_config = SettingsConfigDict(
        env_prefix="GAIT_AUTH_",
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Sensors ───────────────────────────────────────────────
    sampling_rate_hz: float = 50.0
    sync_tolerance_ms: float = 50.0
    window_capacity: int = 1000
    channel_maxsize: int = 2000

    # ── Feature extraction ────────────────────────────────────
    feature_window_size: int = 100  # samples per analysis window (2 s @ 50 Hz)
    min_feature_samples: int = 20
    cadence_min_hz: float = 0.5
    cadence_max_hz: float = 3.5
    min_autocorr_peak: float = 0.3

    # ── Calibration ───────────────────────────────────────────
    calibration_target_readings: int = 500
    calibration_min_acceptance: float = Field(0.6, ge=0.0, le=1.0)
    calibration_max_duration_seconds: float = 120.0
    calibration_sample_batch_size: int = 100

    # ── Decision policy ───────────────────────────────────────
    decision_threshold: float = Field(0.7, ge=0.0, le=1.0)
    decision_epsilon: float = 1e-3
    max_auth_attempts: int = 3
    auth_max_duration_seconds: float = 60.0

    # ── Coordinator ───────────────────────────────────────────
    poll_interval_seconds: float = 0.05

    # ── Database ──────────────────────────────────────────────
    database_url: str = _DEFAULT_DB_URL

    # ── Decision consumers ────────────────────────────────────
    webhook_url: str = ""
    webhook_timeout_seconds: float = 10.0

    # ── Logging ───────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @model_validator(mode="after")
    def _check_feature_window(self) -> Settings:
        # A window can never hold more synchronized samples than its size.
        if self.min_feature_samples > self.feature_window_size:
            raise ValueError(
                f"min_feature_samples ({self.min_feature_samples}) must not exceed "
                f"feature_window_size ({self.feature_window_size})"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return a cached :class:`Settings` singleton."""
    return Settings()
