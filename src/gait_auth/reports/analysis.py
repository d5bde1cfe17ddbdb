"""Analysis helpers — pandas-based summaries of decisions and calibrations."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pandas as pd

from gait_auth.models import AuthenticationDecision, CalibrationSession
from gait_auth.storage.base import CalibrationStore, DecisionStore
from gait_auth.storage.repository import CalibrationRepository, DecisionRepository


def decisions_to_dataframe(decisions: Sequence[AuthenticationDecision]) -> pd.DataFrame:
    """Tabulate decisions, indexed by ``timestamp``.

    Columns: ``user_id``, ``authenticated``, ``confidence``, ``distance``,
    ``threshold``, ``reason``, ``attempt``, ``category``.
    """
    records = [
        {
            "timestamp": d.timestamp,
            "user_id": d.user_id,
            "authenticated": d.authenticated,
            "confidence": d.confidence,
            "distance": d.distance,
            "threshold": d.threshold,
            "reason": d.reason.value if d.reason else None,
            "attempt": d.attempt,
            "category": d.confidence_category,
        }
        for d in decisions
    ]
    df = pd.DataFrame(records)
    if not df.empty:
        df["timestamp"] = pd.to_datetime(df["timestamp"])
        df = df.set_index("timestamp").sort_index()
    return df


def sessions_to_dataframe(sessions: Sequence[CalibrationSession]) -> pd.DataFrame:
    records = [
        {
            "session_id": s.id,
            "user_id": s.user_id,
            "calibration_type": s.calibration_type.value,
            "status": s.status.value,
            "reading_count": s.reading_count,
            "target_reading_count": s.target_reading_count,
            "quality_score": s.quality_score,
            "quality": s.quality.value,
            "failure_reason": s.failure_reason,
            "started_at": s.started_at,
            "ended_at": s.ended_at,
        }
        for s in sessions
    ]
    return pd.DataFrame(records)


def authentication_summary(df: pd.DataFrame) -> dict[str, Any]:
    """Success rate, confidence statistics and rejection breakdown.

    Expects the frame produced by :func:`decisions_to_dataframe`.
    """
    if df.empty or "confidence" not in df.columns:
        return {"count": 0}

    rejected = df[~df["authenticated"]]
    return {
        "count": int(len(df)),
        "success_rate": round(float(df["authenticated"].mean()), 4),
        "confidence_mean": round(float(df["confidence"].mean()), 4),
        "confidence_std": round(float(df["confidence"].std()), 4) if len(df) > 1 else 0.0,
        "confidence_min": float(df["confidence"].min()),
        "confidence_max": float(df["confidence"].max()),
        "rejections": {str(k): int(v) for k, v in rejected["reason"].value_counts().items()},
        "categories": {str(k): int(v) for k, v in df["category"].value_counts().items()},
    }


def calibration_summary(df: pd.DataFrame) -> dict[str, Any]:
    """Outcome counts and mean quality of completed sessions."""
    if df.empty or "status" not in df.columns:
        return {"count": 0}

    completed = df[df["status"] == "completed"]
    return {
        "count": int(len(df)),
        "statuses": {str(k): int(v) for k, v in df["status"].value_counts().items()},
        "completed_quality_mean": (
            round(float(completed["quality_score"].mean()), 4) if not completed.empty else None
        ),
        "failure_reasons": {
            str(k): int(v) for k, v in df["failure_reason"].dropna().value_counts().items()
        },
    }


async def user_report(
    user_id: str,
    *,
    decision_store: DecisionStore | None = None,
    calibration_store: CalibrationStore | None = None,
) -> dict[str, Any]:
    """Combined authentication and calibration summary for one user."""
    decision_store = decision_store or DecisionRepository()
    calibration_store = calibration_store or CalibrationRepository()
    decisions = await decision_store.history(user_id)
    sessions = await calibration_store.list_sessions(user_id)
    return {
        "user_id": user_id,
        "authentication": authentication_summary(decisions_to_dataframe(decisions)),
        "calibration": calibration_summary(sessions_to_dataframe(sessions)),
    }
