"""Export of calibration samples for offline analysis."""

from __future__ import annotations

import csv
import json
from pathlib import Path

import structlog

from gait_auth.storage.base import CalibrationStore
from gait_auth.storage.repository import CalibrationRepository

logger = structlog.get_logger(__name__)

_COLUMNS = ["timestamp_us", "ax", "ay", "az", "gx", "gy", "gz", "synchronized"]


async def export_session_csv(
    session_id: str,
    output_path: str | Path,
    *,
    store: CalibrationStore | None = None,
) -> Path:
    """Write a calibration session's raw samples to CSV.

    Returns the resolved output path.
    """
    store = store or CalibrationRepository()
    samples = await store.get_samples(session_id)

    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    with output.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(_COLUMNS)
        for s in samples:
            writer.writerow([
                s.timestamp_us, s.ax, s.ay, s.az, s.gx, s.gy, s.gz, int(s.synchronized),
            ])

    logger.info("export.csv_written", path=str(output), rows=len(samples))
    return output


async def export_session_json(
    session_id: str,
    output_path: str | Path,
    *,
    store: CalibrationStore | None = None,
) -> Path:
    """Write the session record and its samples to a JSON document."""
    store = store or CalibrationRepository()
    session = await store.get(session_id)
    if session is None:
        raise KeyError(session_id)
    samples = await store.get_samples(session_id)

    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    document = {
        "session": session.model_dump(mode="json"),
        "samples": [s.model_dump(mode="json") for s in samples],
    }
    with output.open("w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)

    logger.info("export.json_written", path=str(output), rows=len(samples))
    return output
