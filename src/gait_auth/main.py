"""Application entrypoint — database setup, simulated sessions and reports."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from gait_auth.config import Settings, get_settings
from gait_auth.logger import setup_logging
from gait_auth.models import CalibrationPreset, CalibrationType


async def _simulate(args: argparse.Namespace, settings: Settings) -> int:
    from gait_auth.calibration.guidance import analyze_failure
    from gait_auth.calibration.states import CalibrationCompleted
    from gait_auth.consumers.handlers import create_dispatcher
    from gait_auth.errors import GaitAuthError
    from gait_auth.sensors.simulated import SimulatedSensorSource, generate_walking_samples
    from gait_auth.session.coordinator import SessionCoordinator
    from gait_auth.session.states import AuthenticationSucceeded

    stores = {}
    if args.persist:
        from gait_auth.storage.database import init_db
        from gait_auth.storage.repository import (
            BaselineRepository,
            CalibrationRepository,
            DecisionRepository,
        )

        await init_db()
        stores = {
            "calibration_store": CalibrationRepository(),
            "baseline_store": BaselineRepository(),
            "decision_store": DecisionRepository(),
        }

    calibration_type = CalibrationType(args.type)
    preset = CalibrationPreset(args.preset)
    rate = settings.sampling_rate_hz
    target = preset.target_reading_count(rate)

    enrol = generate_walking_samples(
        target, sampling_rate_hz=rate, step_frequency_hz=args.step_hz, seed=args.seed,
    )
    probe = generate_walking_samples(
        settings.feature_window_size * settings.max_auth_attempts,
        sampling_rate_hz=rate,
        step_frequency_hz=args.impostor_hz or args.step_hz,
        seed=args.seed + 1,
    )
    # One source per session: enrolment walk, then the probe walk.
    sources = iter([
        SimulatedSensorSource(enrol, sampling_rate=rate),
        SimulatedSensorSource(probe, sampling_rate=rate, hold_open=False),
    ])
    coordinator = SessionCoordinator(
        lambda: next(sources),
        dispatcher=create_dispatcher(settings),
        settings=settings,
        **stores,
    )
    handle = await coordinator.start_calibration(args.user, calibration_type, preset=preset)
    try:
        await handle.result()
    except GaitAuthError as exc:
        info = analyze_failure(exc)
        print(f"Calibration failed: {info.user_message}. {info.suggested_action}.")
        return 1
    state = handle.state
    if not isinstance(state, CalibrationCompleted):
        print("Calibration was cancelled.")
        return 1
    print(
        f"Calibration completed: quality={state.quality:.3f} ({state.quality_tier.value}), "
        f"windows={state.baseline.window_count}"
    )

    auth = await coordinator.authenticate(args.user, calibration_type)
    result = await auth.wait()
    for d in auth.decisions:
        print(
            f"  attempt {d.attempt}: confidence={d.confidence:.3f} "
            f"authenticated={d.authenticated} reason={d.reason.value if d.reason else '-'}"
        )
    print(f"Authentication result: {type(result).__name__}")
    return 0 if isinstance(result, AuthenticationSucceeded) else 2


async def _stats(args: argparse.Namespace) -> dict:
    from gait_auth.reports.analysis import user_report
    from gait_auth.storage.database import init_db

    await init_db()
    return await user_report(args.user)


async def _export(args: argparse.Namespace) -> str:
    from gait_auth.reports.export import export_session_csv, export_session_json

    if args.format == "json":
        path = await export_session_json(args.session, args.output)
    else:
        path = await export_session_csv(args.session, args.output)
    return str(path)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="gait-auth",
        description="Gait-biometric calibration and authentication core.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── init-db ───────────────────────────────────────────────
    sub.add_parser("init-db", help="Create database tables.")

    # ── simulate ──────────────────────────────────────────────
    sim = sub.add_parser("simulate", help="Calibrate and authenticate against simulated walking.")
    sim.add_argument("--user", default="demo-user")
    sim.add_argument("--type", default=CalibrationType.WALKING.value,
                     choices=[t.value for t in CalibrationType])
    sim.add_argument("--preset", default=CalibrationPreset.FAST.value,
                     choices=[p.value for p in CalibrationPreset])
    sim.add_argument("--step-hz", type=float, default=2.0)
    sim.add_argument("--impostor-hz", type=float, default=None,
                     help="Authenticate with a different step frequency.")
    sim.add_argument("--seed", type=int, default=0)
    sim.add_argument("--persist", action="store_true", help="Store results in the database.")

    # ── stats ─────────────────────────────────────────────────
    stats = sub.add_parser("stats", help="Print a user's authentication and calibration summary.")
    stats.add_argument("--user", required=True)

    # ── export ────────────────────────────────────────────────
    export = sub.add_parser("export", help="Export a calibration session's samples.")
    export.add_argument("--session", required=True)
    export.add_argument("--output", required=True)
    export.add_argument("--format", choices=["csv", "json"], default="csv")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "init-db":
        from gait_auth.storage.database import init_db

        asyncio.run(init_db())
        print("Database tables created.")
    elif args.command == "simulate":
        sys.exit(asyncio.run(_simulate(args, settings)))
    elif args.command == "stats":
        print(json.dumps(asyncio.run(_stats(args)), indent=2, default=str))
    elif args.command == "export":
        print(asyncio.run(_export(args)))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
