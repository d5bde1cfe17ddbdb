"""Session coordinator — owns calibration and authentication sessions.

Each session runs as one asyncio task that pulls samples from its own
:class:`SampleChannel`, so a session's samples are processed strictly in
order by a single consumer.  The caller interacts through a handle that
exposes the current state, the state history, cancellation and ``wait()``.

Flow (calibration)
------------------
1. Reject a second collecting session for the same (user, type)
2. Verify sensor availability and set the sampling rate
3. Persist the session, start the source
4. Feed samples to :class:`CalibrationEngine`, persisting them in batches
5. On completion store the baseline; on cancel drop the stored samples
6. Stop the source and publish the terminal state

Flow (authentication)
---------------------
1. Load the newest baseline (terminal ``no-baseline`` failure if absent)
2. Evaluate one decision per new full window of synchronized samples
3. Succeed, retry, or lock out after ``max_auth_attempts`` failures
4. Persist and dispatch every decision
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

import structlog

from gait_auth.calibration.engine import CalibrationEngine
from gait_auth.calibration.states import (
    CalibrationCancelled,
    CalibrationCompleted,
    CalibrationFailed,
    CalibrationFailureReason,
    CalibrationState,
)
from gait_auth.config import Settings, get_settings
from gait_auth.consumers.handlers import DecisionDispatcher
from gait_auth.decision.engine import decide, rejected
from gait_auth.errors import (
    ConcurrentSessionError,
    FeatureMismatchError,
    InsufficientDataError,
    InsufficientSignalError,
    SensorError,
)
from gait_auth.features.extractor import FeatureConfig, FeatureExtractor
from gait_auth.models import (
    AuthenticationDecision,
    BaselineProfile,
    CalibrationPreset,
    CalibrationSession,
    CalibrationType,
    RejectionReason,
)
from gait_auth.sensors.base import BaseSensorSource, SensorGroup
from gait_auth.sensors.window import SensorWindow
from gait_auth.session.states import (
    Authenticating,
    AuthenticationCancelled,
    AuthenticationExpired,
    AuthenticationFailed,
    AuthenticationLockedOut,
    AuthenticationRetry,
    AuthenticationState,
    AuthenticationSucceeded,
)
from gait_auth.storage.base import BaselineStore, CalibrationStore, DecisionStore
from gait_auth.storage.memory import (
    InMemoryBaselineStore,
    InMemoryCalibrationStore,
    InMemoryDecisionStore,
)
from gait_auth.streaming.channel import ChannelClosed, SampleChannel

logger = structlog.get_logger(__name__)

S = TypeVar("S")
Listener = Callable[[S], Awaitable[None]]


# ── Handles ───────────────────────────────────────────────────


class SessionHandle(Generic[S]):
    """Observable view of one running session."""

    def __init__(self, initial: S) -> None:
        self._state: S = initial
        self._history: list[S] = [initial]
        self._listeners: list[Listener[S]] = []
        self._cancel_requested = False
        self._done = asyncio.Event()
        self._error: BaseException | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> S:
        return self._state

    @property
    def history(self) -> list[S]:
        return list(self._history)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def add_listener(self, listener: Listener[S]) -> None:
        self._listeners.append(listener)

    def cancel(self) -> None:
        """Request cancellation.  Idempotent; a no-op once the session ended."""
        if self.done:
            return
        self._cancel_requested = True

    async def wait(self, timeout: float | None = None) -> S:
        """Block until the session reaches a terminal state and return it."""
        if timeout is None:
            await self._done.wait()
        else:
            await asyncio.wait_for(self._done.wait(), timeout=timeout)
        if self._error is not None:
            raise self._error
        return self._state

    async def _emit(self, state: S) -> None:
        self._state = state
        self._history.append(state)
        for listener in self._listeners:
            try:
                await listener(state)
            except Exception:
                logger.exception("session.listener_error", state=type(state).__name__)
        if getattr(state, "terminal", False):
            self._done.set()

    def _crash(self, exc: BaseException) -> None:
        self._error = exc
        self._done.set()


class CalibrationHandle(SessionHandle[CalibrationState]):
    def __init__(self, engine: CalibrationEngine) -> None:
        super().__init__(engine.state)
        self._engine = engine

    @property
    def session(self) -> CalibrationSession:
        return self._engine.session

    @property
    def session_id(self) -> str:
        return self._engine.session.id

    @property
    def progress(self) -> float:
        return self._engine.session.progress

    async def result(self, timeout: float | None = None) -> BaselineProfile | None:
        """Wait for the session and return its baseline.

        Returns ``None`` when the session was cancelled.  A failed session
        raises the matching :class:`GaitAuthError` subclass, e.g.
        :class:`CalibrationTimeoutError` once the duration budget ran out.
        """
        state = await self.wait(timeout)
        if isinstance(state, CalibrationCompleted):
            return state.baseline
        if isinstance(state, CalibrationFailed):
            raise state.to_exception()
        return None


class AuthenticationHandle(SessionHandle[AuthenticationState]):
    def __init__(self, user_id: str, calibration_type: CalibrationType, threshold: float) -> None:
        super().__init__(Authenticating(attempt=1))
        self.user_id = user_id
        self.calibration_type = calibration_type
        self.threshold = threshold
        self.decisions: list[AuthenticationDecision] = []


# ── Coordinator ───────────────────────────────────────────────


class SessionCoordinator:
    """Run calibration and authentication sessions against a sensor source.

    Parameters
    ----------
    source : BaseSensorSource | Callable[[], BaseSensorSource]
        The device's sensor source, or a factory producing one per session.
    calibration_store, baseline_store, decision_store
        Persistence collaborators (in-memory by default).
    dispatcher : DecisionDispatcher | None
        Receives every authentication decision.
    settings : Settings | None
        Defaults to :func:`get_settings`.
    clock : Callable[[], float]
        Monotonic seconds source for timeouts.
    """

    def __init__(
        self,
        source: BaseSensorSource | Callable[[], BaseSensorSource],
        *,
        calibration_store: CalibrationStore | None = None,
        baseline_store: BaselineStore | None = None,
        decision_store: DecisionStore | None = None,
        dispatcher: DecisionDispatcher | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self.calibration_store = calibration_store or InMemoryCalibrationStore()
        self.baseline_store = baseline_store or InMemoryBaselineStore()
        self.decision_store = decision_store or InMemoryDecisionStore()
        self._dispatcher = dispatcher or DecisionDispatcher()
        self._settings = settings or get_settings()
        self._clock = clock
        self._active_calibrations: dict[tuple[str, CalibrationType], CalibrationHandle] = {}
        self._handles: set[SessionHandle] = set()
        self._sources_in_use: set[BaseSensorSource] = set()

    # ── Helpers ───────────────────────────────────────────────

    def _acquire_source(self) -> BaseSensorSource:
        """Return a source reserved for one session.

        A source instance streams into a single channel, so it serves at
        most one running session.  Raises :class:`SensorError` when it is
        already reserved.
        """
        source = self._source if isinstance(self._source, BaseSensorSource) else self._source()
        if source in self._sources_in_use:
            raise SensorError("sensor source is busy with another session")
        self._sources_in_use.add(source)
        return source

    def _release_source(self, source: BaseSensorSource) -> None:
        self._sources_in_use.discard(source)

    async def _prepare_source(self, source: BaseSensorSource) -> None:
        for group in SensorGroup:
            if not await source.is_available(group):
                raise SensorError(f"{group.value} not available")
        await source.set_sampling_rate(self._settings.sampling_rate_hz)

    def _feature_config(self, baseline: BaselineProfile | None = None) -> FeatureConfig:
        config = FeatureConfig.from_settings(self._settings)
        if baseline is not None:
            config = dataclasses.replace(
                config,
                window_size=baseline.window_size,
                sampling_rate_hz=baseline.sampling_rate_hz,
            )
        return config

    def _track(self, handle: SessionHandle, task: asyncio.Task[None]) -> None:
        handle._task = task
        self._handles.add(handle)
        task.add_done_callback(lambda _t: self._handles.discard(handle))

    def active_calibration(
        self, user_id: str, calibration_type: CalibrationType = CalibrationType.WALKING
    ) -> CalibrationHandle | None:
        handle = self._active_calibrations.get((user_id, calibration_type))
        return handle if handle is not None and not handle.done else None

    async def latest_baseline(
        self, user_id: str, calibration_type: CalibrationType = CalibrationType.WALKING
    ) -> BaselineProfile | None:
        return await self.baseline_store.get_latest(user_id, calibration_type)

    async def decision_history(
        self, user_id: str, *, limit: int | None = None
    ) -> list[AuthenticationDecision]:
        return await self.decision_store.history(user_id, limit=limit)

    async def shutdown(self) -> None:
        """Cancel every running session and wait for it to wind down."""
        handles = list(self._handles)
        for handle in handles:
            handle.cancel()
        tasks = [h._task for h in handles if h._task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Calibration ───────────────────────────────────────────

    async def start_calibration(
        self,
        user_id: str,
        calibration_type: CalibrationType = CalibrationType.WALKING,
        *,
        target_reading_count: int | None = None,
        preset: CalibrationPreset | None = None,
    ) -> CalibrationHandle:
        """Begin a calibration session and return its handle.

        Raises
        ------
        ConcurrentSessionError
            A session for the same (user, type) is still collecting.
        SensorError
            Required sensors are unavailable, the rate is unsupported, or
            the source is serving another session.
        """
        key = (user_id, calibration_type)
        if self.active_calibration(user_id, calibration_type) is not None:
            raise ConcurrentSessionError(
                f"calibration already in progress for {user_id}/{calibration_type.value}"
            )

        if target_reading_count is None and preset is not None:
            target_reading_count = preset.target_reading_count(self._settings.sampling_rate_hz)
        engine = CalibrationEngine.from_settings(
            user_id,
            calibration_type,
            self._settings,
            target_reading_count=target_reading_count,
            clock=self._clock,
        )
        handle = CalibrationHandle(engine)
        # Reserve the slot before the first await.
        self._active_calibrations[key] = handle

        try:
            source = self._acquire_source()
        except BaseException:
            self._active_calibrations.pop(key, None)
            raise
        try:
            await self._prepare_source(source)
            engine.start()
            await self.calibration_store.create(engine.session)
        except BaseException:
            self._release_source(source)
            self._active_calibrations.pop(key, None)
            raise

        await handle._emit(engine.state)
        task = asyncio.create_task(
            self._run_calibration(handle, engine, source, key),
            name=f"calibration-{engine.session.id}",
        )
        self._track(handle, task)
        logger.info(
            "coordinator.calibration_started",
            session=engine.session.id,
            user=user_id,
            type=calibration_type.value,
            target=engine.session.target_reading_count,
        )
        return handle

    async def _run_calibration(
        self,
        handle: CalibrationHandle,
        engine: CalibrationEngine,
        source: BaseSensorSource,
        key: tuple[str, CalibrationType],
    ) -> None:
        settings = self._settings
        session_id = engine.session.id
        channel = SampleChannel(maxsize=settings.channel_maxsize)
        batch_size = settings.calibration_sample_batch_size
        batch = []
        state: CalibrationState = engine.state
        try:
            try:
                await source.start(channel)
                while True:
                    if handle.cancel_requested:
                        state = engine.cancel()
                        break
                    state = engine.check_timeout()
                    if state.terminal:
                        break

                    try:
                        sample = await channel.get(timeout=settings.poll_interval_seconds)
                    except SensorError as exc:
                        state = engine.fail(CalibrationFailureReason.SENSOR_ERROR, str(exc))
                        break
                    except ChannelClosed:
                        state = engine.fail(
                            CalibrationFailureReason.INSUFFICIENT_DATA, "sensor stream ended"
                        )
                        break
                    if sample is None:
                        continue
                    if handle.cancel_requested:
                        state = engine.cancel()
                        break

                    state = engine.push(sample)
                    batch.append(sample)
                    if len(batch) >= batch_size:
                        await self.calibration_store.save_samples(session_id, batch)
                        batch = []
                        if not state.terminal:
                            await handle._emit(state)
                    if state.terminal:
                        break
            except Exception as exc:
                # Anything escaping the loop (e.g. an out-of-order sample)
                # ends the session as a sensor failure.
                logger.exception("coordinator.calibration_stream_error", session=session_id)
                state = engine.fail(CalibrationFailureReason.SENSOR_ERROR, str(exc))
            finally:
                await source.stop()
                channel.drain()
                self._release_source(source)

            try:
                if isinstance(state, CalibrationCancelled):
                    deleted = await self.calibration_store.delete_samples(session_id)
                    logger.info(
                        "coordinator.calibration_samples_discarded", session=session_id, count=deleted
                    )
                else:
                    if batch:
                        await self.calibration_store.save_samples(session_id, batch)
                    if isinstance(state, CalibrationCompleted):
                        await self.baseline_store.save(state.baseline)
            finally:
                await self.calibration_store.update(engine.session)
        except Exception as exc:
            logger.exception("coordinator.calibration_crashed", session=session_id)
            handle._crash(exc)
            return
        finally:
            if self._active_calibrations.get(key) is handle:
                del self._active_calibrations[key]

        logger.info(
            "coordinator.calibration_finished",
            session=session_id,
            state=type(state).__name__,
            readings=engine.session.reading_count,
        )
        await handle._emit(state)

    # ── Authentication ────────────────────────────────────────

    async def authenticate(
        self,
        user_id: str,
        calibration_type: CalibrationType = CalibrationType.WALKING,
        *,
        threshold: float | None = None,
    ) -> AuthenticationHandle:
        """Begin an authentication session and return its handle.

        Raises :class:`SensorError` when required sensors are unavailable or
        the source is serving another session.  A missing baseline is
        reported as a terminal ``no-baseline`` state.
        """
        if threshold is None:
            threshold = self._settings.decision_threshold
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be within [0, 1]")

        source = self._acquire_source()
        try:
            await self._prepare_source(source)
        except BaseException:
            self._release_source(source)
            raise

        handle = AuthenticationHandle(user_id, calibration_type, threshold)
        task = asyncio.create_task(
            self._run_authentication(handle, source),
            name=f"authentication-{user_id}",
        )
        self._track(handle, task)
        logger.info("coordinator.authentication_started", user=user_id, threshold=threshold)
        return handle

    async def _record(
        self,
        handle: AuthenticationHandle,
        decision: AuthenticationDecision,
        state: AuthenticationState,
    ) -> None:
        handle.decisions.append(decision)
        await self.decision_store.save(decision)
        await self._dispatcher.dispatch(decision, state)
        await handle._emit(state)

    async def _run_authentication(self, handle: AuthenticationHandle, source: BaseSensorSource) -> None:
        try:
            final = await self._authenticate_loop(handle, source)
            decision = getattr(final, "decision", None)
            if decision is not None:
                await self._record(handle, decision, final)
            else:
                await handle._emit(final)
        except Exception as exc:
            logger.exception("coordinator.authentication_crashed", user=handle.user_id)
            handle._crash(exc)
            return
        logger.info(
            "coordinator.authentication_finished",
            user=handle.user_id,
            state=type(final).__name__,
            attempts=len(handle.decisions),
        )

    async def _authenticate_loop(
        self, handle: AuthenticationHandle, source: BaseSensorSource
    ) -> AuthenticationState:
        """Collect windows until a terminal state is reached and return it.

        The source is stopped and released before returning, so the caller
        publishes the terminal state with the device already free.
        """
        try:
            baseline = await self.baseline_store.get_latest(handle.user_id, handle.calibration_type)
            if baseline is None:
                decision = rejected(handle.user_id, RejectionReason.NO_BASELINE, handle.threshold)
                return AuthenticationFailed(RejectionReason.NO_BASELINE, decision)
            return await self._stream_decisions(handle, source, baseline)
        finally:
            self._release_source(source)

    async def _stream_decisions(
        self,
        handle: AuthenticationHandle,
        source: BaseSensorSource,
        baseline: BaselineProfile,
    ) -> AuthenticationState:
        settings = self._settings
        user_id, threshold = handle.user_id, handle.threshold

        extractor = FeatureExtractor(self._feature_config(baseline))
        window_size = extractor.config.window_size
        window = SensorWindow(capacity=max(settings.window_capacity, window_size))
        channel = SampleChannel(maxsize=settings.channel_maxsize)
        started = self._clock()
        attempt = 1
        fresh = 0

        def failed(reason: RejectionReason, detail: str) -> AuthenticationFailed:
            decision = rejected(
                user_id, reason, threshold, attempt=attempt, baseline_id=baseline.id
            )
            return AuthenticationFailed(reason, decision, detail)

        try:
            await source.start(channel)
            while True:
                if handle.cancel_requested:
                    return AuthenticationCancelled()
                if self._clock() - started >= settings.auth_max_duration_seconds:
                    return AuthenticationExpired()

                try:
                    sample = await channel.get(timeout=settings.poll_interval_seconds)
                except SensorError as exc:
                    return failed(RejectionReason.SENSOR_ERROR, str(exc))
                except ChannelClosed:
                    return AuthenticationExpired()
                if sample is None:
                    continue

                try:
                    window.push(sample)
                except ValueError as exc:
                    logger.warning("coordinator.authentication_bad_sample", user=user_id, error=str(exc))
                    return failed(RejectionReason.SENSOR_ERROR, str(exc))
                if not sample.synchronized:
                    continue
                fresh += 1
                if fresh < window_size:
                    continue
                fresh = 0

                if handle.cancel_requested:
                    return AuthenticationCancelled()

                try:
                    features = extractor.extract(window.synchronized()[-window_size:])
                    decision = decide(
                        features, baseline, threshold,
                        epsilon=settings.decision_epsilon, attempt=attempt,
                    )
                except (InsufficientSignalError, InsufficientDataError):
                    decision = rejected(
                        user_id, RejectionReason.INSUFFICIENT_SIGNAL, threshold,
                        attempt=attempt, baseline_id=baseline.id,
                    )
                except FeatureMismatchError as exc:
                    return failed(RejectionReason.NO_BASELINE, str(exc))

                if handle.cancel_requested:
                    return AuthenticationCancelled()

                if decision.authenticated:
                    return AuthenticationSucceeded(decision)
                if attempt >= settings.max_auth_attempts:
                    return AuthenticationLockedOut(attempts=attempt, decision=decision)
                await self._record(
                    handle, decision,
                    AuthenticationRetry(decision, settings.max_auth_attempts - attempt),
                )
                attempt += 1
                await handle._emit(Authenticating(attempt=attempt, last_confidence=decision.confidence))
        finally:
            await source.stop()
            channel.drain()
