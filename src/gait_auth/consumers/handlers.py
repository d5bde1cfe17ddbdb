"""Decision consumers — log, webhook, callback and lock-policy delivery.

Architecture
~~~~~~~~~~~~
* **DecisionConsumer** — abstract base for downstream policy components.
* **LogConsumer / WebhookConsumer / CallbackConsumer / LockPolicyConsumer**
  — concrete consumers.
* **DecisionDispatcher** — fan-out with error-isolation and results.
* **create_dispatcher()** — factory that wires consumers from settings.

Adding a new consumer
~~~~~~~~~~~~~~~~~~~~~
1. Subclass ``DecisionConsumer``.
2. Implement ``async handle(decision, state) -> bool``.
3. Register via ``dispatcher.add_consumer(...)`` or add to the factory.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import httpx
import structlog

from gait_auth.session.states import AuthenticationLockedOut, AuthenticationSucceeded

if TYPE_CHECKING:
    from gait_auth.config import Settings
    from gait_auth.models import AuthenticationDecision
    from gait_auth.session.states import AuthenticationState

logger = structlog.get_logger(__name__)


# ── Dispatch result ───────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class DispatchResult:
    """Outcome summary for a single ``dispatch()`` call."""

    decision_id: str | None
    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        return len(self.failed) == 0


# ── Abstract consumer ─────────────────────────────────────────


class DecisionConsumer(ABC):
    """Contract for components acting on authentication decisions.

    Subclasses implement :meth:`handle`.  They may override :attr:`name`
    and :meth:`should_handle` (e.g. to react only to terminal states).
    """

    name: str = "base"

    @abstractmethod
    async def handle(self, decision: AuthenticationDecision, state: AuthenticationState) -> bool:
        """React to a decision.  Return ``True`` on success."""

    def should_handle(self, decision: AuthenticationDecision, state: AuthenticationState) -> bool:  # noqa: ARG002
        return True


# ── Concrete consumers ────────────────────────────────────────


class LogConsumer(DecisionConsumer):
    """Write decisions to the structured log (always enabled)."""

    name = "log"

    async def handle(self, decision: AuthenticationDecision, state: AuthenticationState) -> bool:
        logger.info(
            "decision.log",
            user=decision.user_id,
            authenticated=decision.authenticated,
            confidence=round(decision.confidence, 4),
            reason=decision.reason.value if decision.reason else None,
            attempt=decision.attempt,
            state=type(state).__name__,
        )
        return True


class WebhookConsumer(DecisionConsumer):
    """POST decision JSON to an external webhook URL."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def handle(self, decision: AuthenticationDecision, state: AuthenticationState) -> bool:
        payload = decision.model_dump(mode="json", exclude={"features"})
        payload["state"] = type(state).__name__
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._url, json=payload)
                resp.raise_for_status()
            logger.info("decision.webhook_sent", url=self._url, decision_id=decision.id)
            return True
        except httpx.HTTPError as exc:
            logger.error("decision.webhook_failed", url=self._url, error=str(exc))
            return False


class CallbackConsumer(DecisionConsumer):
    """Forward decisions to an in-process coroutine."""

    name = "callback"

    def __init__(
        self,
        callback: Callable[[AuthenticationDecision, AuthenticationState], Awaitable[None]],
        *,
        name: str = "callback",
    ) -> None:
        self._callback = callback
        self.name = name

    async def handle(self, decision: AuthenticationDecision, state: AuthenticationState) -> bool:
        await self._callback(decision, state)
        return True


class LockStatus(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class LockPolicyConsumer(DecisionConsumer):
    """Track per-user lock status from terminal authentication outcomes.

    A success unlocks the user; a lockout locks them.  Retries and other
    failures leave the current status untouched.
    """

    name = "lock_policy"

    def __init__(self) -> None:
        self._status: dict[str, LockStatus] = {}

    def status(self, user_id: str) -> LockStatus:
        return self._status.get(user_id, LockStatus.LOCKED)

    def should_handle(self, decision: AuthenticationDecision, state: AuthenticationState) -> bool:  # noqa: ARG002
        return isinstance(state, (AuthenticationSucceeded, AuthenticationLockedOut))

    async def handle(self, decision: AuthenticationDecision, state: AuthenticationState) -> bool:
        new = LockStatus.UNLOCKED if isinstance(state, AuthenticationSucceeded) else LockStatus.LOCKED
        self._status[decision.user_id] = new
        logger.info("decision.lock_status", user=decision.user_id, status=new.value)
        return True


# ── Dispatcher ────────────────────────────────────────────────


class DecisionDispatcher:
    """Fan-out decisions to registered consumers with error isolation.

    Each consumer is invoked independently: a failure in one never blocks
    delivery to the others.
    """

    def __init__(self, *, consumers: list[DecisionConsumer] | None = None) -> None:
        self._consumers: list[DecisionConsumer] = consumers if consumers is not None else [LogConsumer()]

    # ── Consumer management ───────────────────────────────────

    def add_consumer(self, consumer: DecisionConsumer) -> None:
        self._consumers.append(consumer)

    def remove_consumer(self, name: str) -> bool:
        """Remove the first consumer matching *name*.  Return ``True`` if found."""
        for i, c in enumerate(self._consumers):
            if c.name == name:
                self._consumers.pop(i)
                return True
        return False

    @property
    def consumer_names(self) -> list[str]:
        return [c.name for c in self._consumers]

    # ── Dispatch ──────────────────────────────────────────────

    async def dispatch(
        self, decision: AuthenticationDecision, state: AuthenticationState
    ) -> DispatchResult:
        """Deliver *decision* to every consumer, collecting per-consumer outcomes.

        A consumer that raises is caught, logged, and marked as failed so
        remaining consumers still execute.
        """
        delivered: list[str] = []
        failed: list[str] = []

        for consumer in self._consumers:
            if not consumer.should_handle(decision, state):
                continue
            try:
                ok = await consumer.handle(decision, state)
                (delivered if ok else failed).append(consumer.name)
            except Exception:
                logger.exception(
                    "decision.consumer_error",
                    consumer=consumer.name,
                    decision_id=decision.id,
                )
                failed.append(consumer.name)

        result = DispatchResult(decision_id=decision.id, delivered=delivered, failed=failed)
        if result.failed:
            logger.warning(
                "decision.partial_failure",
                decision_id=decision.id,
                failed=result.failed,
            )
        return result


# ── Factory ───────────────────────────────────────────────────


def create_dispatcher(settings: Settings) -> DecisionDispatcher:
    """Build a :class:`DecisionDispatcher` wired from application settings.

    * **LogConsumer** is always registered.
    * **WebhookConsumer** is added when ``settings.webhook_url`` is non-empty.
    """
    dispatcher = DecisionDispatcher()
    if settings.webhook_url:
        dispatcher.add_consumer(
            WebhookConsumer(settings.webhook_url, timeout=settings.webhook_timeout_seconds)
        )
    return dispatcher
