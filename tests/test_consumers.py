"""Tests for decision consumers and the dispatcher."""

import json

import httpx
import pytest

from gait_auth.config import Settings
from gait_auth.consumers.handlers import (
    CallbackConsumer,
    DecisionConsumer,
    DecisionDispatcher,
    LockPolicyConsumer,
    LockStatus,
    WebhookConsumer,
    create_dispatcher,
)
from gait_auth.models import AuthenticationDecision, RejectionReason
from gait_auth.session.states import (
    AuthenticationLockedOut,
    AuthenticationRetry,
    AuthenticationSucceeded,
)


class _Exploding(DecisionConsumer):
    name = "exploding"

    async def handle(self, decision, state):
        raise RuntimeError("boom")


def _accepted(**overrides) -> AuthenticationDecision:
    return AuthenticationDecision(user_id="U001", confidence=0.92, authenticated=True, **overrides)


def _refused() -> AuthenticationDecision:
    return AuthenticationDecision(
        user_id="U001", confidence=0.2, authenticated=False, reason=RejectionReason.LOW_CONFIDENCE,
    )


class TestDispatcher:
    def test_default_has_log_consumer(self):
        assert DecisionDispatcher().consumer_names == ["log"]

    @pytest.mark.asyncio
    async def test_failing_consumer_does_not_block_others(self):
        received = []

        async def remember(decision, state):
            received.append(decision.id)

        dispatcher = DecisionDispatcher(
            consumers=[_Exploding(), CallbackConsumer(remember, name="memo")]
        )
        decision = _accepted()
        result = await dispatcher.dispatch(decision, AuthenticationSucceeded(decision))

        assert result.failed == ["exploding"]
        assert result.delivered == ["memo"]
        assert not result.all_ok
        assert received == [decision.id]

    def test_add_and_remove(self):
        dispatcher = DecisionDispatcher()
        dispatcher.add_consumer(LockPolicyConsumer())
        assert dispatcher.consumer_names == ["log", "lock_policy"]
        assert dispatcher.remove_consumer("lock_policy") is True
        assert dispatcher.remove_consumer("lock_policy") is False

    def test_factory_without_webhook(self):
        assert create_dispatcher(Settings(webhook_url="")).consumer_names == ["log"]

    def test_factory_with_webhook(self):
        dispatcher = create_dispatcher(Settings(webhook_url="http://example.test/hook"))
        assert dispatcher.consumer_names == ["log", "webhook"]


class TestLockPolicy:
    @pytest.mark.asyncio
    async def test_only_terminal_outcomes_change_status(self):
        lock = LockPolicyConsumer()
        dispatcher = DecisionDispatcher(consumers=[lock])
        refused = _refused()

        result = await dispatcher.dispatch(refused, AuthenticationRetry(refused, 2))
        assert result.delivered == []
        assert lock.status("U001") is LockStatus.LOCKED

        accepted = _accepted()
        await dispatcher.dispatch(accepted, AuthenticationSucceeded(accepted))
        assert lock.status("U001") is LockStatus.UNLOCKED

        await dispatcher.dispatch(refused, AuthenticationLockedOut(3, refused))
        assert lock.status("U001") is LockStatus.LOCKED


class TestWebhook:
    @pytest.mark.asyncio
    async def test_posts_decision_json(self, live_vector):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(204)

        consumer = WebhookConsumer("http://example.test/hook", transport=httpx.MockTransport(handler))
        decision = _accepted(features=live_vector)
        assert await consumer.handle(decision, AuthenticationSucceeded(decision)) is True

        body = captured["body"]
        assert captured["url"] == "http://example.test/hook"
        assert body["id"] == decision.id
        assert body["authenticated"] is True
        assert body["state"] == "AuthenticationSucceeded"
        assert "features" not in body

    @pytest.mark.asyncio
    async def test_http_error_reported_as_failure(self):
        consumer = WebhookConsumer(
            "http://example.test/hook",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        dispatcher = DecisionDispatcher(consumers=[consumer])
        decision = _accepted()
        result = await dispatcher.dispatch(decision, AuthenticationSucceeded(decision))
        assert result.failed == ["webhook"]
