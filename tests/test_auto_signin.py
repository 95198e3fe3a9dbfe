"""Tests for authflow.auth.auto_signin -- sign-in right after registration."""

from __future__ import annotations

import pytest

from authflow.auth import AuthContext
from authflow.auth.auto_signin import (
    AUTO_SIGN_IN,
    POLLING_STARTED,
    POLLING_TIMEOUT_MESSAGE,
    is_unconfirmed,
)
from authflow.exceptions import ProviderError


def _unconfirmed() -> ProviderError:
    return ProviderError("User is not confirmed.", "UserNotConfirmedException")


@pytest.fixture
def link_context(options, provider, storage, hub, credentials) -> AuthContext:
    options.sign_up_verification_method = "link"
    return AuthContext(
        options,
        provider=provider,
        storage=storage,
        hub=hub,
        credentials=credentials,
        auto_sign_in_interval=0.01,
        auto_sign_in_max_duration=0.2,
    )


def _auto_events(events):
    return [e for e in events if e.event.startswith("autoSignIn")]


def test_is_unconfirmed_matches_code_or_message():
    assert is_unconfirmed(_unconfirmed())
    assert is_unconfirmed(ProviderError("User is not confirmed."))
    assert is_unconfirmed(ProviderError("whatever", "UserNotConfirmedException"))
    assert not is_unconfirmed(ProviderError("Incorrect username or password."))


class TestStrategies:
    @pytest.mark.asyncio
    async def test_confirmed_account_signs_in_immediately(self, context, provider, storage, events):
        provider.sign_up_confirmed = True

        await context.sign_up("alice", "pw", {"email": "a@example.com"}, auto_sign_in=True)
        await context.close()

        auto = _auto_events(events)
        assert [e.event for e in auto] == ["autoSignIn"]
        assert auto[0].data.username == "alice"
        assert context.user is auto[0].data
        assert storage.get_item(AUTO_SIGN_IN) is None

    @pytest.mark.asyncio
    async def test_code_confirmation_triggers_sign_in(self, context, provider, storage, events):
        await context.sign_up("alice", "pw", auto_sign_in=True)
        assert storage.get_item(AUTO_SIGN_IN) == "true"
        assert context.auto_sign_in.active
        assert _auto_events(events) == []

        await context.confirm_sign_up("alice", "123456")
        await context.close()

        assert [e.event for e in _auto_events(events)] == ["autoSignIn"]
        assert ("authenticate", "alice", "pw") in provider.calls
        assert storage.get_item(AUTO_SIGN_IN) is None
        assert not context.auto_sign_in.active

    @pytest.mark.asyncio
    async def test_confirmation_listener_fires_once(self, context, provider, hub, events):
        await context.sign_up("alice", "pw", auto_sign_in=True)

        hub.dispatch("auth", "confirmSignUp", "SUCCESS")
        hub.dispatch("auth", "confirmSignUp", "SUCCESS")
        await context.close()

        assert [c[0] for c in provider.calls].count("authenticate") == 1
        assert [e.event for e in _auto_events(events)] == ["autoSignIn"]

    @pytest.mark.asyncio
    async def test_link_polling_signs_in_after_confirmation(
        self, link_context, provider, storage, events
    ):
        provider.outcomes = [_unconfirmed(), _unconfirmed()]

        await link_context.sign_up("alice", "pw", auto_sign_in=True)
        assert storage.get_item(POLLING_STARTED) == "true"
        await link_context.close()

        auto = _auto_events(events)
        assert [e.event for e in auto] == ["autoSignIn"]
        assert [c[0] for c in provider.calls].count("authenticate") == 3
        assert storage.get_item(AUTO_SIGN_IN) is None
        assert storage.get_item(POLLING_STARTED) is None

    @pytest.mark.asyncio
    async def test_polling_gives_up_after_max_duration(
        self, link_context, provider, storage, events
    ):
        provider.outcomes = [_unconfirmed() for _ in range(1000)]

        await link_context.sign_up("alice", "pw", auto_sign_in=True)
        await link_context.close()

        auto = _auto_events(events)
        assert len(auto) == 1
        assert auto[0].event == "autoSignIn_failure"
        assert auto[0].message == POLLING_TIMEOUT_MESSAGE
        assert storage.get_item(AUTO_SIGN_IN) is None
        assert storage.get_item(POLLING_STARTED) is None

    @pytest.mark.asyncio
    async def test_explicit_failure_stops_polling(self, link_context, provider, storage, events):
        error = ProviderError("Incorrect username or password.", "NotAuthorizedException")
        provider.outcomes = [_unconfirmed(), error]

        await link_context.sign_up("alice", "pw", auto_sign_in=True)
        await link_context.close()

        auto = _auto_events(events)
        assert [e.event for e in auto] == ["autoSignIn_failure"]
        assert auto[0].data is error
        assert [c[0] for c in provider.calls].count("authenticate") == 2
        assert storage.get_item(AUTO_SIGN_IN) is None
        assert storage.get_item(POLLING_STARTED) is None

    @pytest.mark.asyncio
    async def test_overlapping_code_sign_ups_each_sign_in(
        self, context, provider, hub, events
    ):
        listeners = hub.listener_count("auth")

        await context.sign_up("alice", "pw-a", auto_sign_in=True)
        await context.sign_up("bob", "pw-b", auto_sign_in=True)
        assert hub.listener_count("auth") == listeners + 2

        await context.confirm_sign_up("bob", "123456")
        assert hub.listener_count("auth") == listeners
        await context.close()

        auto = _auto_events(events)
        assert [e.event for e in auto] == ["autoSignIn", "autoSignIn"]
        assert ("authenticate", "alice", "pw-a") in provider.calls
        assert ("authenticate", "bob", "pw-b") in provider.calls
        assert not context.auto_sign_in.active

    @pytest.mark.asyncio
    async def test_overlapping_link_sign_ups_each_stop_polling(
        self, link_context, provider, storage, events
    ):
        provider.outcomes = [_unconfirmed(), _unconfirmed()]

        await link_context.sign_up("alice", "pw-a", auto_sign_in=True)
        await link_context.sign_up("bob", "pw-b", auto_sign_in=True)
        await link_context.close()

        auto = _auto_events(events)
        assert [e.event for e in auto] == ["autoSignIn", "autoSignIn"]
        assert ("authenticate", "alice", "pw-a") in provider.calls
        assert ("authenticate", "bob", "pw-b") in provider.calls
        assert [c[0] for c in provider.calls].count("authenticate") == 4
        assert not link_context.auto_sign_in.active
        assert storage.get_item(POLLING_STARTED) is None

    @pytest.mark.asyncio
    async def test_sign_up_without_auto_sign_in_stores_nothing(self, context, storage, events):
        await context.sign_up("alice", "pw")
        await context.close()

        assert storage.get_item(AUTO_SIGN_IN) is None
        assert [e.event for e in events] == ["signUp"]
        assert not context.auto_sign_in.initiated


class TestIntentLifecycle:
    @pytest.mark.asyncio
    async def test_failed_sign_up_withdraws_intent(self, context, provider, storage, events):
        provider.sign_up_error = ProviderError("User already exists", "UsernameExistsException")

        with pytest.raises(ProviderError, match="User already exists"):
            await context.sign_up("alice", "pw", auto_sign_in=True)

        assert storage.get_item(AUTO_SIGN_IN) is None
        assert [e.event for e in events] == ["signUp_failure"]

    @pytest.mark.asyncio
    async def test_orphaned_intent_fails_on_confirmation(self, context, storage, events):
        storage.set_item(AUTO_SIGN_IN, "true")

        await context.confirm_sign_up("alice", "123456")

        assert [e.event for e in events] == ["confirmSignUp", "autoSignIn_failure"]
        assert storage.get_item(AUTO_SIGN_IN) is None

    @pytest.mark.asyncio
    async def test_abandoned_poll_is_reported_on_configure(self, context, storage, events):
        storage.set_item(AUTO_SIGN_IN, "true")
        storage.set_item(POLLING_STARTED, "true")

        await context.configure()

        assert [e.event for e in events] == ["configured", "autoSignIn_failure"]
        assert storage.get_item(AUTO_SIGN_IN) is None
        assert storage.get_item(POLLING_STARTED) is None

    @pytest.mark.asyncio
    async def test_configure_without_marker_reports_nothing(self, context, storage, events):
        storage.set_item(AUTO_SIGN_IN, "true")

        await context.configure()

        assert [e.event for e in events] == ["configured"]
        assert storage.get_item(AUTO_SIGN_IN) == "true"
