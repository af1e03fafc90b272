"""Tests for SessionStore and CredentialStore."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from allersafe.errors import BackendError, TransportError
from allersafe.models import Principal, Role, SubscriptionStatus
from allersafe.policy import Capability
from allersafe.session import CredentialStore, SessionStore


def _principal(status=SubscriptionStatus.TRIAL, role=Role.FAMILY, name="Ana"):
    return Principal(
        id="u1", name=name, email="ana@example.com", role=role,
        subscription_status=status,
    )


@pytest.fixture
def credentials(tmp_path):
    return CredentialStore(tmp_path / "auth" / "token.json")


@pytest.fixture
def gateway():
    gw = MagicMock()
    gw.login = AsyncMock(return_value=("tok-1", _principal()))
    gw.register = AsyncMock(return_value=("tok-2", _principal(role=Role.RESTAURANT)))
    gw.me = AsyncMock(return_value=_principal(SubscriptionStatus.ACTIVE))
    return gw


class TestCredentialStore:
    def test_save_and_load(self, credentials, tmp_path):
        credentials.save("abc")
        path = tmp_path / "auth" / "token.json"
        assert json.loads(path.read_text()) == {"access_token": "abc"}
        assert credentials.load() == "abc"

    def test_load_missing(self, credentials):
        assert credentials.load() is None

    def test_load_corrupt(self, credentials, tmp_path):
        path = tmp_path / "auth" / "token.json"
        path.parent.mkdir(parents=True)
        path.write_text("not json")
        assert credentials.load() is None

    def test_clear(self, credentials):
        credentials.save("abc")
        credentials.clear()
        assert credentials.load() is None
        credentials.clear()


class TestLoginLogout:
    @pytest.mark.asyncio
    async def test_login_stores_token_and_principal(self, credentials, gateway):
        store = SessionStore(credentials)
        principal = await store.login(gateway, "ana@example.com", "pw")

        assert store.principal is principal
        assert store.token == "tok-1"
        assert store.is_authenticated
        assert store.home_dashboard == "family"
        assert credentials.load() == "tok-1"
        gateway.login.assert_awaited_once_with("ana@example.com", "pw")

    @pytest.mark.asyncio
    async def test_register(self, credentials, gateway):
        store = SessionStore(credentials)
        await store.register(gateway, "r@example.com", "pw", "Luigi", Role.RESTAURANT)

        gateway.register.assert_awaited_once_with("r@example.com", "pw", "Luigi", "restaurant")
        assert store.home_dashboard == "restaurant"

    @pytest.mark.asyncio
    async def test_logout_clears_everything(self, credentials, gateway):
        store = SessionStore(credentials)
        await store.login(gateway, "ana@example.com", "pw")
        store.logout()

        assert store.principal is None
        assert store.token is None
        assert not store.is_authenticated
        assert store.home_dashboard is None
        assert credentials.load() is None
        assert not store.capabilities.enabled

    @pytest.mark.asyncio
    async def test_listeners(self, gateway):
        store = SessionStore()
        seen = []
        unsubscribe = store.subscribe(seen.append)
        await store.login(gateway, "ana@example.com", "pw")
        store.logout()
        unsubscribe()
        await store.login(gateway, "ana@example.com", "pw")

        assert len(seen) == 2
        assert seen[0].name == "Ana"
        assert seen[1] is None


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_replaces_principal(self, gateway):
        store = SessionStore()
        await store.login(gateway, "ana@example.com", "pw")
        before = store.principal
        assert not store.capabilities.allows(Capability.SAVE_MENU)

        after = await store.refresh(gateway)

        assert after is not before
        assert store.principal is after
        assert store.capabilities.allows(Capability.SAVE_MENU)

    @pytest.mark.asyncio
    async def test_refresh_without_token(self, gateway):
        store = SessionStore()
        assert await store.refresh(gateway) is None
        gateway.me.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refresh_after_logout_is_discarded(self, gateway):
        """A refresh that lands after logout never resurrects the session."""
        store = SessionStore()
        await store.login(gateway, "ana@example.com", "pw")

        release = asyncio.Event()

        async def slow_me():
            await release.wait()
            return _principal(SubscriptionStatus.ACTIVE)

        gateway.me = AsyncMock(side_effect=slow_me)
        task = asyncio.ensure_future(store.refresh(gateway))
        await asyncio.sleep(0)
        store.logout()
        release.set()
        await task

        assert store.principal is None
        assert not store.is_authenticated

    @pytest.mark.asyncio
    async def test_refresh_after_relogin_is_discarded(self, gateway):
        store = SessionStore()
        await store.login(gateway, "ana@example.com", "pw")

        release = asyncio.Event()

        async def slow_me():
            await release.wait()
            return _principal(name="Stale")

        gateway.me = AsyncMock(side_effect=slow_me)
        task = asyncio.ensure_future(store.refresh(gateway))
        await asyncio.sleep(0)
        gateway.login = AsyncMock(return_value=("tok-9", _principal(name="Fresh")))
        await store.login(gateway, "ana@example.com", "pw")
        release.set()
        await task

        assert store.principal.name == "Fresh"
        assert store.token == "tok-9"


class TestRestore:
    @pytest.mark.asyncio
    async def test_restore_valid_token(self, credentials, gateway):
        credentials.save("persisted")
        store = SessionStore(credentials)
        principal = await store.restore(gateway)

        assert principal is not None
        assert store.token == "persisted"
        assert store.is_authenticated

    @pytest.mark.asyncio
    async def test_restore_nothing_stored(self, credentials, gateway):
        store = SessionStore(credentials)
        assert await store.restore(gateway) is None
        gateway.me.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_token_is_cleared(self, credentials, gateway):
        credentials.save("expired-token")
        gateway.me = AsyncMock(side_effect=BackendError(401, "Invalid token"))
        store = SessionStore(credentials)

        assert await store.restore(gateway) is None
        assert store.token is None
        assert credentials.load() is None

    @pytest.mark.asyncio
    async def test_network_failure_keeps_token(self, credentials, gateway):
        credentials.save("persisted")
        gateway.me = AsyncMock(side_effect=TransportError("offline"))
        store = SessionStore(credentials)

        assert await store.restore(gateway) is None
        assert store.token == "persisted"
        assert credentials.load() == "persisted"
        assert store.principal is None

    @pytest.mark.asyncio
    async def test_server_error_keeps_token(self, credentials, gateway):
        """Only a 401 discards the stored credential."""
        credentials.save("good-token")
        gateway.me = AsyncMock(side_effect=BackendError(503, "Service unavailable"))
        store = SessionStore(credentials)

        assert await store.restore(gateway) is None
        assert store.token == "good-token"
        assert credentials.load() == "good-token"
        assert not store.is_authenticated
