"""Tests for the UI message boundary."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import threading

from unittest.mock import AsyncMock, MagicMock

import pytest

from mcsession.auth.callback_server import BrowserLoginSurface
from mcsession.auth.flow import LoginFlowManager
from mcsession.auth.vault import MemorySecretVault
from mcsession.bridge import VAULT_ERROR_KIND, AuthBridge
from mcsession.config import McSessionSettings
from mcsession.events import LogoutSuccess, RequireLogin, TokenReceived
from mcsession.exceptions import VaultError
from mcsession.types import ApiConfig, AuthFlowState, Identity, LoginRequest, LoginResult
from tests.conftest import ACME, ACME_ENDPOINT, make_credentials, make_tokens, seed_vault


LOGIN_PAYLOAD = {
    "clientName": ACME,
    "authUri": ACME_ENDPOINT,
    "clientId": "cid",
    "clientSecret": "csecret",
}


@pytest.fixture()
def login_flow() -> MagicMock:
    """Create a mock login flow."""
    flow = MagicMock(spec=LoginFlowManager)
    flow.login = AsyncMock(
        return_value=LoginResult(
            True,
            ACME,
            AuthFlowState.COMPLETED,
            config=ApiConfig(ACME, "AT1", 900.0, rest_endpoint="https://rest/", soap_endpoint="https://soap/"),
        )
    )
    return flow


@pytest.fixture()
def bridge(manager, login_flow) -> AuthBridge:
    """Create a bridge over the fixture manager."""
    return AuthBridge(manager, login_flow)


def _collect(bridge: AuthBridge) -> list:
    events: list = []
    bridge.channel.subscribe("*", events.append)
    return events


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


class TestStartLogin:
    """Fire-and-forget login."""

    def test_success_event(self, bridge, login_flow) -> None:
        """A successful login publishes TokenReceived with the config payload."""
        events = _collect(bridge)

        async def scenario():
            bridge.start_login(LOGIN_PAYLOAD)
            await bridge.drain()

        _run(scenario())

        request = login_flow.login.await_args.args[0]
        assert request.tenant_name == ACME
        assert request.client_secret == "csecret"
        assert events == [
            TokenReceived(
                success=True,
                tenant_name=ACME,
                data={
                    "access_token": "AT1",
                    "rest_uri": "https://rest/",
                    "soap_uri": "https://soap/Service.asmx",
                    "user_info": None,
                    "org_info": None,
                },
            )
        ]

    def test_failed_login_event(self, bridge, login_flow) -> None:
        """A failed login publishes its error."""
        login_flow.login.return_value = LoginResult(
            False, ACME, AuthFlowState.CANCELLED, error="Login was cancelled"
        )
        events = _collect(bridge)

        event = _run(bridge.login(LOGIN_PAYLOAD))

        assert not event.success
        assert event.error == "Login was cancelled"
        assert events == [event]

    def test_invalid_payload(self, bridge, login_flow) -> None:
        """An incomplete tenant config fails without starting a login."""
        events = _collect(bridge)

        event = _run(bridge.login({"clientName": ACME, "authUri": ACME_ENDPOINT}))

        assert not event.success
        assert event.tenant_name == ACME
        assert "Missing required login field" in event.error
        assert events == [event]
        login_flow.login.assert_not_called()

    def test_unexpected_error_reported(self, bridge, login_flow) -> None:
        """Unexpected exceptions never escape the bridge."""
        login_flow.login.side_effect = RuntimeError("surface crashed")

        event = _run(bridge.login(LOGIN_PAYLOAD))

        assert not event.success
        assert event.error == "surface crashed"

    def test_without_running_loop(self, bridge) -> None:
        """Called from a plain thread, the login runs on the background loop."""
        received = threading.Event()
        events: list = []

        def on_token(event) -> None:
            events.append(event)
            received.set()

        bridge.channel.subscribe(TokenReceived, on_token)
        bridge.start_login(LOGIN_PAYLOAD)

        assert received.wait(timeout=5)
        assert events[0].success


class TestGetApiConfig:
    """Request/response config lookup."""

    def test_empty_tenant(self, bridge, manager) -> None:
        """An empty tenant name returns None without events."""
        events = _collect(bridge)
        assert _run(bridge.get_api_config("")) is None
        assert events == []

    def test_usable_config(self, bridge, vault) -> None:
        """A usable config is returned as a payload."""

        async def scenario():
            await vault.save_credentials(ACME, make_credentials())
            return await bridge.get_api_config(ACME)

        payload = _run(scenario())
        assert payload["access_token"] == "AT2"
        assert payload["org_info"] == {"stack_key": "S7"}

    def test_require_login_published(self, bridge) -> None:
        """RequiresLogin publishes a RequireLogin event with the reason."""
        events = _collect(bridge)

        assert _run(bridge.get_api_config(ACME)) is None

        assert len(events) == 1
        event = events[0]
        assert isinstance(event, RequireLogin)
        assert event.tenant_name == ACME
        assert event.kind == "missing_credentials"
        assert "login required" in event.reason
        assert not event.retryable

    def test_unexpected_error(self, bridge, manager) -> None:
        """An unexpected manager error becomes RequireLogin."""
        manager.get_config = AsyncMock(side_effect=RuntimeError("bug"))
        events = _collect(bridge)

        assert _run(bridge.get_api_config(ACME)) is None
        assert events[0].kind == "unexpected"

    def test_blocking(self, manager, login_flow, vault) -> None:
        """The blocking variant works without an event loop."""
        bridge = AuthBridge(manager, login_flow)
        seed_vault(vault)

        payload = bridge.get_api_config_blocking(ACME, timeout=5)

        assert payload["access_token"] == "AT2"


class TestLogout:
    """Fire-and-forget logout."""

    def test_logout_event(self, bridge, vault) -> None:
        """Logout purges the vault and publishes LogoutSuccess."""
        events = _collect(bridge)

        async def scenario():
            await vault.save_credentials(ACME, make_credentials())
            bridge.logout(ACME)
            await bridge.drain()

        _run(scenario())

        assert vault.accounts() == []
        assert events == [LogoutSuccess(ACME)]

    def test_logout_failure(self, bridge, manager, vault) -> None:
        """A vault failure drops the session and publishes RequireLogin instead of LogoutSuccess."""
        events = _collect(bridge)

        async def scenario():
            await manager.complete_login(
                LoginRequest.from_payload(LOGIN_PAYLOAD), make_tokens(), Identity()
            )
            vault.delete = AsyncMock(side_effect=VaultError("store locked"))
            return await bridge.logout_tenant(ACME)

        assert _run(scenario()) is False
        assert manager.snapshot().is_empty
        assert len(events) == 1
        event = events[0]
        assert isinstance(event, RequireLogin)
        assert event.kind == VAULT_ERROR_KIND
        assert "store locked" in event.reason
        assert not event.retryable


class TestFromSettings:
    """Wiring from settings."""

    def test_memory_backend(self) -> None:
        """Settings choose vault, surface, buffer and timeouts."""
        settings = McSessionSettings(
            vault={"backend": "memory"},
            auth={"expiry_buffer_seconds": 120, "login_timeout_seconds": 60},
        )

        bridge = AuthBridge.from_settings(settings)

        assert isinstance(bridge.session_manager.vault, MemorySecretVault)
        assert bridge.session_manager.expiry_buffer_seconds == 120
        assert bridge.login_flow.login_timeout == 60
        assert isinstance(bridge.login_flow.surface, BrowserLoginSurface)
        assert bridge.login_flow.redirect_uri == "https://127.0.0.1:8443/callback"
        assert bridge.login_flow.exchange is bridge.session_manager.exchange

    def test_close(self, bridge, manager) -> None:
        """close() releases the session manager's client."""
        _run(bridge.close())
        manager.exchange.close.assert_awaited_once()
