"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import os

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import pytest

from mcsession.auth.exchange import TokenExchangeClient
from mcsession.auth.session import SessionManager
from mcsession.auth.vault import MemorySecretVault, account_name, reset_secret_vault
from mcsession.config import clear_settings
from mcsession.types import Identity, TenantCredentials, TokenResponse


if TYPE_CHECKING:
    from collections.abc import Generator


ACME = "Acme"
ACME_ENDPOINT = "https://mc.example.com/v2/token"


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_tokens(
    access_token: str = "AT1",
    refresh_token: str | None = "RT1",
    expires_in: int = 1200,
    rest: str | None = None,
    soap: str | None = None,
) -> TokenResponse:
    """Build a TokenResponse for tests."""
    return TokenResponse(
        access_token=access_token,
        expires_in=expires_in,
        refresh_token=refresh_token,
        rest_instance_url=rest,
        soap_instance_url=soap,
    )


def make_credentials(refresh_token: str = "RT1", endpoint: str = ACME_ENDPOINT) -> TenantCredentials:
    """Build a full credential set for tests."""
    return TenantCredentials(
        refresh_token=refresh_token,
        client_id="cid",
        client_secret="csecret",
        authorization_endpoint=endpoint,
    )


def seed_vault(vault: MemorySecretVault, tenant: str = ACME, credentials: TenantCredentials | None = None) -> None:
    """Store credentials for a tenant without an event loop."""
    items = (credentials or make_credentials()).as_vault_items()
    vault._secrets.update({account_name(tenant, key): value for key, value in items.items()})


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Generator[None, None, None]:
    """Reset singletons and keep user configuration out of tests."""
    for name in list(os.environ):
        if name.startswith("MCSESSION_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("APPDATA", str(tmp_path))
    reset_secret_vault()
    clear_settings()
    yield
    reset_secret_vault()
    clear_settings()


@pytest.fixture()
def clock() -> FakeClock:
    """Clock starting at t=0."""
    return FakeClock()


@pytest.fixture()
def vault() -> MemorySecretVault:
    """Create a memory vault."""
    return MemorySecretVault()


@pytest.fixture()
def exchange() -> MagicMock:
    """Create a mock exchange client."""
    client = MagicMock(spec=TokenExchangeClient)
    client.exchange_code = AsyncMock(return_value=make_tokens())
    client.exchange_refresh_token = AsyncMock(return_value=make_tokens("AT2", "RT2"))
    client.fetch_identity = AsyncMock(
        return_value=Identity(user={"email": "ops@acme.test"}, organization={"stack_key": "S7"})
    )
    client.close = AsyncMock()
    return client


@pytest.fixture()
def manager(vault: MemorySecretVault, exchange: MagicMock, clock: FakeClock) -> SessionManager:
    """Create a session manager on the memory vault with a fake clock."""
    return SessionManager(vault, exchange, clock=clock)
