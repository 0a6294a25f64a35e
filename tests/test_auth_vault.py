"""Unit tests for secret vault backends."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import asyncio
import logging

from unittest.mock import patch

import pytest

from keyring.errors import KeyringError, PasswordDeleteError

from mcsession.auth.vault import (
    KeyringSecretVault,
    MemorySecretVault,
    account_name,
    get_secret_vault,
    reset_secret_vault,
)
from mcsession.exceptions import VaultError
from mcsession.types import TenantCredentials, VaultKey


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def credentials() -> TenantCredentials:
    """Create a full credential set."""
    return TenantCredentials(
        refresh_token="RT1",
        client_id="cid",
        client_secret="sec",
        authorization_endpoint="https://mc.example.com/v2/token",
    )


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


# ── MemorySecretVault ───────────────────────────────────────────────


class TestMemorySecretVault:
    """Tests for MemorySecretVault."""

    def test_set_get_delete(self) -> None:
        """Single secrets can be written, read and deleted."""
        vault = MemorySecretVault()

        async def scenario():
            await vault.set("Acme", VaultKey.REFRESH_TOKEN, "RT1")
            first = await vault.get("Acme", VaultKey.REFRESH_TOKEN)
            await vault.delete("Acme", VaultKey.REFRESH_TOKEN)
            second = await vault.get("Acme", VaultKey.REFRESH_TOKEN)
            return first, second

        assert _run(scenario()) == ("RT1", None)

    def test_delete_missing_is_noop(self) -> None:
        """Deleting an absent secret does not raise."""
        _run(MemorySecretVault().delete("Acme", VaultKey.CLIENT_ID))

    def test_account_layout(self, credentials: TenantCredentials) -> None:
        """Entries are stored as '<tenant>-<key>'."""
        vault = MemorySecretVault()
        _run(vault.save_credentials("Acme", credentials))
        assert vault.accounts() == [
            "Acme-authUri",
            "Acme-clientId",
            "Acme-clientSecret",
            "Acme-refreshToken",
        ]
        assert account_name("Acme", VaultKey.CLIENT_SECRET) == "Acme-clientSecret"

    def test_load_round_trip(self, credentials: TenantCredentials) -> None:
        """save_credentials then load_credentials yields the same set."""
        vault = MemorySecretVault()

        async def scenario():
            await vault.save_credentials("Acme", credentials)
            return await vault.load_credentials("Acme")

        assert _run(scenario()) == credentials

    def test_partial_set_is_absent(self, caplog: pytest.LogCaptureFixture) -> None:
        """A tenant with only some secrets is treated as having none."""
        vault = MemorySecretVault()

        async def scenario():
            await vault.set("Acme", VaultKey.REFRESH_TOKEN, "RT1")
            await vault.set("Acme", VaultKey.CLIENT_ID, "cid")
            return await vault.load_credentials("Acme")

        with caplog.at_level(logging.WARNING, logger="mcsession"):
            assert _run(scenario()) is None
        assert "Incomplete credential set" in caplog.text

    def test_purge_is_per_tenant(self, credentials: TenantCredentials) -> None:
        """purge removes exactly the four entries of one tenant."""
        vault = MemorySecretVault()

        async def scenario():
            await vault.save_credentials("Acme", credentials)
            await vault.save_credentials("Globex", credentials)
            await vault.purge("Acme")

        _run(scenario())
        assert all(name.startswith("Globex-") for name in vault.accounts())
        assert len(vault.accounts()) == 4


# ── KeyringSecretVault ──────────────────────────────────────────────


class TestKeyringSecretVault:
    """Tests for KeyringSecretVault with keyring patched."""

    def test_get_uses_service_and_account(self) -> None:
        """Reads go to the configured service with the tenant account name."""
        vault = KeyringSecretVault()
        with patch("keyring.get_password", return_value="RT1") as mock_get:
            value = _run(vault.get("Acme", VaultKey.REFRESH_TOKEN))

        assert value == "RT1"
        mock_get.assert_called_once_with("MC-API-Helper", "Acme-refreshToken")

    def test_set(self) -> None:
        """Writes pass the value through."""
        vault = KeyringSecretVault(service_name="Custom")
        with patch("keyring.set_password") as mock_set:
            _run(vault.set("Acme", VaultKey.CLIENT_ID, "cid"))

        mock_set.assert_called_once_with("Custom", "Acme-clientId", "cid")
        assert vault.service_name == "Custom"

    def test_delete_missing_entry_ignored(self) -> None:
        """PasswordDeleteError means the entry was already gone."""
        vault = KeyringSecretVault()
        with patch("keyring.delete_password", side_effect=PasswordDeleteError("missing")):
            _run(vault.delete("Acme", VaultKey.CLIENT_ID))

    def test_backend_failure_wrapped(self) -> None:
        """Other keyring errors become VaultError."""
        vault = KeyringSecretVault()
        with (
            patch("keyring.set_password", side_effect=KeyringError("locked")),
            pytest.raises(VaultError) as exc_info,
        ):
            _run(vault.set("Acme", VaultKey.REFRESH_TOKEN, "RT2"))

        assert exc_info.value.tenant == "Acme"
        assert exc_info.value.key == "refreshToken"
        assert "locked" in exc_info.value.message

    def test_purge_deletes_four_entries(self) -> None:
        """purge issues one delete per vault key."""
        vault = KeyringSecretVault()
        with patch("keyring.delete_password") as mock_delete:
            _run(vault.purge("Acme"))

        deleted = sorted(call.args[1] for call in mock_delete.call_args_list)
        assert deleted == ["Acme-authUri", "Acme-clientId", "Acme-clientSecret", "Acme-refreshToken"]


# ── Factory ─────────────────────────────────────────────────────────


class TestGetSecretVault:
    """Tests for the vault factory singleton."""

    def test_memory_backend(self) -> None:
        """The memory backend is a cached singleton."""
        vault = get_secret_vault("memory")
        assert isinstance(vault, MemorySecretVault)
        assert get_secret_vault("memory") is vault

    def test_keyring_backend(self) -> None:
        """The keyring backend receives the service name."""
        vault = get_secret_vault("keyring", service_name="Other")
        assert isinstance(vault, KeyringSecretVault)
        assert vault.service_name == "Other"

    def test_unknown_backend(self) -> None:
        """Unknown backends are rejected."""
        with pytest.raises(ValueError, match="Unknown secret vault backend"):
            get_secret_vault("file")

    def test_reset(self) -> None:
        """reset_secret_vault drops the singleton."""
        first = get_secret_vault("memory")
        reset_secret_vault()
        assert get_secret_vault("memory") is not first
