"""Pluggable secret vault backends.

Provides the SecretVault ABC and concrete implementations backed by
the OS credential store (via ``keyring``) and by process memory.

Each tenant owns four secrets (see ``VaultKey``). Writes are atomic per
key only; ``load_credentials`` treats a partial set as absent.
"""

from __future__ import annotations

import asyncio
import logging
import threading

from abc import ABC, abstractmethod
from typing import Any

import keyring

from keyring.errors import KeyringError, PasswordDeleteError

from ..config import DEFAULT_VAULT_SERVICE_NAME
from ..exceptions import VaultError
from ..types import TenantCredentials, VaultKey


logger = logging.getLogger("mcsession.auth")


def account_name(tenant: str, key: VaultKey) -> str:
    """Build the credential store account name for a tenant secret."""
    return f"{tenant}-{key.value}"


class SecretVault(ABC):
    """Abstract base class for per-tenant secret storage.

    All methods are async so blocking OS credential store calls can be
    moved off the event loop.
    """

    @abstractmethod
    async def get(self, tenant: str, key: VaultKey) -> str | None:
        """Read one secret.

        Parameters
        ----------
        tenant : str
            Tenant name.
        key : VaultKey
            Which secret to read.

        Returns
        -------
        str or None
            The stored value, or None if not found.
        """

    @abstractmethod
    async def set(self, tenant: str, key: VaultKey, value: str) -> None:
        """Write one secret, replacing any previous value.

        Parameters
        ----------
        tenant : str
            Tenant name.
        key : VaultKey
            Which secret to write.
        value : str
            The secret value.
        """

    @abstractmethod
    async def delete(self, tenant: str, key: VaultKey) -> None:
        """Delete one secret. Deleting a missing secret is not an error.

        Parameters
        ----------
        tenant : str
            Tenant name.
        key : VaultKey
            Which secret to delete.
        """

    async def load_credentials(self, tenant: str) -> TenantCredentials | None:
        """Load the full credential set for a tenant.

        Returns
        -------
        TenantCredentials or None
            The credentials, or None when any of the four secrets is missing.
        """
        items = {key: await self.get(tenant, key) for key in VaultKey}
        credentials = TenantCredentials.from_vault_items(items)
        if credentials is None and any(items.values()):
            logger.warning("Incomplete credential set for tenant %s, treating as absent", tenant)
        return credentials

    async def save_credentials(self, tenant: str, credentials: TenantCredentials) -> None:
        """Write all four secrets for a tenant."""
        for key, value in credentials.as_vault_items().items():
            await self.set(tenant, key, value)

    async def purge(self, tenant: str) -> None:
        """Delete all four secrets for a tenant."""
        for key in VaultKey:
            await self.delete(tenant, key)
        logger.debug("Purged stored credentials for tenant %s", tenant)


class MemorySecretVault(SecretVault):
    """In-memory secret vault for tests and headless use.

    Thread-safe via asyncio.Lock.
    """

    def __init__(self) -> None:
        """Initialize the memory vault."""
        self._secrets: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, tenant: str, key: VaultKey) -> str | None:
        """Read a secret from memory."""
        async with self._lock:
            return self._secrets.get(account_name(tenant, key))

    async def set(self, tenant: str, key: VaultKey, value: str) -> None:
        """Write a secret to memory."""
        async with self._lock:
            self._secrets[account_name(tenant, key)] = value

    async def delete(self, tenant: str, key: VaultKey) -> None:
        """Delete a secret from memory."""
        async with self._lock:
            self._secrets.pop(account_name(tenant, key), None)

    def accounts(self) -> list[str]:
        """List stored account names."""
        return sorted(self._secrets)


class KeyringSecretVault(SecretVault):
    """OS credential store vault backed by ``keyring``.

    Parameters
    ----------
    service_name : str
        Service name for credential store entries (default ``"MC-API-Helper"``).
    """

    def __init__(self, service_name: str = DEFAULT_VAULT_SERVICE_NAME) -> None:
        """Initialize the keyring vault."""
        self._service_name = service_name

    @property
    def service_name(self) -> str:
        """Service name used for every entry."""
        return self._service_name

    async def get(self, tenant: str, key: VaultKey) -> str | None:
        """Read a secret from the OS credential store."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None,
                keyring.get_password,
                self._service_name,
                account_name(tenant, key),
            )
        except KeyringError as exc:
            msg = f"Failed to read secret from credential store: {exc}"
            raise VaultError(msg, tenant=tenant, key=key.value) from exc

    async def set(self, tenant: str, key: VaultKey, value: str) -> None:
        """Write a secret to the OS credential store."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                keyring.set_password,
                self._service_name,
                account_name(tenant, key),
                value,
            )
        except KeyringError as exc:
            msg = f"Failed to write secret to credential store: {exc}"
            raise VaultError(msg, tenant=tenant, key=key.value) from exc

    async def delete(self, tenant: str, key: VaultKey) -> None:
        """Delete a secret from the OS credential store."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                keyring.delete_password,
                self._service_name,
                account_name(tenant, key),
            )
        except PasswordDeleteError:
            # Entry did not exist
            return
        except KeyringError as exc:
            msg = f"Failed to delete secret from credential store: {exc}"
            raise VaultError(msg, tenant=tenant, key=key.value) from exc


_vault_instance: SecretVault | None = None
_vault_lock = threading.Lock()


def get_secret_vault(backend: str = "keyring", **kwargs: Any) -> SecretVault:
    """Factory function for secret vaults.

    Returns a singleton instance. Call ``reset_secret_vault()`` to clear
    the cached instance (e.g. in tests).

    Parameters
    ----------
    backend : str
        Storage backend: "keyring" or "memory".
    **kwargs : Any
        Additional keyword arguments passed to the vault constructor.

    Returns
    -------
    SecretVault
        A configured vault instance.
    """
    global _vault_instance  # noqa: PLW0603

    with _vault_lock:
        if _vault_instance is not None:
            return _vault_instance

        if backend == "memory":
            _vault_instance = MemorySecretVault()
        elif backend == "keyring":
            service_name = kwargs.get("service_name", DEFAULT_VAULT_SERVICE_NAME)
            _vault_instance = KeyringSecretVault(service_name=service_name)
        else:
            msg = f"Unknown secret vault backend: {backend}"
            raise ValueError(msg)

        return _vault_instance


def reset_secret_vault() -> None:
    """Reset the singleton vault instance."""
    global _vault_instance  # noqa: PLW0603

    with _vault_lock:
        _vault_instance = None
