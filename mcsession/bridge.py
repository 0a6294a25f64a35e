"""Message boundary between the auth core and the UI layer.

AuthBridge exposes the three UI operations (start a login, request an
API config, log out) and reports their results as typed events on an
EventChannel. No exception crosses this boundary: failures become
``TokenReceived(success=False)`` or ``RequireLogin`` events.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging

from typing import TYPE_CHECKING, Any

from .auth.callback_server import BrowserLoginSurface
from .auth.exchange import TokenExchangeClient
from .auth.flow import LoginFlowManager
from .auth.session import SessionManager
from .auth.vault import get_secret_vault
from .config import get_settings
from .events import EventChannel, LogoutSuccess, RequireLogin, TokenReceived
from .sync_helpers import run_async, run_async_fire_and_forget
from .types import ApiConfig, LoginRequest


if TYPE_CHECKING:
    from collections.abc import Coroutine

    from .auth.flow import LoginSurface
    from .auth.vault import SecretVault
    from .config import McSessionSettings


logger = logging.getLogger("mcsession.bridge")

#: ``RequireLogin.kind`` published when logout could not clear the vault.
VAULT_ERROR_KIND = "vault_error"


class AuthBridge:
    """UI-facing facade over the session manager and login flow.

    Parameters
    ----------
    session_manager : SessionManager
        Owns the active session.
    login_flow : LoginFlowManager
        Runs interactive logins.
    channel : EventChannel, optional
        Channel results are published on (a new one by default).
    """

    def __init__(
        self,
        session_manager: SessionManager,
        login_flow: LoginFlowManager,
        channel: EventChannel | None = None,
    ) -> None:
        """Initialize the bridge."""
        self.session_manager = session_manager
        self.login_flow = login_flow
        self.channel = channel or EventChannel()
        self._tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_settings(
        cls,
        settings: McSessionSettings | None = None,
        surface: LoginSurface | None = None,
        vault: SecretVault | None = None,
        channel: EventChannel | None = None,
    ) -> AuthBridge:
        """Wire a bridge from settings.

        Parameters
        ----------
        settings : McSessionSettings, optional
            Defaults to ``get_settings()``.
        surface : LoginSurface, optional
            Defaults to the system browser with a loopback callback server.
        vault : SecretVault, optional
            Defaults to the configured vault backend.
        channel : EventChannel, optional
            Defaults to a new channel.

        Returns
        -------
        AuthBridge
        """
        settings = settings or get_settings()
        auth = settings.auth

        if vault is None:
            kwargs: dict[str, Any] = {}
            if settings.vault.backend == "keyring":
                kwargs["service_name"] = settings.vault.service_name
            vault = get_secret_vault(settings.vault.backend, **kwargs)

        if surface is None:
            surface = BrowserLoginSurface(
                redirect_uri=auth.redirect_uri,
                certfile=auth.callback_certfile,
                keyfile=auth.callback_keyfile,
                keyfile_password=auth.callback_keyfile_password,
            )

        exchange = TokenExchangeClient(
            request_timeout=auth.request_timeout_seconds,
            identity_timeout=auth.identity_timeout_seconds,
        )
        session_manager = SessionManager(
            vault,
            exchange,
            expiry_buffer_seconds=auth.expiry_buffer_seconds,
        )
        login_flow = LoginFlowManager(
            session_manager,
            exchange,
            surface,
            redirect_uri=auth.redirect_uri,
            login_timeout=auth.login_timeout_seconds,
        )
        return cls(session_manager, login_flow, channel)

    # ── UI operations ───────────────────────────────────────────────

    def start_login(self, tenant_config: LoginRequest | dict[str, Any]) -> None:
        """Start an interactive login without waiting for it.

        The outcome is published as a ``TokenReceived`` event.

        Parameters
        ----------
        tenant_config : LoginRequest or dict
            The tenant configuration; dict keys may be snake or camel case.
        """
        self._spawn(self.login(tenant_config))

    async def login(self, tenant_config: LoginRequest | dict[str, Any]) -> TokenReceived:
        """Run an interactive login and publish its ``TokenReceived`` event."""
        try:
            request = (
                tenant_config
                if isinstance(tenant_config, LoginRequest)
                else LoginRequest.from_payload(tenant_config)
            )
        except ValueError as exc:
            tenant = str(tenant_config.get("tenant_name") or tenant_config.get("clientName") or "")
            event = TokenReceived(success=False, tenant_name=tenant, error=str(exc))
            await self.channel.publish(event)
            return event

        try:
            result = await self.login_flow.login(request)
        except Exception as exc:
            logger.exception("Login for tenant %s failed unexpectedly", request.tenant_name)
            event = TokenReceived(success=False, tenant_name=request.tenant_name, error=str(exc))
        else:
            if result.success and result.config is not None:
                event = TokenReceived(
                    success=True,
                    tenant_name=request.tenant_name,
                    data=result.config.to_payload(),
                )
            else:
                event = TokenReceived(
                    success=False,
                    tenant_name=request.tenant_name,
                    error=result.error or "Login failed",
                )

        await self.channel.publish(event)
        return event

    async def get_api_config(self, tenant_name: str) -> dict[str, Any] | None:
        """Return a usable API config payload for the tenant.

        Publishes ``RequireLogin`` and returns None when the user has to
        log in. Returns None without publishing for an empty tenant name.

        Parameters
        ----------
        tenant_name : str
            The tenant the UI is asking about.

        Returns
        -------
        dict or None
            ``{access_token, rest_uri, soap_uri, user_info, org_info}``.
        """
        if not tenant_name:
            return None

        try:
            result = await self.session_manager.get_config(tenant_name)
        except Exception as exc:
            logger.exception("Could not produce an API config for tenant %s", tenant_name)
            await self.channel.publish(
                RequireLogin(tenant_name=tenant_name, reason=str(exc), kind="unexpected")
            )
            return None

        if isinstance(result, ApiConfig):
            return result.to_payload()

        logger.info("Login required for tenant %s: %s", tenant_name, result.reason)
        await self.channel.publish(
            RequireLogin(
                tenant_name=tenant_name,
                reason=result.reason,
                kind=result.kind.value,
                retryable=result.retryable,
            )
        )
        return None

    def logout(self, tenant_name: str) -> None:
        """Log a tenant out without waiting.

        Completion is published as a ``LogoutSuccess`` event.
        """
        self._spawn(self.logout_tenant(tenant_name))

    async def logout_tenant(self, tenant_name: str) -> bool:
        """Log a tenant out and publish ``LogoutSuccess`` on success.

        When the stored secrets cannot be removed the hot session is still
        dropped, and ``RequireLogin`` with kind ``vault_error`` is published
        instead.

        Returns
        -------
        bool
            True if the tenant's credentials were removed.
        """
        try:
            await self.session_manager.logout(tenant_name)
        except Exception as exc:
            logger.exception("Logout failed for tenant %s", tenant_name)
            await self.channel.publish(
                RequireLogin(
                    tenant_name=tenant_name,
                    reason=f"Logged out of {tenant_name}, but its stored credentials could not be removed ({exc})",
                    kind=VAULT_ERROR_KIND,
                )
            )
            return False
        await self.channel.publish(LogoutSuccess(tenant_name=tenant_name))
        return True

    # ── Blocking variants ───────────────────────────────────────────

    def get_api_config_blocking(self, tenant_name: str, timeout: float | None = 60.0) -> dict[str, Any] | None:
        """Blocking ``get_api_config`` for callers without an event loop."""
        return run_async(self.get_api_config(tenant_name), timeout=timeout)

    def login_blocking(
        self,
        tenant_config: LoginRequest | dict[str, Any],
        timeout: float | None = None,
    ) -> TokenReceived:
        """Blocking ``login`` for callers without an event loop."""
        return run_async(self.login(tenant_config), timeout=timeout)

    def logout_blocking(self, tenant_name: str, timeout: float | None = 60.0) -> bool:
        """Blocking ``logout_tenant`` for callers without an event loop."""
        return run_async(self.logout_tenant(tenant_name), timeout=timeout)

    # ── Lifecycle ───────────────────────────────────────────────────

    async def drain(self) -> None:
        """Wait for every fire-and-forget operation started on this loop."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Finish pending operations and release the HTTP client."""
        await self.drain()
        await self.session_manager.close()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Schedule ``coro`` on the running loop, or on the background loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            run_async_fire_and_forget(coro)
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
