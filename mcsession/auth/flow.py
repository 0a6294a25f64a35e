"""Interactive login flow orchestrator.

Provides LoginFlowManager, which drives a host-provided login surface
(an embedded web view, or the system browser plus a loopback callback
server) through the authorization-code redirect, exchanges the code,
and hands the resulting tokens to the SessionManager.

Surfaces report navigations and closure through callbacks that may fire
on any thread; they are marshalled back onto the event loop that started
the flow.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

from ..config import DEFAULT_REDIRECT_URI
from ..exceptions import (
    IdentityUnavailableError,
    LoginInProgressError,
    TokenExchangeError,
    VaultError,
)
from ..types import AuthFlowState, AuthorizationResult, FailureKind, LoginResult
from .exchange import build_authorize_url, endpoint_base


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..types import Identity, LoginRequest
    from .exchange import TokenExchangeClient
    from .session import SessionManager


logger = logging.getLogger("mcsession.auth")

_DEFAULT_SURFACE_CONFIG: dict[str, Any] = {
    "title": "Sign In",
    "width": 800,
    "height": 600,
    "modal": True,
}


class LoginSurface(ABC):
    """Host-provided surface that renders the authorization page.

    Implementations must call ``on_navigate`` with every URL the surface
    navigates or redirects to, and ``on_closed`` once when the surface is
    closed. Both callbacks are safe to call from any thread.
    """

    @abstractmethod
    def open(
        self,
        url: str,
        *,
        on_navigate: Callable[[str], None],
        on_closed: Callable[[], None],
        config: dict[str, Any],
    ) -> str:
        """Open the surface at ``url``.

        Parameters
        ----------
        url : str
            The authorization URL.
        on_navigate : callable
            Navigation callback, ``on_navigate(url: str) -> None``.
        on_closed : callable
            Closure callback, ``on_closed() -> None``.
        config : dict
            Presentation hints (title, width, height, modal).

        Returns
        -------
        str
            A label identifying the opened surface.
        """

    @abstractmethod
    def close(self, label: str) -> None:
        """Close a surface previously returned by ``open``."""


@dataclass
class _PendingLogin:
    """Bookkeeping for one login in progress."""

    flow_id: str
    future: asyncio.Future[AuthorizationResult]
    label: str | None = None


class LoginFlowManager:
    """Orchestrates interactive authorization-code logins.

    Parameters
    ----------
    session_manager : SessionManager
        Receives the tokens of a successful login.
    exchange : TokenExchangeClient
        Client used for the code exchange and identity lookup.
    surface : LoginSurface
        The host surface used to render the authorization page.
    redirect_uri : str
        Loopback redirect URI (default ``https://127.0.0.1:8443/callback``).
    login_timeout : float
        Seconds to wait for the redirect (default ``300``).
    """

    def __init__(
        self,
        session_manager: SessionManager,
        exchange: TokenExchangeClient,
        surface: LoginSurface,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
        login_timeout: float = 300.0,
    ) -> None:
        """Initialize the login flow manager."""
        self.session_manager = session_manager
        self.exchange = exchange
        self.surface = surface
        self.redirect_uri = redirect_uri
        self.login_timeout = login_timeout
        self._pending: dict[str, _PendingLogin] = {}

    def is_pending(self, tenant_name: str) -> bool:
        """Whether a login is currently running for ``tenant_name``."""
        return tenant_name in self._pending

    async def begin_login(
        self,
        tenant_name: str,
        authorization_endpoint: str,
        client_id: str,
        surface_config: dict[str, Any] | None = None,
    ) -> AuthorizationResult:
        """Drive the login surface until the authorization redirect.

        Parameters
        ----------
        tenant_name : str
            The tenant to log in.
        authorization_endpoint : str
            The tenant's token endpoint (the authorize URL is derived from it).
        client_id : str
            OAuth2 client id.
        surface_config : dict, optional
            Extra presentation hints for the surface.

        Returns
        -------
        AuthorizationResult
            ``completed`` with the code, ``cancelled`` if the surface was
            closed first, ``timed_out``, or ``failed`` with a reason.

        Raises
        ------
        LoginInProgressError
            If a login for this tenant is already pending.
        """
        if tenant_name in self._pending:
            msg = f"A login for {tenant_name} is already in progress"
            raise LoginInProgressError(msg, tenant=tenant_name, flow_id=self._pending[tenant_name].flow_id)

        loop = asyncio.get_running_loop()
        pending = _PendingLogin(flow_id=secrets.token_urlsafe(16), future=loop.create_future())
        self._pending[tenant_name] = pending

        def settle(result: AuthorizationResult) -> None:
            if not pending.future.done():
                pending.future.set_result(result)

        def post(result: AuthorizationResult) -> None:
            # Loop already closed when a surface reports late
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(settle, result)

        def on_navigate(url: str) -> None:
            if url.startswith(self.redirect_uri):
                post(self._parse_redirect(url))

        def on_closed() -> None:
            post(AuthorizationResult(AuthFlowState.CANCELLED, error="Login was cancelled"))

        authorize_url = build_authorize_url(authorization_endpoint, client_id, self.redirect_uri)
        logger.info("Login flow %s started for tenant %s", pending.flow_id, tenant_name)

        try:
            try:
                pending.label = self.surface.open(
                    authorize_url,
                    on_navigate=on_navigate,
                    on_closed=on_closed,
                    config={**_DEFAULT_SURFACE_CONFIG, **(surface_config or {})},
                )
            except Exception as exc:
                logger.exception("Could not open login surface for tenant %s", tenant_name)
                return AuthorizationResult(
                    AuthFlowState.FAILED,
                    error=f"Could not open the login window: {exc}",
                )

            try:
                result = await asyncio.wait_for(pending.future, timeout=self.login_timeout)
            except asyncio.TimeoutError:
                result = AuthorizationResult(
                    AuthFlowState.TIMED_OUT,
                    error=f"Login timed out after {self.login_timeout:.0f}s",
                )
        finally:
            del self._pending[tenant_name]
            if pending.label is not None:
                with contextlib.suppress(Exception):
                    self.surface.close(pending.label)

        logger.info("Login flow %s for tenant %s ended: %s", pending.flow_id, tenant_name, result.state.value)
        return result

    def cancel(self, tenant_name: str) -> bool:
        """Cancel the pending login for a tenant.

        Returns
        -------
        bool
            True if a pending login was cancelled.
        """
        pending = self._pending.get(tenant_name)
        if pending is None or pending.future.done():
            return False
        pending.future.set_result(
            AuthorizationResult(AuthFlowState.CANCELLED, error="Login was cancelled")
        )
        return True

    async def login(self, request: LoginRequest) -> LoginResult:
        """Run a complete interactive login for a tenant.

        Obtains an authorization code through the surface, exchanges it,
        looks up identity (best-effort) and stores the session.

        Parameters
        ----------
        request : LoginRequest
            The tenant configuration submitted by the UI.

        Returns
        -------
        LoginResult
            The outcome; failures carry a human-readable ``error``.
        """
        tenant = request.tenant_name
        try:
            authorization = await self.begin_login(tenant, request.authorization_endpoint, request.client_id)
        except LoginInProgressError as exc:
            return LoginResult(False, tenant, AuthFlowState.FAILED, error=exc.message)

        if authorization.state is not AuthFlowState.COMPLETED or not authorization.code:
            failure = FailureKind.LOGIN_CANCELLED if authorization.state is AuthFlowState.CANCELLED else None
            return LoginResult(False, tenant, authorization.state, error=authorization.error, failure=failure)

        try:
            tokens = await self.exchange.exchange_code(
                request.authorization_endpoint,
                request.client_id,
                request.client_secret,
                authorization.code,
                self.redirect_uri,
            )
        except TokenExchangeError as exc:
            logger.warning("Code exchange failed for tenant %s: %s", tenant, exc.message)
            return LoginResult(False, tenant, AuthFlowState.FAILED, error=exc.message, failure=exc.kind)

        identity: Identity | None = None
        try:
            identity = await self.exchange.fetch_identity(
                endpoint_base(request.authorization_endpoint), tokens.access_token
            )
        except IdentityUnavailableError as exc:
            logger.warning("Identity unavailable after login for tenant %s: %s", tenant, exc.message)

        try:
            config = await self.session_manager.complete_login(request, tokens, identity)
        except VaultError as exc:
            logger.exception("Could not store credentials for tenant %s", tenant)
            return LoginResult(
                False,
                tenant,
                AuthFlowState.FAILED,
                error=f"Could not store credentials securely: {exc.message}",
            )

        return LoginResult(
            True,
            tenant,
            AuthFlowState.COMPLETED,
            config=config,
            tokens=tokens,
            identity=identity,
            degraded=None if identity is not None else FailureKind.IDENTITY_UNAVAILABLE,
        )

    @staticmethod
    def _parse_redirect(url: str) -> AuthorizationResult:
        """Extract the authorization code (or error) from the redirect URL."""
        params = parse_qs(urlparse(url).query)
        error = params.get("error", [None])[0]
        if error:
            description = params.get("error_description", [None])[0] or error
            return AuthorizationResult(AuthFlowState.FAILED, error=f"Authorization failed: {description}")

        code = params.get("code", [None])[0]
        if not code:
            return AuthorizationResult(AuthFlowState.FAILED, error="No authorization code was received")
        return AuthorizationResult(AuthFlowState.COMPLETED, code=code)
