"""Session manager with transparent token refresh.

Owns the single ``ActiveSession`` record and decides, per request, whether
the cached access token is usable, whether a refresh exchange is needed,
or whether the caller has to log in interactively.

Refreshes are single-flight per tenant: concurrent callers for the same
tenant share one ``asyncio.Task`` and receive the same outcome. The state
lock is never held across a network call; results are committed only if
the tenant was not invalidated (logout, revoked grant, new login) while
the exchange was outstanding.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import time

from typing import TYPE_CHECKING

from ..config import DEFAULT_EXPIRY_BUFFER_SECONDS
from ..exceptions import (
    IdentityUnavailableError,
    RevokedGrantError,
    TransientAuthError,
    VaultError,
)
from ..types import (
    ActiveSession,
    ApiConfig,
    FailureKind,
    RefreshOutcome,
    TenantCredentials,
    VaultKey,
)
from .exchange import endpoint_base


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..types import Identity, LoginRequest, RequiresLogin, TokenResponse
    from .exchange import TokenExchangeClient
    from .vault import SecretVault


logger = logging.getLogger("mcsession.auth")

MISSING_CREDENTIALS_REASON = "missing credentials"


class SessionManager:
    """Manages the active tenant session and its refresh lifecycle.

    Parameters
    ----------
    vault : SecretVault
        Durable store for per-tenant secrets.
    exchange : TokenExchangeClient
        Client for the tenant authorization servers.
    expiry_buffer_seconds : int
        Seconds subtracted from ``expires_in`` at acquisition time
        (default ``300``).
    clock : callable, optional
        Returns the current epoch time in seconds (default ``time.time``).
    """

    def __init__(
        self,
        vault: SecretVault,
        exchange: TokenExchangeClient,
        expiry_buffer_seconds: int = DEFAULT_EXPIRY_BUFFER_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the session manager."""
        self.vault = vault
        self.exchange = exchange
        self.expiry_buffer_seconds = expiry_buffer_seconds
        self._clock = clock or time.time

        self._lock = asyncio.Lock()
        self._session = ActiveSession()
        self._inflight: dict[str, asyncio.Task[RefreshOutcome]] = {}
        self._generations: dict[str, int] = {}
        self._backfilled_token: str | None = None

    @property
    def active_tenant(self) -> str | None:
        """Name of the tenant whose session is hot, if any."""
        return self._session.tenant_name

    def snapshot(self) -> ActiveSession:
        """Return the current session record (immutable)."""
        return self._session

    def expiry_for(self, expires_in: int) -> float:
        """Absolute instant after which a token acquired now is stale."""
        return self._clock() + (expires_in - self.expiry_buffer_seconds)

    async def get_config(self, tenant_name: str) -> ApiConfig | RequiresLogin:
        """Get a usable API config for a tenant.

        Returns the cached config when the active session belongs to the
        tenant and has not reached its buffered expiry. Otherwise refreshes
        with the stored refresh token, sharing any refresh already in
        flight for the same tenant. A cached session without identity gets
        one identity lookup per access token.

        Parameters
        ----------
        tenant_name : str
            The tenant to get a config for.

        Returns
        -------
        ApiConfig or RequiresLogin
            A usable config, or the reason interactive login is required.
        """
        cached: ApiConfig | None = None
        async with self._lock:
            if self._session.is_usable_for(tenant_name, self._clock()):
                cached = ApiConfig.from_session(self._session)
                if cached.identity is not None or self._backfilled_token == cached.access_token:
                    return cached
                # One identity lookup per access token
                self._backfilled_token = cached.access_token
            else:
                task = self._inflight.get(tenant_name)
                if task is None:
                    logger.debug("Refresh needed for tenant %s", tenant_name)
                    task = asyncio.create_task(self._refresh(tenant_name))
                    self._inflight[tenant_name] = task
                    task.add_done_callback(lambda t, name=tenant_name: self._forget_inflight(name, t))
                else:
                    logger.debug("Joining in-flight refresh for tenant %s", tenant_name)

        if cached is not None:
            return await self._backfill_identity(tenant_name, cached)

        outcome = await asyncio.shield(task)
        return outcome.resolve(tenant_name)

    async def complete_login(
        self,
        request: LoginRequest,
        tokens: TokenResponse,
        identity: Identity | None = None,
    ) -> ApiConfig:
        """Store the result of an interactive login and activate the session.

        Writes all four tenant secrets and replaces the active session
        wholesale. Any refresh in flight for the tenant is invalidated.

        Parameters
        ----------
        request : LoginRequest
            The tenant configuration the login ran with.
        tokens : TokenResponse
            The authorization-code exchange result.
        identity : Identity, optional
            Identity from the userinfo lookup.

        Returns
        -------
        ApiConfig
            The config for the new session.
        """
        tenant = request.tenant_name
        async with self._lock:
            self._invalidate(tenant)
            if tokens.refresh_token:
                await self.vault.save_credentials(
                    tenant,
                    TenantCredentials(
                        refresh_token=tokens.refresh_token,
                        client_id=request.client_id,
                        client_secret=request.client_secret,
                        authorization_endpoint=request.authorization_endpoint,
                    ),
                )
            else:
                # Without a refresh token the session cannot outlive the access token
                logger.warning("Login for tenant %s returned no refresh token", tenant)
                await self.vault.purge(tenant)

            self._switch_to(tenant)
            self._session = ActiveSession(
                tenant_name=tenant,
                access_token=tokens.access_token,
                expiry_timestamp=self.expiry_for(tokens.expires_in),
                rest_endpoint=tokens.rest_instance_url,
                soap_endpoint=tokens.soap_instance_url,
                identity=identity,
            )
            logger.info("Session established for tenant %s", tenant)
            return ApiConfig.from_session(self._session)

    async def logout(self, tenant_name: str) -> None:
        """Forget a tenant's stored credentials and its hot session.

        Parameters
        ----------
        tenant_name : str
            The tenant to log out.

        Raises
        ------
        VaultError
            If the stored secrets could not be removed. The hot session is
            dropped regardless.
        """
        async with self._lock:
            self._invalidate(tenant_name)
            try:
                await self.vault.purge(tenant_name)
            finally:
                if self._session.tenant_name == tenant_name:
                    self._session = ActiveSession()
        logger.info("Tenant %s logged out", tenant_name)

    async def close(self) -> None:
        """Wait out in-flight refreshes and close the HTTP client."""
        pending = list(self._inflight.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self.exchange.close()

    async def _refresh(self, tenant_name: str) -> RefreshOutcome:
        """Run one refresh exchange for a tenant and commit the result."""
        async with self._lock:
            generation = self._generations.get(tenant_name, 0)

        try:
            credentials = await self.vault.load_credentials(tenant_name)
        except VaultError as exc:
            logger.error("Could not read credentials for tenant %s: %s", tenant_name, exc)
            return RefreshOutcome.failed(
                FailureKind.MISSING_CREDENTIALS,
                f"Stored credentials for {tenant_name} could not be read, login required",
            )
        if credentials is None:
            return RefreshOutcome.failed(
                FailureKind.MISSING_CREDENTIALS,
                f"{MISSING_CREDENTIALS_REASON} for {tenant_name}, login required",
            )

        try:
            tokens = await self.exchange.exchange_refresh_token(
                credentials.authorization_endpoint,
                credentials.client_id,
                credentials.client_secret,
                credentials.refresh_token,
            )
        except RevokedGrantError as exc:
            logger.warning("Refresh grant rejected for tenant %s: %s", tenant_name, exc.message)
            async with self._lock:
                if self._generations.get(tenant_name, 0) != generation:
                    return self._superseded_outcome(
                        tenant_name,
                        FailureKind.INVALID_GRANT,
                        f"Session expired or was revoked, please log in again ({exc.message})",
                    )
                self._invalidate(tenant_name)
                try:
                    await self.vault.purge(tenant_name)
                except VaultError:
                    logger.exception("Could not purge credentials for tenant %s", tenant_name)
                if self._session.tenant_name == tenant_name:
                    self._session = ActiveSession()
            return RefreshOutcome.failed(
                FailureKind.INVALID_GRANT,
                f"Session expired or was revoked, please log in again ({exc.message})",
            )
        except TransientAuthError as exc:
            logger.warning("Refresh failed transiently for tenant %s: %s", tenant_name, exc.message)
            return RefreshOutcome.failed(
                exc.kind,
                f"Could not reach the authorization server, try again later ({exc.message})",
            )

        identity = await self._fetch_identity(credentials.authorization_endpoint, tokens.access_token)

        async with self._lock:
            if self._generations.get(tenant_name, 0) != generation:
                logger.info("Discarding refresh result for invalidated tenant %s", tenant_name)
                return self._superseded_outcome(
                    tenant_name,
                    FailureKind.MISSING_CREDENTIALS,
                    f"Session for {tenant_name} was closed while refreshing, login required",
                )

            if tokens.refresh_token:
                try:
                    await self.vault.set(tenant_name, VaultKey.REFRESH_TOKEN, tokens.refresh_token)
                except VaultError:
                    logger.exception("Could not store rotated refresh token for tenant %s", tenant_name)

            self._switch_to(tenant_name)
            previous = self._session
            self._session = ActiveSession(
                tenant_name=tenant_name,
                access_token=tokens.access_token,
                expiry_timestamp=self.expiry_for(tokens.expires_in),
                rest_endpoint=tokens.rest_instance_url or previous.rest_endpoint,
                soap_endpoint=tokens.soap_instance_url or previous.soap_endpoint,
                identity=identity or previous.identity,
            )
            logger.info("Access token refreshed for tenant %s", tenant_name)
            return RefreshOutcome(config=ApiConfig.from_session(self._session))

    async def _fetch_identity(self, authorization_endpoint: str, access_token: str) -> Identity | None:
        """Best-effort identity lookup."""
        try:
            return await self.exchange.fetch_identity(endpoint_base(authorization_endpoint), access_token)
        except IdentityUnavailableError as exc:
            logger.warning("Identity unavailable, continuing without it: %s", exc.message)
            return None

    async def _backfill_identity(self, tenant_name: str, config: ApiConfig) -> ApiConfig:
        """Look up the identity a cached session started without.

        Returns ``config`` unchanged when the lookup fails or the session
        was replaced meanwhile.
        """
        try:
            endpoint = await self.vault.get(tenant_name, VaultKey.AUTHORIZATION_ENDPOINT)
        except VaultError as exc:
            logger.warning("Could not read endpoint for identity lookup of tenant %s: %s", tenant_name, exc)
            return config
        if not endpoint:
            return config

        identity = await self._fetch_identity(endpoint, config.access_token)
        if identity is None:
            return config

        async with self._lock:
            current = self._session
            if current.tenant_name != tenant_name or current.access_token != config.access_token:
                return config
            self._session = current.replace(identity=identity)
            logger.info("Identity recovered for tenant %s", tenant_name)
            return ApiConfig.from_session(self._session)

    def _superseded_outcome(self, tenant_name: str, failure: FailureKind, reason: str) -> RefreshOutcome:
        """Outcome for a refresh whose tenant was invalidated meanwhile.

        A login that completed during the exchange wins, so its session is
        handed to the waiters. Must be called with the state lock held.
        """
        if self._session.is_usable_for(tenant_name, self._clock()):
            return RefreshOutcome(config=ApiConfig.from_session(self._session))
        return RefreshOutcome.failed(failure, reason)

    def _switch_to(self, tenant_name: str) -> None:
        """Clear the session record if it belongs to another tenant.

        Must be called with the state lock held.
        """
        current = self._session.tenant_name
        if current is not None and current != tenant_name:
            logger.info("Switching active tenant from %s to %s", current, tenant_name)
            self._session = ActiveSession()

    def _invalidate(self, tenant_name: str) -> None:
        """Bump the tenant generation so in-flight results are discarded.

        Must be called with the state lock held.
        """
        self._generations[tenant_name] = self._generations.get(tenant_name, 0) + 1

    def _forget_inflight(self, tenant_name: str, task: asyncio.Task[RefreshOutcome]) -> None:
        """Drop a finished refresh task from the in-flight map."""
        if self._inflight.get(tenant_name) is task:
            del self._inflight[tenant_name]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Refresh task for tenant %s failed", tenant_name, exc_info=task.exception())
