"""mcsession exception hierarchy.

All mcsession-specific exceptions inherit from McSessionException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any

from .types import FailureKind


class McSessionException(Exception):
    """Base exception for all mcsession errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize mcsession exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (tenant, key, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class VaultError(McSessionException):
    """Credential store operation failed.

    Raised when the OS credential store rejects a read or write.
    """

    def __init__(
        self,
        message: str,
        tenant: str | None = None,
        key: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize vault error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        tenant : str, optional
            The tenant whose entry was being accessed.
        key : str, optional
            The vault key involved.
        **context : Any
            Additional context.
        """
        super().__init__(message, tenant=tenant, key=key, **context)
        self.tenant = tenant
        self.key = key


class AuthenticationError(McSessionException):
    """Base exception for all authentication failures.

    Raised when an authentication operation fails, including
    the interactive login flow, token exchange, or session management.
    """

    def __init__(
        self,
        message: str,
        tenant: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        tenant : str, optional
            The tenant the operation was running for.
        flow_id : str, optional
            The unique identifier of the login flow that failed.
        **context : Any
            Additional context.
        """
        super().__init__(message, tenant=tenant, flow_id=flow_id, **context)
        self.tenant = tenant
        self.flow_id = flow_id


class AuthFlowCancelled(AuthenticationError):
    """Login flow was cancelled.

    Raised when the user closes the login surface before the
    redirect is reached, or the flow is explicitly aborted.
    """


class AuthFlowTimeout(AuthenticationError):
    """Login flow timed out.

    Raised when the wait for the authorization redirect
    exceeds the configured timeout.
    """

    def __init__(
        self,
        message: str,
        timeout: float,
        tenant: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize timeout error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The timeout value in seconds.
        tenant : str, optional
            The tenant being logged in.
        flow_id : str, optional
            The unique identifier of the login flow.
        **context : Any
            Additional context.
        """
        super().__init__(message, tenant=tenant, flow_id=flow_id, timeout=timeout, **context)
        self.timeout = timeout


class LoginInProgressError(AuthenticationError):
    """A login flow is already pending for this tenant."""


class TokenError(AuthenticationError):
    """Base exception for token-related failures."""


class MissingCredentialsError(TokenError):
    """No complete credential set is stored for the tenant."""


class TokenExchangeError(TokenError):
    """A token endpoint exchange failed.

    Carries the classified failure kind so callers can decide
    whether stored secrets must be purged.
    """

    def __init__(
        self,
        message: str,
        kind: FailureKind,
        tenant: str | None = None,
        status_code: int | None = None,
        **context: Any,
    ) -> None:
        """Initialize exchange error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        kind : FailureKind
            The classified failure kind.
        tenant : str, optional
            The tenant the exchange was for.
        status_code : int, optional
            HTTP status code when the server answered.
        **context : Any
            Additional context.
        """
        super().__init__(message, tenant=tenant, kind=kind.value, status_code=status_code, **context)
        self.kind = kind
        self.status_code = status_code


class RevokedGrantError(TokenExchangeError):
    """The server rejected the grant (revoked or expired refresh token)."""

    def __init__(
        self,
        message: str,
        tenant: str | None = None,
        status_code: int | None = None,
        **context: Any,
    ) -> None:
        """Initialize revoked grant error."""
        super().__init__(
            message,
            FailureKind.INVALID_GRANT,
            tenant=tenant,
            status_code=status_code,
            **context,
        )


class TransientAuthError(TokenExchangeError):
    """Network failure or server-side error; stored secrets stay valid."""


class IdentityUnavailableError(TokenError):
    """The identity lookup failed.

    Non-fatal: sessions proceed without identity.
    """
