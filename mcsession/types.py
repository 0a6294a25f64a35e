"""Type definitions for mcsession.

Shared value types passed between the vault, the token exchange
client, the session manager and the login flow.
"""

from __future__ import annotations

import dataclasses

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


#: Suffix the SOAP API expects after the instance URL.
SOAP_SERVICE_PATH = "Service.asmx"


class VaultKey(str, Enum):
    """Names of the four secrets stored per tenant."""

    REFRESH_TOKEN = "refreshToken"  # noqa: S105
    CLIENT_ID = "clientId"
    CLIENT_SECRET = "clientSecret"  # noqa: S105
    AUTHORIZATION_ENDPOINT = "authUri"


class FailureKind(str, Enum):
    """Classified reasons a usable token could not be produced."""

    MISSING_CREDENTIALS = "missing_credentials"
    INVALID_GRANT = "invalid_grant"
    NETWORK = "network"
    SERVER_ERROR = "server_error"
    IDENTITY_UNAVAILABLE = "identity_unavailable"
    LOGIN_CANCELLED = "login_cancelled"

    @property
    def is_transient(self) -> bool:
        """Whether a later retry may succeed without re-authentication."""
        return self in (FailureKind.NETWORK, FailureKind.SERVER_ERROR)


class AuthFlowState(str, Enum):
    """State of an interactive login flow."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class TenantCredentials:
    """Durable per-tenant secrets kept in the vault.

    Attributes
    ----------
    refresh_token : str
        Long-lived refresh token, rotated on every refresh.
    client_id : str
        OAuth2 client id of the tenant's installed package.
    client_secret : str
        OAuth2 client secret.
    authorization_endpoint : str
        The tenant's token endpoint URL.
    """

    refresh_token: str
    client_id: str
    client_secret: str
    authorization_endpoint: str

    def as_vault_items(self) -> dict[VaultKey, str]:
        """Map each field onto its vault key."""
        return {
            VaultKey.REFRESH_TOKEN: self.refresh_token,
            VaultKey.CLIENT_ID: self.client_id,
            VaultKey.CLIENT_SECRET: self.client_secret,
            VaultKey.AUTHORIZATION_ENDPOINT: self.authorization_endpoint,
        }

    @classmethod
    def from_vault_items(cls, items: dict[VaultKey, str | None]) -> TenantCredentials | None:
        """Build credentials from vault values, or None if any value is missing."""
        if any(not items.get(key) for key in VaultKey):
            return None
        return cls(
            refresh_token=str(items[VaultKey.REFRESH_TOKEN]),
            client_id=str(items[VaultKey.CLIENT_ID]),
            client_secret=str(items[VaultKey.CLIENT_SECRET]),
            authorization_endpoint=str(items[VaultKey.AUTHORIZATION_ENDPOINT]),
        )


@dataclass(frozen=True)
class Identity:
    """User and organization descriptors from the userinfo endpoint.

    Both mappings are opaque to this package.
    """

    user: dict[str, Any] = field(default_factory=dict)
    organization: dict[str, Any] = field(default_factory=dict)

    @property
    def organization_stack_key(self) -> str | None:
        """Stack key used by UI collaborators to build deep links."""
        value = self.organization.get("stack_key")
        return str(value) if value else None


@dataclass(frozen=True)
class TokenResponse:
    """Parsed token endpoint response.

    Attributes
    ----------
    access_token : str
        Opaque bearer token.
    expires_in : int
        Lifetime in seconds, never negative.
    refresh_token : str or None
        Rotated refresh token, if the server returned one.
    rest_instance_url : str or None
        Tenant REST base URL.
    soap_instance_url : str or None
        Tenant SOAP base URL.
    raw : dict[str, Any]
        The full JSON body.
    """

    access_token: str
    expires_in: int
    refresh_token: str | None = None
    rest_instance_url: str | None = None
    soap_instance_url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class ActiveSession:
    """The single hot session record.

    ``tenant_name`` is None exactly when every other field is empty.
    """

    tenant_name: str | None = None
    access_token: str | None = field(default=None, repr=False)
    expiry_timestamp: float = 0.0
    rest_endpoint: str | None = None
    soap_endpoint: str | None = None
    identity: Identity | None = None

    @property
    def is_empty(self) -> bool:
        """Whether no tenant is active."""
        return self.tenant_name is None

    def is_usable_for(self, tenant_name: str, now: float) -> bool:
        """Whether the cached token may be handed out for ``tenant_name``."""
        return (
            self.tenant_name == tenant_name
            and bool(self.access_token)
            and now < self.expiry_timestamp
        )

    def replace(self, **changes: Any) -> ActiveSession:
        """Return a copy with ``changes`` applied."""
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class ApiConfig:
    """A usable API configuration for one tenant."""

    tenant_name: str
    access_token: str = field(repr=False)
    expiry_timestamp: float
    rest_endpoint: str | None = None
    soap_endpoint: str | None = None
    identity: Identity | None = None

    @classmethod
    def from_session(cls, session: ActiveSession) -> ApiConfig:
        """Snapshot a populated session."""
        if session.tenant_name is None or not session.access_token:
            msg = "Cannot build an ApiConfig from an empty session"
            raise ValueError(msg)
        return cls(
            tenant_name=session.tenant_name,
            access_token=session.access_token,
            expiry_timestamp=session.expiry_timestamp,
            rest_endpoint=session.rest_endpoint,
            soap_endpoint=session.soap_endpoint,
            identity=session.identity,
        )

    @property
    def soap_service_url(self) -> str | None:
        """SOAP service URL, or None when the instance URL is unknown."""
        if not self.soap_endpoint:
            return None
        return f"{self.soap_endpoint}{SOAP_SERVICE_PATH}"

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the UI message boundary."""
        return {
            "access_token": self.access_token,
            "rest_uri": self.rest_endpoint,
            "soap_uri": self.soap_service_url,
            "user_info": self.identity.user if self.identity else None,
            "org_info": self.identity.organization if self.identity else None,
        }


@dataclass(frozen=True)
class RequiresLogin:
    """Returned when no usable token can be produced without interaction."""

    tenant_name: str
    kind: FailureKind
    reason: str

    @property
    def retryable(self) -> bool:
        """Whether stored credentials survived and a later retry may succeed."""
        return self.kind.is_transient


@dataclass(frozen=True)
class RefreshOutcome:
    """Result of one refresh exchange, shared by all single-flight waiters."""

    config: ApiConfig | None = None
    failure: FailureKind | None = None
    reason: str = ""

    @classmethod
    def failed(cls, failure: FailureKind, reason: str) -> RefreshOutcome:
        """Build a failed outcome."""
        return cls(failure=failure, reason=reason)

    def resolve(self, tenant_name: str) -> ApiConfig | RequiresLogin:
        """Turn the outcome into the caller-facing result."""
        if self.config is not None:
            return self.config
        return RequiresLogin(
            tenant_name=tenant_name,
            kind=self.failure or FailureKind.MISSING_CREDENTIALS,
            reason=self.reason or "Login required",
        )


@dataclass(frozen=True)
class LoginRequest:
    """Tenant configuration submitted by the UI to start a login.

    Attributes
    ----------
    tenant_name : str
        Name of the tenant (a "client" in the UI).
    authorization_endpoint : str
        Token endpoint URL, e.g. ``https://mc.example.com/v2/token``.
    client_id : str
        OAuth2 client id.
    client_secret : str
        OAuth2 client secret.
    """

    tenant_name: str
    authorization_endpoint: str
    client_id: str
    client_secret: str = field(repr=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> LoginRequest:
        """Parse the UI's tenant config, accepting snake or camel case keys."""

        def pick(*names: str) -> str:
            for name in names:
                value = payload.get(name)
                if value:
                    return str(value)
            msg = f"Missing required login field: {names[0]}"
            raise ValueError(msg)

        return cls(
            tenant_name=pick("tenant_name", "clientName"),
            authorization_endpoint=pick("authorization_endpoint", "authUri"),
            client_id=pick("client_id", "clientId"),
            client_secret=pick("client_secret", "clientSecret"),
        )


@dataclass(frozen=True)
class AuthorizationResult:
    """Result of driving the login surface to the redirect URI."""

    state: AuthFlowState
    code: str | None = field(default=None, repr=False)
    error: str | None = None


@dataclass
class LoginResult:
    """Result of a complete interactive login.

    Attributes
    ----------
    success : bool
        Whether tokens were obtained and stored.
    tenant_name : str
        The tenant that was logged in.
    state : AuthFlowState
        Final state of the flow.
    config : ApiConfig or None
        The new session config on success.
    tokens : TokenResponse or None
        The token response on success.
    identity : Identity or None
        Identity if the lookup succeeded.
    error : str or None
        Human-readable failure reason.
    failure : FailureKind or None
        Classified reason a failed login produced no session.
    degraded : FailureKind or None
        Set when the login succeeded without part of its result, e.g.
        ``identity_unavailable``.
    """

    success: bool
    tenant_name: str
    state: AuthFlowState
    config: ApiConfig | None = None
    tokens: TokenResponse | None = None
    identity: Identity | None = None
    error: str | None = None
    failure: FailureKind | None = None
    degraded: FailureKind | None = None
