"""mcsession - OAuth2 session lifecycle for multi-tenant Marketing Cloud clients.

Keeps per-tenant secrets in the OS credential store, refreshes access
tokens transparently, and runs the interactive login when a tenant has
no usable grant.
"""

from .auth import (
    BrowserLoginSurface,
    KeyringSecretVault,
    LoginFlowManager,
    LoginSurface,
    MemorySecretVault,
    SecretVault,
    SessionManager,
    TokenExchangeClient,
    get_secret_vault,
)
from .bridge import AuthBridge
from .config import McSessionSettings, get_settings
from .events import EventChannel, LogoutSuccess, RequireLogin, TokenReceived
from .exceptions import (
    McSessionException,
    RevokedGrantError,
    TokenExchangeError,
    TransientAuthError,
    VaultError,
)
from .types import (
    ActiveSession,
    ApiConfig,
    FailureKind,
    Identity,
    LoginRequest,
    LoginResult,
    RequiresLogin,
    TenantCredentials,
    TokenResponse,
)


__version__ = "1.0.0"

__all__ = [
    "ActiveSession",
    "ApiConfig",
    "AuthBridge",
    "BrowserLoginSurface",
    "EventChannel",
    "FailureKind",
    "Identity",
    "KeyringSecretVault",
    "LoginFlowManager",
    "LoginRequest",
    "LoginResult",
    "LoginSurface",
    "LogoutSuccess",
    "McSessionException",
    "McSessionSettings",
    "MemorySecretVault",
    "RequireLogin",
    "RequiresLogin",
    "RevokedGrantError",
    "SecretVault",
    "SessionManager",
    "TenantCredentials",
    "TokenExchangeClient",
    "TokenExchangeError",
    "TokenReceived",
    "TransientAuthError",
    "VaultError",
    "__version__",
    "get_secret_vault",
    "get_settings",
]
