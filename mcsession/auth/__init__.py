"""OAuth2 session lifecycle for Marketing Cloud tenants.

Provides the secret vault, the token exchange client, the session
manager with single-flight refresh, and interactive login orchestration.
"""

from __future__ import annotations

from .callback_server import BrowserLoginSurface, OAuthCallbackServer
from .exchange import TokenExchangeClient, build_authorize_url, endpoint_base
from .flow import LoginFlowManager, LoginSurface
from .session import SessionManager
from .vault import (
    KeyringSecretVault,
    MemorySecretVault,
    SecretVault,
    get_secret_vault,
    reset_secret_vault,
)


__all__ = [
    "BrowserLoginSurface",
    "KeyringSecretVault",
    "LoginFlowManager",
    "LoginSurface",
    "MemorySecretVault",
    "OAuthCallbackServer",
    "SecretVault",
    "SessionManager",
    "TokenExchangeClient",
    "build_authorize_url",
    "endpoint_base",
    "get_secret_vault",
    "reset_secret_vault",
]
