"""Demo: tenant sign-in and transparent refresh with mcsession.

Demonstrates the UI-facing patterns:

- ``AuthBridge.from_settings()`` to wire vault, exchange and login surface
- subscribing to ``token-received``, ``require-login`` and ``logout-success``
- ``get_api_config`` returning a cached or refreshed config
- ``start_login`` when the tenant has no usable grant

Setup
-----
1. Install the package in your Marketing Cloud tenant and register
   ``https://127.0.0.1:8443/callback`` as its redirect URI.
2. Point the loopback server at a certificate for 127.0.0.1::

       export MCSESSION_AUTH__CALLBACK_CERTFILE=/path/to/cert.pem
       export MCSESSION_AUTH__CALLBACK_KEYFILE=/path/to/key.pem

3. Export the tenant configuration::

       export MC_TENANT="Acme"
       export MC_AUTH_URI="https://<subdomain>.auth.marketingcloudapis.com/v2/token"
       export MC_CLIENT_ID="your-client-id"
       export MC_CLIENT_SECRET="your-client-secret"

4. Run::

       python examples/mcsession_demo_login.py
"""

from __future__ import annotations

import asyncio
import os
import sys

from mcsession import AuthBridge, LogoutSuccess, RequireLogin, TokenReceived
from mcsession.log import configure


TENANT = os.environ.get("MC_TENANT", "")
TENANT_CONFIG = {
    "tenant_name": TENANT,
    "authorization_endpoint": os.environ.get("MC_AUTH_URI", ""),
    "client_id": os.environ.get("MC_CLIENT_ID", ""),
    "client_secret": os.environ.get("MC_CLIENT_SECRET", ""),
}


async def main() -> int:
    """Get a config for the tenant, logging in first if needed."""
    bridge = AuthBridge.from_settings()
    login_done = asyncio.Event()

    def on_token(event: TokenReceived) -> None:
        if event.success:
            print(f"Signed in to {event.tenant_name}")
        else:
            print(f"Sign-in failed: {event.error}")
        login_done.set()

    def on_require_login(event: RequireLogin) -> None:
        print(f"{event.tenant_name} needs a login: {event.reason}")

    bridge.channel.subscribe(TokenReceived, on_token)
    bridge.channel.subscribe(RequireLogin, on_require_login)
    bridge.channel.subscribe(LogoutSuccess, lambda e: print(f"Logged out {e.tenant_name}"))

    try:
        config = await bridge.get_api_config(TENANT)
        if config is None:
            bridge.start_login(TENANT_CONFIG)
            await login_done.wait()
            config = await bridge.get_api_config(TENANT)

        if config is None:
            return 1

        print(f"REST endpoint: {config['rest_uri']}")
        print(f"SOAP endpoint: {config['soap_uri']}")
        org = config.get("org_info") or {}
        if org.get("stack_key"):
            print(f"Stack: {org['stack_key']}")
        return 0
    finally:
        await bridge.close()


if __name__ == "__main__":
    if not all(TENANT_CONFIG.values()):
        print("Set MC_TENANT, MC_AUTH_URI, MC_CLIENT_ID and MC_CLIENT_SECRET first.")
        sys.exit(2)
    configure("INFO")
    sys.exit(asyncio.run(main()))
