"""Command-line interface for mcsession.

Log a tenant in through the system browser, print a usable API config,
log out, and inspect the effective settings.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import os
import sys

from pathlib import Path
from typing import TYPE_CHECKING, Any

from .bridge import AuthBridge
from .config import _REDACTED, get_settings
from .events import RequireLogin
from .log import configure


if TYPE_CHECKING:
    from .events import AuthEvent


def main() -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="mcsession",
        description="Marketing Cloud session and credential tools",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Log level (uses config default)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # login command
    login_parser = subparsers.add_parser(
        "login",
        help="Log a tenant in through the system browser",
    )
    login_parser.add_argument("tenant", type=str, help="Tenant name")
    login_parser.add_argument(
        "--auth-uri",
        type=str,
        required=True,
        help="Token endpoint, e.g. https://mc.example.com/v2/token",
    )
    login_parser.add_argument("--client-id", type=str, required=True, help="OAuth2 client id")
    login_parser.add_argument(
        "--client-secret",
        type=str,
        default=None,
        help="OAuth2 client secret (default: $MCSESSION_CLIENT_SECRET or prompt)",
    )

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Print a usable API config for a tenant, refreshing if needed",
    )
    config_parser.add_argument("tenant", type=str, help="Tenant name")
    config_parser.add_argument(
        "--show-token",
        action="store_true",
        help="Print the access token instead of redacting it",
    )

    # logout command
    logout_parser = subparsers.add_parser(
        "logout",
        help="Remove a tenant's stored credentials",
    )
    logout_parser.add_argument("tenant", type=str, help="Tenant name")

    # settings command
    settings_parser = subparsers.add_parser(
        "settings",
        help="Show effective settings",
    )
    settings_parser.add_argument(
        "--sources",
        action="store_true",
        help="Show configuration file sources",
    )

    args = parser.parse_args()

    settings = get_settings()
    configure(args.log_level or settings.log.level, settings.log.format)

    if args.command == "login":
        return handle_login(args)
    if args.command == "config":
        return handle_config(args)
    if args.command == "logout":
        return handle_logout(args)
    if args.command == "settings":
        return handle_settings(args)
    parser.print_help()
    return 0


def handle_login(args: argparse.Namespace) -> int:
    """Handle the login command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    secret = args.client_secret or os.environ.get("MCSESSION_CLIENT_SECRET")
    if not secret:
        secret = getpass.getpass("Client secret: ")

    bridge = AuthBridge.from_settings()
    request = {
        "tenant_name": args.tenant,
        "authorization_endpoint": args.auth_uri,
        "client_id": args.client_id,
        "client_secret": secret,
    }

    print(f"Opening the browser to sign in to {args.tenant}...")
    event = asyncio.run(_with_bridge(bridge, bridge.login(request)))

    if not event.success:
        print(f"Login failed: {event.error}", file=sys.stderr)
        return 1

    data = event.data or {}
    print(f"Logged in to {args.tenant}")
    if data.get("rest_uri"):
        print(f"  REST: {data['rest_uri']}")
    if data.get("soap_uri"):
        print(f"  SOAP: {data['soap_uri']}")
    return 0


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code; 1 when an interactive login is required.
    """
    bridge = AuthBridge.from_settings()
    required: list[RequireLogin] = []

    def on_require_login(event: AuthEvent) -> None:
        if isinstance(event, RequireLogin):
            required.append(event)

    bridge.channel.subscribe(RequireLogin, on_require_login)
    payload = asyncio.run(_with_bridge(bridge, bridge.get_api_config(args.tenant)))

    if payload is None:
        reason = required[0].reason if required else "Login required"
        print(f"{args.tenant}: {reason}", file=sys.stderr)
        return 1

    print(json.dumps(format_api_config(payload, show_token=args.show_token), indent=2))
    return 0


def handle_logout(args: argparse.Namespace) -> int:
    """Handle the logout command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    bridge = AuthBridge.from_settings()
    if not asyncio.run(_with_bridge(bridge, bridge.logout_tenant(args.tenant))):
        print(f"Could not log out {args.tenant}", file=sys.stderr)
        return 1
    print(f"Logged out {args.tenant}")
    return 0


def handle_settings(args: argparse.Namespace) -> int:
    """Handle the settings command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    if args.sources:
        return show_config_sources()
    print(get_settings().show())
    return 0


def show_config_sources() -> int:
    """Show configuration file sources and their status.

    Returns
    -------
    int
        Exit code.
    """
    user_config = (
        Path(os.environ.get("APPDATA", "~")) / "mcsession" / "config.toml"
        if sys.platform == "win32"
        else Path("~/.config/mcsession/config.toml")
    )
    sources: list[tuple[str, Path | None]] = [
        ("Built-in defaults", None),
        ("pyproject.toml [tool.mcsession]", Path("pyproject.toml")),
        ("./mcsession.toml", Path("mcsession.toml")),
        ("User config", user_config.expanduser()),
    ]
    env_config = os.environ.get("MCSESSION_CONFIG_FILE")
    if env_config:
        sources.append(("MCSESSION_CONFIG_FILE", Path(env_config)))

    print("Configuration Sources (in order of precedence):\n")
    print(f"{'Source':<40} {'Status':<15} {'Path'}")
    print("-" * 80)

    for name, path in sources:
        if path is None:
            status, path_display = "✓ Active", ""
        elif path.exists():
            status, path_display = "✓ Found", str(path)
        else:
            status, path_display = "✗ Not found", str(path)
        print(f"{name:<40} {status:<15} {path_display}")

    env_vars = [k for k in os.environ if k.startswith("MCSESSION_")]
    status = f"✓ {len(env_vars)} vars" if env_vars else "✗ No vars"
    print(f"{'Environment variables':<40} {status:<15} {', '.join(env_vars[:3])}")

    print("\nNote: Later sources override earlier ones.")
    return 0


def format_api_config(payload: dict[str, Any], show_token: bool = False) -> dict[str, Any]:
    """Prepare an API config payload for printing."""
    if show_token:
        return payload
    return {**payload, "access_token": _REDACTED}


async def _with_bridge(bridge: AuthBridge, coro: Any) -> Any:
    """Await ``coro`` and close the bridge afterwards."""
    try:
        return await coro
    finally:
        await bridge.close()


if __name__ == "__main__":
    sys.exit(main())
