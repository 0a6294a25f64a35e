"""Tests for the mcsession command-line interface."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import contextlib
import json
import sys

from io import StringIO
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mcsession.auth.flow import LoginFlowManager
from mcsession.bridge import AuthBridge
from mcsession.cli import format_api_config, main
from mcsession.types import ApiConfig, AuthFlowState, LoginResult
from tests.conftest import ACME, ACME_ENDPOINT, seed_vault


@pytest.fixture()
def bridge(manager) -> AuthBridge:
    """Bridge over the fixture manager with a mocked login flow."""
    flow = MagicMock(spec=LoginFlowManager)
    flow.login = AsyncMock(
        return_value=LoginResult(
            True,
            ACME,
            AuthFlowState.COMPLETED,
            config=ApiConfig(ACME, "AT1", 900.0, rest_endpoint="https://rest/", soap_endpoint="https://soap/"),
        )
    )
    return AuthBridge(manager, flow)


def _main(*argv: str) -> tuple[int, str, str]:
    with (
        patch.object(sys, "argv", ["mcsession", *argv]),
        patch("sys.stdout", new_callable=StringIO) as mock_stdout,
        patch("sys.stderr", new_callable=StringIO) as mock_stderr,
    ):
        result = main()
    return result, mock_stdout.getvalue(), mock_stderr.getvalue()


class TestMainEntryPoint:
    """Tests for CLI main entry point."""

    def test_no_args_prints_help_text(self) -> None:
        """Running with no args prints help with the subcommands."""
        result, output, _ = _main()

        assert result == 0
        assert "usage:" in output.lower()
        for command in ("login", "config", "logout", "settings"):
            assert command in output

    def test_help_flag_shows_usage(self) -> None:
        """--help prints usage and exits."""
        with (
            patch.object(sys, "argv", ["mcsession", "--help"]),
            patch("sys.stdout", new_callable=StringIO) as mock_stdout,
            contextlib.suppress(SystemExit),
        ):
            main()

        assert "mcsession" in mock_stdout.getvalue()


class TestSettingsCommand:
    """Tests for the settings command."""

    def test_show(self) -> None:
        """settings prints the effective configuration."""
        result, output, _ = _main("settings")

        assert result == 0
        assert "mcsession Configuration" in output
        assert "redirect_uri" in output
        assert "MC-API-Helper" in output

    def test_sources(self) -> None:
        """settings --sources lists the configuration files."""
        result, output, _ = _main("settings", "--sources")

        assert result == 0
        assert "Configuration Sources" in output
        assert "mcsession.toml" in output


class TestConfigCommand:
    """Tests for the config command."""

    def test_prints_redacted_config(self, bridge, vault) -> None:
        """A usable config is printed with the token redacted."""
        seed_vault(vault)
        with patch.object(AuthBridge, "from_settings", return_value=bridge):
            result, output, _ = _main("config", ACME)

        assert result == 0
        payload = json.loads(output)
        assert payload["access_token"] == "********"
        assert payload["org_info"] == {"stack_key": "S7"}

    def test_show_token(self, bridge, vault) -> None:
        """--show-token prints the access token."""
        seed_vault(vault)
        with patch.object(AuthBridge, "from_settings", return_value=bridge):
            _, output, _ = _main("config", ACME, "--show-token")

        assert json.loads(output)["access_token"] == "AT2"

    def test_login_required(self, bridge) -> None:
        """Without credentials the reason goes to stderr with exit code 1."""
        with patch.object(AuthBridge, "from_settings", return_value=bridge):
            result, output, error = _main("config", ACME)

        assert result == 1
        assert output == ""
        assert "login required" in error


class TestLoginCommand:
    """Tests for the login command."""

    def test_login_success(self, bridge, monkeypatch: pytest.MonkeyPatch) -> None:
        """A successful login prints the instance URLs."""
        monkeypatch.setenv("MCSESSION_CLIENT_SECRET", "csecret")
        with patch.object(AuthBridge, "from_settings", return_value=bridge):
            result, output, _ = _main("login", ACME, "--auth-uri", ACME_ENDPOINT, "--client-id", "cid")

        assert result == 0
        assert f"Logged in to {ACME}" in output
        assert "https://soap/Service.asmx" in output
        request = bridge.login_flow.login.await_args.args[0]
        assert request.client_secret == "csecret"

    def test_login_failure(self, bridge) -> None:
        """A failed login exits with 1 and the error."""
        bridge.login_flow.login.return_value = LoginResult(
            False, ACME, AuthFlowState.TIMED_OUT, error="Login timed out after 300s"
        )
        with patch.object(AuthBridge, "from_settings", return_value=bridge):
            result, _, error = _main(
                "login", ACME, "--auth-uri", ACME_ENDPOINT, "--client-id", "cid", "--client-secret", "s"
            )

        assert result == 1
        assert "timed out" in error

    def test_prompts_for_secret(self, bridge) -> None:
        """Without a secret argument or variable the user is prompted."""
        with (
            patch.object(AuthBridge, "from_settings", return_value=bridge),
            patch("getpass.getpass", return_value="typed") as mock_prompt,
        ):
            _main("login", ACME, "--auth-uri", ACME_ENDPOINT, "--client-id", "cid")

        mock_prompt.assert_called_once()
        assert bridge.login_flow.login.await_args.args[0].client_secret == "typed"


class TestLogoutCommand:
    """Tests for the logout command."""

    def test_logout(self, bridge, vault) -> None:
        """logout removes the tenant's secrets."""
        seed_vault(vault)
        with patch.object(AuthBridge, "from_settings", return_value=bridge):
            result, output, _ = _main("logout", ACME)

        assert result == 0
        assert f"Logged out {ACME}" in output
        assert vault.accounts() == []


class TestFormatApiConfig:
    """Tests for format_api_config."""

    def test_redacts_by_default(self) -> None:
        """Only the access token is hidden."""
        payload = {"access_token": "AT1", "rest_uri": "https://rest/"}
        assert format_api_config(payload) == {"access_token": "********", "rest_uri": "https://rest/"}
        assert format_api_config(payload, show_token=True) is payload
