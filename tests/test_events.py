"""Tests for the auth event channel."""

from __future__ import annotations

import asyncio
import logging

import pytest

from mcsession.events import EventChannel, LogoutSuccess, RequireLogin, TokenReceived


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


class TestEventPayloads:
    """Serialized event shapes."""

    def test_token_received_success(self) -> None:
        """Success events carry data, not error."""
        event = TokenReceived(success=True, tenant_name="Acme", data={"access_token": "AT1"})
        assert event.channel == "token-received"
        assert event.to_payload() == {"success": True, "tenant_name": "Acme", "data": {"access_token": "AT1"}}

    def test_token_received_failure(self) -> None:
        """Failure events carry the error."""
        event = TokenReceived(success=False, tenant_name="Acme", error="Login was cancelled")
        assert event.to_payload() == {"success": False, "tenant_name": "Acme", "error": "Login was cancelled"}

    def test_require_login(self) -> None:
        """RequireLogin exposes reason as message."""
        event = RequireLogin(tenant_name="Acme", reason="offline", kind="network", retryable=True)
        assert event.channel == "require-login"
        assert event.to_payload()["message"] == "offline"
        assert event.to_payload()["retryable"] is True

    def test_logout_success(self) -> None:
        """LogoutSuccess names the tenant."""
        assert LogoutSuccess("Acme").to_payload() == {"tenant_name": "Acme"}
        assert LogoutSuccess.channel == "logout-success"


class TestEventChannel:
    """Subscription and delivery."""

    def test_delivers_to_channel_and_wildcard(self) -> None:
        """Events reach their channel and '*' subscribers only."""
        channel = EventChannel()
        seen: list[str] = []
        channel.subscribe("token-received", lambda e: seen.append(f"token:{e.tenant_name}"))
        channel.subscribe(LogoutSuccess, lambda e: seen.append("logout"))
        channel.subscribe("*", lambda e: seen.append(f"any:{e.channel}"))

        delivered = _run(channel.publish(TokenReceived(success=True, tenant_name="Acme")))

        assert delivered == 2
        assert seen == ["token:Acme", "any:token-received"]

    def test_async_handler(self) -> None:
        """Coroutine handlers are awaited."""
        channel = EventChannel()
        seen: list[RequireLogin] = []

        async def handler(event) -> None:
            await asyncio.sleep(0)
            seen.append(event)

        channel.subscribe(RequireLogin, handler)
        event = RequireLogin(tenant_name="Acme", reason="login", kind="missing_credentials")
        _run(channel.publish(event))

        assert seen == [event]

    def test_failing_handler_isolated(self, caplog: pytest.LogCaptureFixture) -> None:
        """A failing handler is logged and does not stop the others."""
        channel = EventChannel()
        seen: list[str] = []

        def broken(_event) -> None:
            raise RuntimeError("renderer gone")

        channel.subscribe("logout-success", broken)
        channel.subscribe("logout-success", lambda e: seen.append(e.tenant_name))

        with caplog.at_level(logging.ERROR, logger="mcsession"):
            delivered = _run(channel.publish(LogoutSuccess("Acme")))

        assert delivered == 1
        assert seen == ["Acme"]
        assert "renderer gone" in caplog.text

    def test_unsubscribe(self) -> None:
        """The returned callable removes the handler."""
        channel = EventChannel()
        seen: list[str] = []
        unsubscribe = channel.subscribe("logout-success", lambda e: seen.append(e.tenant_name))
        assert channel.handler_count("logout-success") == 1

        unsubscribe()
        unsubscribe()
        _run(channel.publish(LogoutSuccess("Acme")))

        assert seen == []
        assert channel.handler_count("logout-success") == 0

    def test_unknown_channel(self) -> None:
        """Subscribing to an unknown channel raises."""
        with pytest.raises(ValueError, match="Unknown event channel"):
            EventChannel().subscribe("token", lambda e: None)
