"""Typed events published to the UI layer.

The core never calls UI code directly; it publishes one of the event
types below on an EventChannel and consumers subscribe by channel name.
"""

from __future__ import annotations

import inspect
import logging
import threading

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, ClassVar

from .log import log_handler_error


logger = logging.getLogger("mcsession.events")

WILDCARD = "*"


@dataclass(frozen=True)
class TokenReceived:
    """Result of an interactive login started with ``start_login``."""

    channel: ClassVar[str] = "token-received"

    success: bool
    tenant_name: str
    data: dict[str, Any] | None = None
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the UI."""
        if self.success:
            return {"success": True, "tenant_name": self.tenant_name, "data": self.data}
        return {"success": False, "tenant_name": self.tenant_name, "error": self.error}


@dataclass(frozen=True)
class RequireLogin:
    """Emitted whenever no usable token exists without user interaction."""

    channel: ClassVar[str] = "require-login"

    tenant_name: str
    reason: str
    kind: str
    retryable: bool = False

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the UI."""
        return {
            "tenant_name": self.tenant_name,
            "message": self.reason,
            "kind": self.kind,
            "retryable": self.retryable,
        }


@dataclass(frozen=True)
class LogoutSuccess:
    """Emitted once a tenant's credentials have been removed."""

    channel: ClassVar[str] = "logout-success"

    tenant_name: str

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the UI."""
        return {"tenant_name": self.tenant_name}


AuthEvent = TokenReceived | RequireLogin | LogoutSuccess

EventHandler = Callable[[AuthEvent], None] | Callable[[AuthEvent], Awaitable[None]]

#: Channel names accepted by ``EventChannel.subscribe``.
CHANNELS: frozenset[str] = frozenset(
    {TokenReceived.channel, RequireLogin.channel, LogoutSuccess.channel, WILDCARD}
)


class EventChannel:
    """Publish/subscribe channel for auth events.

    Handlers may be sync or async. A failing handler is logged and does
    not prevent delivery to the remaining handlers.
    """

    def __init__(self) -> None:
        """Initialize an empty channel."""
        self._handlers: dict[str, list[EventHandler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, channel: str | type[AuthEvent], handler: EventHandler) -> Callable[[], None]:
        """Register a handler for a channel.

        Parameters
        ----------
        channel : str or event type
            Channel name (``"token-received"``, ``"require-login"``,
            ``"logout-success"`` or ``"*"``), or an event class.
        handler : callable
            Receives the event instance.

        Returns
        -------
        callable
            Call it to unsubscribe.

        Raises
        ------
        ValueError
            If the channel name is unknown.
        """
        name = channel if isinstance(channel, str) else channel.channel
        if name not in CHANNELS:
            msg = f"Unknown event channel '{name}'. Expected one of: {', '.join(sorted(CHANNELS))}"
            raise ValueError(msg)

        with self._lock:
            self._handlers.setdefault(name, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(name, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def handler_count(self, channel: str) -> int:
        """Number of handlers registered on ``channel``."""
        with self._lock:
            return len(self._handlers.get(channel, []))

    async def publish(self, event: AuthEvent) -> int:
        """Deliver an event to its channel and wildcard subscribers.

        Returns
        -------
        int
            Number of handlers that completed without raising.
        """
        with self._lock:
            handlers = [*self._handlers.get(event.channel, []), *self._handlers.get(WILDCARD, [])]

        logger.debug("Publishing %s to %d handler(s)", event.channel, len(handlers))
        delivered = 0
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                log_handler_error(event.channel, exc)
            else:
                delivered += 1
        return delivered
