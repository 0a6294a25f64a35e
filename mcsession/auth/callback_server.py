"""Loopback HTTP(S) server and system-browser login surface.

Used when no embedded web view is available: the authorization page
opens in the system browser and the redirect lands on a short-lived
server bound to the redirect URI's host and port. The server reports
the full redirect URL to the login flow and serves a small status page.

TLS is enabled when a certificate and key are configured, so the
registered ``https://127.0.0.1:8443/callback`` redirect can be served.
"""

# pylint: disable=logging-too-many-args

# pylint: disable=C0103,W0212

from __future__ import annotations

import html
import logging
import ssl
import threading
import webbrowser

from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

from ..config import DEFAULT_REDIRECT_URI
from .flow import LoginSurface


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger("mcsession.auth")

_PAGE_STYLE = """
  body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f0f2f5; color: #1a1a2e; }
  .card { text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08); }
  h1 { font-size: 1.5rem; margin-bottom: 0.5rem; }
  p { color: #666; }
"""

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head><title>{title}</title><style>{style}</style></head>
<body><div class="card">
  <h1>{title}</h1>
  <p>{message}</p>
</div></body></html>"""


def _render_page(title: str, message: str) -> str:
    """Render a status page with escaped content."""
    return _PAGE_TEMPLATE.format(
        title=html.escape(title),
        style=_PAGE_STYLE,
        message=html.escape(message),
    )


class OAuthCallbackServer:
    """Short-lived loopback server capturing the authorization redirect.

    Parameters
    ----------
    redirect_uri : str
        The registered redirect URI; its host, port and path are served.
    on_redirect : callable
        Called once with the full redirect URL, ``on_redirect(url: str)``.
    certfile : str, optional
        TLS certificate; required for ``https`` redirect URIs.
    keyfile : str, optional
        TLS private key.
    keyfile_password : str, optional
        Password for the private key.
    port : int, optional
        Override the bind port (``0`` for auto-assign, used in tests).
    """

    def __init__(
        self,
        redirect_uri: str,
        on_redirect: Callable[[str], None],
        certfile: str | None = None,
        keyfile: str | None = None,
        keyfile_password: str | None = None,
        port: int | None = None,
    ) -> None:
        """Initialize the callback server."""
        parsed = urlparse(redirect_uri)
        self._redirect_uri = redirect_uri
        self._scheme = parsed.scheme
        self._host = parsed.hostname or "127.0.0.1"
        self._port = (parsed.port or 0) if port is None else port
        self._path = parsed.path or "/"
        self._on_redirect = on_redirect
        self._certfile = certfile
        self._keyfile = keyfile
        self._keyfile_password = keyfile_password
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._handled = threading.Event()
        self._actual_port: int = 0

    @property
    def handled(self) -> bool:
        """Whether the redirect has been received."""
        return self._handled.is_set()

    @property
    def base_url(self) -> str:
        """URL the server actually listens on (without path)."""
        return f"{self._scheme}://{self._host}:{self._actual_port}"

    def start(self) -> str:
        """Start the server on a daemon thread.

        Returns
        -------
        str
            The base URL the server listens on.
        """
        server_ref = self

        class _CallbackHandler(BaseHTTPRequestHandler):
            """HTTP request handler for the authorization redirect."""

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlparse(self.path)

                if parsed.path != server_ref._path:
                    self.send_error(404)
                    return

                params = parse_qs(parsed.query)
                error = params.get("error_description", params.get("error", [None]))[0]
                if error:
                    self._send_html(_render_page("Authentication Failed", str(error)))
                else:
                    self._send_html(
                        _render_page("Authentication Complete", "You can close this window.")
                    )

                # Only report the first redirect
                if not server_ref._handled.is_set():
                    server_ref._handled.set()
                    redirect_url = server_ref._redirect_uri
                    if parsed.query:
                        redirect_url = f"{redirect_url}?{parsed.query}"
                    try:
                        server_ref._on_redirect(redirect_url)
                    except Exception:
                        logger.exception("Redirect callback failed")

            def _send_html(self, html_content: str) -> None:
                """Send an HTML response with security headers."""
                encoded = html_content.encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, *args: Any) -> None:
                """Redirect HTTP server logging to the mcsession logger."""
                if args:
                    logger.debug("Callback server: %s", args[0] % args[1:])

        context = self._ssl_context() if self._scheme == "https" else None
        self._server = HTTPServer((self._host, self._port), _CallbackHandler)
        if context is not None:
            self._server.socket = context.wrap_socket(self._server.socket, server_side=True)
        self._actual_port = self._server.server_address[1]

        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

        logger.debug("Callback server started on %s", self.base_url)
        return self.base_url

    def stop(self) -> None:
        """Shut down the server and join its thread."""
        if self._server:
            self._server.shutdown()
            self._server.server_close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None

    def _ssl_context(self) -> ssl.SSLContext:
        """Build the server TLS context."""
        if not self._certfile:
            msg = (
                "An https redirect URI requires MCSESSION_AUTH__CALLBACK_CERTFILE "
                "and MCSESSION_AUTH__CALLBACK_KEYFILE"
            )
            raise ValueError(msg)
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(self._certfile, self._keyfile, self._keyfile_password)
        return context


class BrowserLoginSurface(LoginSurface):
    """Login surface backed by the system browser and a loopback server.

    The system browser gives no signal when the user closes it, so
    ``on_closed`` is never called; the flow's timeout applies instead.

    Parameters
    ----------
    redirect_uri : str
        The registered redirect URI.
    certfile, keyfile, keyfile_password : str, optional
        TLS material for ``https`` redirect URIs.
    open_browser : callable, optional
        Opens a URL (default ``webbrowser.open``).
    """

    def __init__(
        self,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
        certfile: str | None = None,
        keyfile: str | None = None,
        keyfile_password: str | None = None,
        open_browser: Callable[[str], Any] | None = None,
    ) -> None:
        """Initialize the browser surface."""
        self.redirect_uri = redirect_uri
        self._certfile = certfile
        self._keyfile = keyfile
        self._keyfile_password = keyfile_password
        self._open_browser = open_browser or webbrowser.open
        self._servers: dict[str, OAuthCallbackServer] = {}
        self._counter = 0

    def open(
        self,
        url: str,
        *,
        on_navigate: Callable[[str], None],
        on_closed: Callable[[], None],
        config: dict[str, Any],
    ) -> str:
        """Start the callback server and open ``url`` in the system browser."""
        server = OAuthCallbackServer(
            self.redirect_uri,
            on_redirect=on_navigate,
            certfile=self._certfile,
            keyfile=self._keyfile,
            keyfile_password=self._keyfile_password,
        )
        server.start()

        self._counter += 1
        label = f"browser-{self._counter}"
        self._servers[label] = server

        logger.info("Opening %s in the system browser", config.get("title", "login page"))
        if not self._open_browser(url):
            logger.warning("Could not open a browser; navigate to this URL to sign in: %s", url)
        return label

    def close(self, label: str) -> None:
        """Stop the callback server for ``label``."""
        server = self._servers.pop(label, None)
        if server is not None:
            server.stop()
