"""OAuth2 token exchange client.

Performs the three network operations against a tenant's
authorization server: authorization-code exchange, refresh-token
exchange, and identity lookup. Holds no session state; every failure
is classified into an mcsession exception before it leaves this module.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import Any
from urllib.parse import urlencode

import httpx

from ..exceptions import (
    IdentityUnavailableError,
    RevokedGrantError,
    TokenExchangeError,
    TransientAuthError,
)
from ..log import redact_sensitive_data
from ..types import FailureKind, Identity, TokenResponse


logger = logging.getLogger("mcsession.auth")

_TOKEN_PATH = "/v2/token"
_AUTHORIZE_PATH = "/v2/authorize"
_USERINFO_PATH = "/v2/userinfo"

# Client-side statuses that say nothing about the grant itself.
_RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


def endpoint_base(authorization_endpoint: str) -> str:
    """Derive the authorization server base from its token endpoint.

    Parameters
    ----------
    authorization_endpoint : str
        The token endpoint, e.g. ``https://mc.example.com/v2/token``.

    Returns
    -------
    str
        The base URL, e.g. ``https://mc.example.com``.
    """
    base = authorization_endpoint.rstrip("/")
    if base.endswith(_TOKEN_PATH):
        base = base[: -len(_TOKEN_PATH)]
    return base


def build_authorize_url(authorization_endpoint: str, client_id: str, redirect_uri: str) -> str:
    """Build the interactive authorization URL for a tenant.

    Parameters
    ----------
    authorization_endpoint : str
        The tenant's token endpoint.
    client_id : str
        OAuth2 client id.
    redirect_uri : str
        The loopback redirect URI.

    Returns
    -------
    str
        The full authorization URL.
    """
    params = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
    }
    return f"{endpoint_base(authorization_endpoint)}{_AUTHORIZE_PATH}?{urlencode(params)}"


def _response_body(response: httpx.Response) -> dict[str, Any]:
    """Best-effort JSON body of an error response."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _parse_token_response(raw: Any) -> TokenResponse:
    """Validate a token endpoint body and build a TokenResponse."""
    if not isinstance(raw, dict) or not raw.get("access_token"):
        msg = "Token response did not include an access token"
        raise TransientAuthError(msg, FailureKind.SERVER_ERROR)

    try:
        expires_in = int(raw["expires_in"])
    except (KeyError, TypeError, ValueError) as exc:
        msg = "Token response did not include a valid expires_in"
        raise TransientAuthError(msg, FailureKind.SERVER_ERROR) from exc

    return TokenResponse(
        access_token=str(raw["access_token"]),
        expires_in=max(expires_in, 0),
        refresh_token=raw.get("refresh_token") or None,
        rest_instance_url=raw.get("rest_instance_url") or None,
        soap_instance_url=raw.get("soap_instance_url") or None,
        raw=raw,
    )


class TokenExchangeClient:
    """Stateless client for a tenant authorization server.

    Parameters
    ----------
    request_timeout : float
        Timeout in seconds for token endpoint requests (default ``30``).
    identity_timeout : float
        Timeout in seconds for the userinfo request (default ``10``).
    """

    def __init__(self, request_timeout: float = 30.0, identity_timeout: float = 10.0) -> None:
        """Initialize the exchange client."""
        self.request_timeout = request_timeout
        self.identity_timeout = identity_timeout
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.request_timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    async def exchange_code(
        self,
        endpoint: str,
        client_id: str,
        client_secret: str,
        code: str,
        redirect_uri: str,
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        endpoint : str
            The tenant's token endpoint.
        client_id : str
            OAuth2 client id.
        client_secret : str
            OAuth2 client secret.
        code : str
            The authorization code captured from the redirect.
        redirect_uri : str
            The redirect URI used in the authorization request.

        Returns
        -------
        TokenResponse
            The parsed token response.

        Raises
        ------
        RevokedGrantError
            If the server rejected the code or client credentials.
        TransientAuthError
            On network failure or a server-side error.
        """
        payload = {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        return await self._post_token(endpoint, payload, grant="authorization_code")

    async def exchange_refresh_token(
        self,
        endpoint: str,
        client_id: str,
        client_secret: str,
        refresh_token: str,
    ) -> TokenResponse:
        """Exchange a refresh token for a new access token.

        Raises
        ------
        RevokedGrantError
            If the refresh token was revoked or expired.
        TransientAuthError
            On network failure or a server-side error.
        """
        payload = {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
        }
        return await self._post_token(endpoint, payload, grant="refresh_token")

    async def fetch_identity(self, endpoint_base_url: str, access_token: str) -> Identity:
        """Fetch user and organization info for an access token.

        Parameters
        ----------
        endpoint_base_url : str
            The authorization server base (see ``endpoint_base``).
        access_token : str
            A freshly issued access token.

        Returns
        -------
        Identity
            The user and organization descriptors.

        Raises
        ------
        IdentityUnavailableError
            If the lookup failed for any reason.
        """
        url = f"{endpoint_base_url.rstrip('/')}{_USERINFO_PATH}"
        try:
            client = await self._get_client()
            resp = await client.get(
                url,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.identity_timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as exc:
            msg = f"Identity lookup failed: {exc.response.status_code}"
            raise IdentityUnavailableError(msg, status_code=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            msg = f"Identity lookup request failed: {exc}"
            raise IdentityUnavailableError(msg) from exc
        except ValueError as exc:
            msg = "Identity response was not valid JSON"
            raise IdentityUnavailableError(msg) from exc

        if not isinstance(body, dict):
            msg = "Identity response was not a JSON object"
            raise IdentityUnavailableError(msg)

        return Identity(
            user=body.get("user") or {},
            organization=body.get("organization") or {},
        )

    async def _post_token(self, endpoint: str, payload: dict[str, str], grant: str) -> TokenResponse:
        """POST a grant to the token endpoint and classify any failure."""
        try:
            client = await self._get_client()
            resp = await client.post(
                endpoint,
                json=payload,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                timeout=self.request_timeout,
            )
            resp.raise_for_status()
            raw = resp.json()
        except httpx.HTTPStatusError as exc:
            raise self._classify_status(exc.response, grant) from exc
        except httpx.TimeoutException as exc:
            msg = f"Token request timed out ({grant})"
            raise TransientAuthError(msg, FailureKind.NETWORK) from exc
        except httpx.HTTPError as exc:
            msg = f"Token request failed ({grant}): {exc}"
            raise TransientAuthError(msg, FailureKind.NETWORK) from exc
        except ValueError as exc:
            msg = f"Token response was not valid JSON ({grant})"
            raise TransientAuthError(msg, FailureKind.SERVER_ERROR) from exc

        tokens = _parse_token_response(raw)
        logger.debug("Token exchange succeeded (%s), expires_in=%ss", grant, tokens.expires_in)
        return tokens

    @staticmethod
    def _classify_status(response: httpx.Response, grant: str) -> TokenExchangeError:
        """Map an HTTP error response onto a classified exchange error."""
        status = response.status_code
        body = _response_body(response)
        logger.warning(
            "Token endpoint returned %s for %s: %s",
            status,
            grant,
            redact_sensitive_data(body),
        )

        if status >= 500 or status in _RETRYABLE_CLIENT_STATUSES:
            msg = f"Authorization server error: {status}"
            return TransientAuthError(msg, FailureKind.SERVER_ERROR, status_code=status)

        error = body.get("error_description") or body.get("error") or f"HTTP {status}"
        msg = f"Authorization server rejected the {grant.replace('_', ' ')} grant: {error}"
        return RevokedGrantError(msg, status_code=status)
