"""Hosted-UI OAuth 2.0 client.

This module provides :class:`HostedUIOAuthHandler`, the bundled
:class:`~authflow.auth.base.OAuthHandler`. It speaks the hosted UI's
OAuth 2.0 endpoints:

1. ``/oauth2/authorize`` -- built by :meth:`~HostedUIOAuthHandler.initiate_authorization`
   with PKCE (:rfc:`7636`) for the code grant and a random ``state``.
   Application state is hex-encoded and appended to ``state`` after a ``-``.
2. ``/oauth2/token`` -- :meth:`~HostedUIOAuthHandler.exchange_code` trades the
   authorization code for tokens; the implicit grant's tokens are read from
   the URL fragment instead.
3. ``/logout`` -- :meth:`~HostedUIOAuthHandler.sign_out`.

``state`` and the PKCE verifier are kept in the context's storage between
the authorize redirect and the exchange, so the flow survives a page load
(or, for the CLI, a separate process).

Also exports :func:`generate_pkce_pair`.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import webbrowser
from typing import Any, Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit

import httpx

from authflow.auth.base import OAuthHandler
from authflow.auth.redirect import encode_custom_state
from authflow.exceptions import ConfigError, OAuthError
from authflow.models import AuthOptions, OAuthOptions, TokenResponse
from authflow.storage import AuthStorage

logger = logging.getLogger(__name__)

OAUTH_STATE = "authflow-oauth-state"
OAUTH_PKCE = "authflow-oauth-pkce"

DEFAULT_TIMEOUT = 30.0


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.
    """
    # RFC 7636: 43-128 characters from unreserved character set
    code_verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return code_verifier, code_challenge


def generate_state() -> str:
    """Random ``state`` value; never contains ``-``."""
    return secrets.token_hex(16)


class HostedUIOAuthHandler(OAuthHandler):
    """OAuth client for the user pool's hosted UI.

    Args:
        options: Must carry ``oauth`` and ``user_pool_web_client_id``.
        storage: Keeps ``state`` and the PKCE verifier between redirects.
        url_opener: Called with every URL the user must visit. Defaults to
            :func:`webbrowser.open`.
        transport: Optional ``httpx`` transport, e.g. ``httpx.MockTransport``.
        timeout: Timeout for token requests, in seconds.

    Raises:
        ConfigError: If the hosted UI is not configured.
    """

    def __init__(
        self,
        options: AuthOptions,
        storage: AuthStorage,
        url_opener: Callable[[str], Any] = webbrowser.open,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if options.oauth is None:
            raise ConfigError("OAuth is not configured: set 'oauth.domain' and redirects")
        if not options.user_pool_web_client_id:
            raise ConfigError("OAuth requires 'user_pool_web_client_id'")
        self._oauth: OAuthOptions = options.oauth
        self._client_id: str = options.user_pool_web_client_id
        self._storage = storage
        self._url_opener = url_opener
        self._transport = transport
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        domain = self._oauth.domain.rstrip("/")
        if domain.startswith(("http://", "https://")):
            return domain
        return f"https://{domain}"

    @property
    def token_url(self) -> str:
        return f"{self.base_url}/oauth2/token"

    # --- authorize ---

    def initiate_authorization(
        self,
        provider: Optional[str] = None,
        custom_state: Optional[str] = None,
    ) -> str:
        state = generate_state()
        if custom_state:
            state = f"{state}-{encode_custom_state(custom_state)}"
        self._storage.set_item(OAUTH_STATE, state)

        params: dict[str, str] = {
            "redirect_uri": self._oauth.redirect_sign_in,
            "response_type": self._oauth.response_type,
            "client_id": self._client_id,
        }
        if provider:
            params["identity_provider"] = provider
        params["scope"] = " ".join(self._oauth.scope)
        params["state"] = state

        if self._oauth.response_type == "code":
            code_verifier, code_challenge = generate_pkce_pair()
            self._storage.set_item(OAUTH_PKCE, code_verifier)
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"

        url = f"{self.base_url}/oauth2/authorize?{urlencode(params)}"
        logger.debug("Opening hosted UI: %s", url)
        self._url_opener(url)
        return url

    # --- exchange ---

    async def exchange_code(self, url: str, user_agent: Optional[str] = None) -> TokenResponse:
        """Trade the redirect *url* for tokens.

        Raises:
            OAuthError: If the provider returned an error, ``state`` does not
                match the one sent, or the token request fails.
        """
        parts = urlsplit(url)
        query = dict(parse_qsl(parts.query))
        fragment = dict(parse_qsl(parts.fragment))

        error = query.get("error") or fragment.get("error")
        if error:
            description = query.get("error_description") or fragment.get(
                "error_description", ""
            )
            raise OAuthError(f"{error}: {description}" if description else error)

        if "code" in query:
            return await self._exchange_authorization_code(query, user_agent)
        return self._read_implicit_tokens(fragment)

    def _verify_state(self, state: Optional[str]) -> None:
        saved = self._storage.get_item(OAUTH_STATE)
        self._storage.remove_item(OAUTH_STATE)
        if state and saved and state != saved:
            raise OAuthError("Invalid state in OAuth flow")

    async def _exchange_authorization_code(
        self, query: dict[str, str], user_agent: Optional[str]
    ) -> TokenResponse:
        state = query.get("state")
        self._verify_state(state)

        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": query["code"],
            "client_id": self._client_id,
            "redirect_uri": self._oauth.redirect_sign_in,
        }
        code_verifier = self._storage.get_item(OAUTH_PKCE)
        self._storage.remove_item(OAUTH_PKCE)
        if code_verifier:
            data["code_verifier"] = code_verifier

        headers = {"Accept": "application/json"}
        if user_agent:
            headers["X-Amz-User-Agent"] = user_agent

        token_data = await self.post_token_request(data, headers)
        return TokenResponse(
            access_token=token_data["access_token"],
            id_token=token_data.get("id_token", ""),
            refresh_token=token_data.get("refresh_token"),
            state=state,
            expires_in=token_data.get("expires_in"),
            token_type=token_data.get("token_type", "Bearer"),
        )

    async def post_token_request(
        self, data: dict[str, str], headers: Optional[dict[str, str]] = None
    ) -> dict[str, Any]:
        """POST a form to the token endpoint and return the JSON body.

        Raises:
            OAuthError: On HTTP errors, an ``error`` member in the body, or a
                body without ``access_token``.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.token_url,
                    data=data,
                    headers=headers or {"Accept": "application/json"},
                )
            token_data: dict[str, Any] = response.json()
        except httpx.HTTPError as exc:
            raise OAuthError(f"Token request failed: {exc}") from exc
        except ValueError as exc:
            raise OAuthError(
                f"Token endpoint returned invalid JSON (status {response.status_code})"
            ) from exc

        if "error" in token_data:
            raise OAuthError(str(token_data["error"]))
        if response.is_error:
            raise OAuthError(
                f"Token request failed with status {response.status_code}: {response.text}"
            )
        if "access_token" not in token_data:
            raise OAuthError("Token response missing 'access_token' field")
        return token_data

    def _read_implicit_tokens(self, fragment: dict[str, str]) -> TokenResponse:
        state = fragment.get("state")
        self._verify_state(state)
        if not fragment.get("access_token") or not fragment.get("id_token"):
            raise OAuthError("Implicit grant response is missing tokens")
        expires_in = fragment.get("expires_in")
        return TokenResponse(
            access_token=fragment["access_token"],
            id_token=fragment["id_token"],
            refresh_token=None,
            state=state,
            expires_in=int(expires_in) if expires_in else None,
            token_type=fragment.get("token_type", "Bearer"),
        )

    # --- sign out ---

    def sign_out(self) -> str:
        params = {
            "client_id": self._client_id,
            "logout_uri": self._oauth.redirect_sign_out,
        }
        url = f"{self.base_url}/logout?{urlencode(params)}"
        logger.debug("Signing out of hosted UI: %s", url)
        self._url_opener(url)
        return url
