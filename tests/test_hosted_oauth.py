"""Tests for authflow.hosted.oauth -- authorize URL, PKCE and code exchange."""

from __future__ import annotations

import base64
import hashlib
from typing import Any, Callable
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from authflow.auth.redirect import decode_custom_state
from authflow.exceptions import ConfigError, OAuthError
from authflow.hosted.oauth import (
    OAUTH_PKCE,
    OAUTH_STATE,
    HostedUIOAuthHandler,
    generate_pkce_pair,
    generate_state,
)
from authflow.models import AuthOptions, OAuthOptions


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _token_endpoint(
    body: dict[str, Any], status_code: int = 200, seen: list[httpx.Request] | None = None
) -> httpx.MockTransport:
    """Mock token endpoint returning *body*; records requests into *seen*."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=body)

    return httpx.MockTransport(handler)


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.fixture
def opened() -> list[str]:
    return []


@pytest.fixture
def make_handler(options, storage, opened) -> Callable[..., HostedUIOAuthHandler]:
    def factory(transport: httpx.MockTransport | None = None, **oauth: Any) -> HostedUIOAuthHandler:
        opts = options
        if oauth:
            opts = options.model_copy(
                update={"oauth": options.oauth.model_copy(update=oauth)}
            )
        return HostedUIOAuthHandler(opts, storage, url_opener=opened.append, transport=transport)

    return factory


# ---------------------------------------------------------------------------
# PKCE and state
# ---------------------------------------------------------------------------


class TestPKCE:
    def test_challenge_is_s256_of_verifier(self):
        verifier, challenge = generate_pkce_pair()

        assert 43 <= len(verifier) <= 128
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        assert challenge == base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

    def test_pairs_are_unique(self):
        assert generate_pkce_pair() != generate_pkce_pair()

    def test_state_has_no_separator(self):
        assert "-" not in generate_state()


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_requires_oauth(self, storage):
        with pytest.raises(ConfigError, match="OAuth is not configured"):
            HostedUIOAuthHandler(AuthOptions(user_pool_web_client_id="c"), storage)

    def test_requires_client_id(self, storage):
        options = AuthOptions(
            oauth=OAuthOptions(domain="auth.example.com", redirect_sign_in="http://localhost/")
        )
        with pytest.raises(ConfigError, match="user_pool_web_client_id"):
            HostedUIOAuthHandler(options, storage)

    def test_base_url(self, make_handler):
        assert make_handler().base_url == "https://auth.example.com"
        assert make_handler(domain="http://localhost:9000/").base_url == "http://localhost:9000"


# ---------------------------------------------------------------------------
# Authorize
# ---------------------------------------------------------------------------


class TestInitiateAuthorization:
    def test_code_grant_url(self, make_handler, storage, opened):
        url = make_handler().initiate_authorization()

        assert opened == [url]
        parts = urlsplit(url)
        assert parts.path == "/oauth2/authorize"
        params = {k: v[0] for k, v in parse_qs(parts.query).items()}
        assert params["redirect_uri"] == "http://localhost:8976/callback"
        assert params["response_type"] == "code"
        assert params["client_id"] == "client123"
        assert params["scope"] == "openid email aws.cognito.signin.user.admin"
        assert params["state"] == storage.get_item(OAUTH_STATE)
        assert params["code_challenge_method"] == "S256"
        assert "identity_provider" not in params

        verifier = storage.get_item(OAUTH_PKCE)
        digest = hashlib.sha256(verifier.encode("ascii")).digest()
        expected = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
        assert params["code_challenge"] == expected

    def test_provider_and_custom_state(self, make_handler, storage):
        url = make_handler().initiate_authorization("Google", "return-to:/home")

        params = {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}
        assert params["identity_provider"] == "Google"
        random_part, encoded = params["state"].split("-", 1)
        assert random_part
        assert decode_custom_state(encoded) == "return-to:/home"

    def test_implicit_grant_skips_pkce(self, make_handler, storage):
        url = make_handler(response_type="token").initiate_authorization()

        assert "code_challenge" not in url
        assert "response_type=token" in url
        assert storage.get_item(OAUTH_PKCE) is None


# ---------------------------------------------------------------------------
# Exchange
# ---------------------------------------------------------------------------


class TestExchangeCode:
    @pytest.mark.asyncio
    async def test_code_exchange(self, make_handler, storage):
        seen: list[httpx.Request] = []
        transport = _token_endpoint(
            {
                "access_token": "at",
                "id_token": "it",
                "refresh_token": "rt",
                "expires_in": 3600,
                "token_type": "Bearer",
            },
            seen=seen,
        )
        handler = make_handler(transport)
        storage.set_item(OAUTH_STATE, "abc")
        storage.set_item(OAUTH_PKCE, "verifier")

        tokens = await handler.exchange_code(
            "http://localhost:8976/callback?code=XYZ&state=abc", "authflow/1.0 federatedSignIn"
        )

        assert (tokens.access_token, tokens.id_token, tokens.refresh_token) == ("at", "it", "rt")
        assert tokens.state == "abc"
        assert tokens.expires_in == 3600
        request = seen[0]
        assert str(request.url) == "https://auth.example.com/oauth2/token"
        assert request.headers["X-Amz-User-Agent"] == "authflow/1.0 federatedSignIn"
        assert _form(request) == {
            "grant_type": "authorization_code",
            "code": "XYZ",
            "client_id": "client123",
            "redirect_uri": "http://localhost:8976/callback",
            "code_verifier": "verifier",
        }
        assert storage.get_item(OAUTH_STATE) is None
        assert storage.get_item(OAUTH_PKCE) is None

    @pytest.mark.asyncio
    async def test_state_mismatch(self, make_handler, storage):
        storage.set_item(OAUTH_STATE, "expected")
        handler = make_handler(_token_endpoint({"access_token": "at"}))

        with pytest.raises(OAuthError, match="Invalid state"):
            await handler.exchange_code("http://localhost/callback?code=XYZ&state=forged")

        assert storage.get_item(OAUTH_STATE) is None

    @pytest.mark.asyncio
    async def test_missing_saved_state_is_accepted(self, make_handler):
        handler = make_handler(_token_endpoint({"access_token": "at", "id_token": "it"}))

        tokens = await handler.exchange_code("http://localhost/callback?code=XYZ&state=s")

        assert tokens.access_token == "at"

    @pytest.mark.asyncio
    async def test_error_redirect(self, make_handler):
        with pytest.raises(OAuthError, match="access_denied: User cancelled"):
            await make_handler().exchange_code(
                "http://localhost/callback?error=access_denied&error_description=User+cancelled"
            )

    @pytest.mark.asyncio
    async def test_error_in_fragment(self, make_handler):
        with pytest.raises(OAuthError, match="^server_error$"):
            await make_handler().exchange_code("http://localhost/callback#error=server_error")

    @pytest.mark.asyncio
    async def test_implicit_tokens_from_fragment(self, make_handler, storage):
        storage.set_item(OAUTH_STATE, "abc")

        tokens = await make_handler().exchange_code(
            "http://localhost/callback#access_token=at&id_token=it&state=abc&expires_in=60"
        )

        assert tokens.access_token == "at"
        assert tokens.refresh_token is None
        assert tokens.expires_in == 60

    @pytest.mark.asyncio
    async def test_implicit_without_tokens(self, make_handler):
        with pytest.raises(OAuthError, match="missing tokens"):
            await make_handler().exchange_code("http://localhost/callback#access_token=at")


class TestPostTokenRequest:
    @pytest.mark.asyncio
    async def test_error_member(self, make_handler):
        handler = make_handler(_token_endpoint({"error": "invalid_grant"}, status_code=400))

        with pytest.raises(OAuthError, match="^invalid_grant$"):
            await handler.post_token_request({"grant_type": "refresh_token"})

    @pytest.mark.asyncio
    async def test_error_status(self, make_handler):
        handler = make_handler(_token_endpoint({"message": "boom"}, status_code=500))

        with pytest.raises(OAuthError, match="status 500"):
            await handler.post_token_request({})

    @pytest.mark.asyncio
    async def test_missing_access_token(self, make_handler):
        handler = make_handler(_token_endpoint({"id_token": "it"}))

        with pytest.raises(OAuthError, match="missing 'access_token'"):
            await handler.post_token_request({})

    @pytest.mark.asyncio
    async def test_invalid_json(self, make_handler):
        transport = httpx.MockTransport(lambda request: httpx.Response(502, text="<html>"))

        with pytest.raises(OAuthError, match="invalid JSON"):
            await make_handler(transport).post_token_request({})

    @pytest.mark.asyncio
    async def test_connection_error(self, make_handler):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(OAuthError, match="Token request failed"):
            await make_handler(httpx.MockTransport(handler)).post_token_request({})


def test_sign_out_url(make_handler, opened):
    url = make_handler().sign_out()

    assert opened == [url]
    assert url == (
        "https://auth.example.com/logout?client_id=client123"
        "&logout_uri=http%3A%2F%2Flocalhost%3A8976%2F"
    )
