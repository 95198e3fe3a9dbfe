"""Completion of hosted-UI sign-in after the browser redirects back.

The hosted UI sends the user back to ``redirect_sign_in`` with either an
authorization code in the query (``?code=...&state=...``) or tokens in the
fragment (``#access_token=...``). :class:`RedirectHandler` trades that URL
for a session exactly once:

1. :func:`parse_redirect` classifies the URL. URLs that carry no auth keys
   are ignored without any state change.
2. The URL is marked consumed before the first ``await``, so duplicate
   deliveries of the same URL are dropped, and a process-wide in-progress
   flag drops re-entrant calls while any redirect is being handled.
3. The code is exchanged through the :class:`~authflow.auth.base.OAuthHandler`.

Failures are reported only on the hub (``signIn_failure``,
``cognitoHostedUI_failure``, ``customState_failure``); nobody awaits the
handler when the page loads, so it never raises for an exchange error.
Callers that need the outcome use :meth:`RedirectHandler.wait_for_resolution`.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Optional
from urllib.parse import parse_qsl, urlsplit

from authflow.auth.base import (
    CredentialsProvider,
    IdentityProvider,
    OAuthHandler,
    UrlHistory,
)
from authflow.exceptions import ConfigError
from authflow.hub import AUTH_CHANNEL, Hub, HubEvent
from authflow.models import AuthOptions, Session, TokenResponse, clock_drift
from authflow.storage import AuthStorage

logger = logging.getLogger(__name__)

REDIRECTED_FROM_HOSTED_UI = "authflow-redirected-from-hosted-ui"
FEDERATED_USER_AGENT = "authflow-federated-user-agent"

OAUTH_FLOW_TIMEOUT = 10.0

_RESOLUTION_EVENTS = frozenset({"cognitoHostedUI", "cognitoHostedUI_failure"})


class RedirectOutcome(str, enum.Enum):
    NOT_AUTH = "not_auth"
    AUTH = "auth"


def _keys(component: str) -> set[str]:
    return {key for key, _ in parse_qsl(component, keep_blank_values=True)}


def parse_redirect(url: str) -> RedirectOutcome:
    """Classify *url* as an auth redirect or not.

    The query must carry ``code`` or ``error``, or the fragment must carry
    ``access_token`` or ``error``.
    """
    parts = urlsplit(url or "")
    query_keys = _keys(parts.query)
    fragment_keys = _keys(parts.fragment)
    if query_keys & {"code", "error"} or fragment_keys & {"access_token", "error"}:
        return RedirectOutcome.AUTH
    return RedirectOutcome.NOT_AUTH


def encode_custom_state(text: str) -> str:
    """Encode application state so it survives the ``state`` parameter."""
    return text.encode("utf-8").hex()


def decode_custom_state(encoded: str) -> str:
    """Reverse :func:`encode_custom_state`.

    State that was not hex-encoded (set by another client) is returned as is.
    """
    try:
        return bytes.fromhex(encoded).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        return encoded


def split_custom_state(state: Optional[str]) -> Optional[str]:
    """Return the decoded application state embedded after the first ``-``."""
    if not state or "-" not in state:
        return None
    return decode_custom_state(state.split("-", 1)[1])


class RedirectHandler:
    """Turns a hosted-UI redirect URL into a signed-in user.

    Args:
        options: Supplies the user pool, identity pool and ``redirect_sign_in``.
        provider: Creates the user handle that caches the new tokens.
        oauth_handler: Exchanges the code for tokens.
        storage: Receives the redirect marker; holds the cached user agent.
        hub: Receives the outcome events.
        credentials: Exchanges the session when an identity pool is configured.
        history: Address bar to reset after the code is spent, if any.
    """

    def __init__(
        self,
        options: AuthOptions,
        provider: IdentityProvider,
        oauth_handler: OAuthHandler,
        storage: AuthStorage,
        hub: Hub,
        credentials: CredentialsProvider,
        history: Optional[UrlHistory] = None,
    ) -> None:
        self._options = options
        self._provider = provider
        self._oauth_handler = oauth_handler
        self._storage = storage
        self._hub = hub
        self._credentials = credentials
        self._history = history
        self._consumed: set[str] = set()
        self._in_progress = False

    @property
    def in_progress(self) -> bool:
        """``True`` while a redirect is being exchanged."""
        return self._in_progress

    def is_consumed(self, url: str) -> bool:
        return url in self._consumed

    async def handle_redirect(self, url: str) -> Any:
        """Complete the sign-in carried by *url*.

        Returns:
            The exchanged cloud credentials when an identity pool is
            configured, otherwise ``None``. Also ``None`` when the URL is
            not an auth redirect, was already handled, or the exchange failed.

        Raises:
            ConfigError: If no user pool is configured.
        """
        if url in self._consumed:
            logger.debug("Skipping URL %s, already handled", url)
            return None
        if self._in_progress:
            logger.debug("Skipping URL %s, current flow in progress", url)
            return None
        if not self._options.user_pool_id:
            raise ConfigError("OAuth responses require a User Pool defined in config")

        self._hub.dispatch(
            AUTH_CHANNEL,
            "parsingCallbackUrl",
            {"url": url},
            "The callback url is being parsed",
        )
        if parse_redirect(url) is RedirectOutcome.NOT_AUTH:
            return None

        self._consumed.add(url)
        self._in_progress = True
        try:
            self._storage.set_item(REDIRECTED_FROM_HOSTED_UI, "true")
            user_agent = self._storage.get_item(FEDERATED_USER_AGENT)
            self._storage.remove_item(FEDERATED_USER_AGENT)

            try:
                tokens = await self._oauth_handler.exchange_code(url, user_agent)
                return await self._on_tokens(tokens)
            except Exception as exc:
                logger.debug("Error in hosted UI auth response: %s", exc)
                self._on_failure(exc)
                return None
        finally:
            self._in_progress = False

    async def handle_url(self, url: str) -> Any:
        """URL-listener entry point; drops URLs seen before."""
        if url in self._consumed:
            return None
        return await self.handle_redirect(url)

    async def _on_tokens(self, tokens: TokenResponse) -> Any:
        session = Session(
            id_token=tokens.id_token,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            clock_drift=clock_drift(tokens.id_token, tokens.access_token),
        )

        credentials = None
        if self._options.identity_pool_id:
            credentials = await self._credentials.set(session, "session")
            logger.debug("cloud credentials: %s", credentials)

        username = session.username
        if not username:
            raise ValueError("Identity token carries no username")
        user = self._provider.create_user(username)
        user.set_sign_in_session(session)
        self._restore_url()

        self._hub.dispatch(
            AUTH_CHANNEL, "signIn", user, f"A user {username} has been signed in"
        )
        self._hub.dispatch(
            AUTH_CHANNEL,
            "cognitoHostedUI",
            user,
            f"A user {username} has been signed in via Cognito Hosted UI",
        )
        custom_state = split_custom_state(tokens.state)
        if custom_state is not None:
            self._hub.dispatch(
                AUTH_CHANNEL, "customOAuthState", custom_state, f"State for user {username}"
            )
        return credentials

    def _on_failure(self, error: Exception) -> None:
        # The code is spent either way; a reload must not replay it.
        self._restore_url()
        self._hub.dispatch(
            AUTH_CHANNEL, "signIn_failure", error, "The OAuth response flow failed"
        )
        self._hub.dispatch(
            AUTH_CHANNEL,
            "cognitoHostedUI_failure",
            error,
            "A failure occurred when returning to the Cognito Hosted UI",
        )
        self._hub.dispatch(
            AUTH_CHANNEL,
            "customState_failure",
            error,
            "A failure occurred when returning state",
        )

    def _restore_url(self) -> None:
        if self._history is None or self._options.oauth is None:
            return
        try:
            self._history.replace_state(self._options.oauth.redirect_sign_in)
        except Exception as exc:
            logger.debug("Could not replace the visible URL: %s", exc)

    async def wait_for_resolution(self, timeout: float = OAUTH_FLOW_TIMEOUT) -> None:
        """Suspend until the in-flight redirect resolves, at most *timeout* seconds.

        Returns immediately when no redirect is in progress. Timing out is
        not an error.
        """
        if not self._in_progress:
            return

        logger.debug("OAuth signIn in progress, waiting for resolution...")
        resolved = asyncio.Event()

        def on_event(payload: HubEvent) -> None:
            if payload.event in _RESOLUTION_EVENTS:
                logger.debug("OAuth signIn resolved: %s", payload.event)
                resolved.set()

        subscription = self._hub.listen(AUTH_CHANNEL, on_event)
        try:
            await asyncio.wait_for(resolved.wait(), timeout)
        except asyncio.TimeoutError:
            logger.debug("OAuth signIn in progress timeout")
        finally:
            subscription.cancel()
