"""Session coordinator: the single source of truth for the current session.

:class:`SessionCoordinator` debounces concurrent session requests so that
only one provider refresh is in flight at a time, and recovers from
*session-invalid* errors (revoked or expired tokens, disabled or deleted
users) by clearing every trace of the user locally before the error
reaches a caller.

It also owns the hosted-UI sign-out redirect, which is shared by the
cleanup path and by an explicit sign out.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from authflow.auth.base import (
    CredentialsProvider,
    OAuthHandler,
    ProviderUser,
    RefreshCallback,
)
from authflow.exceptions import (
    AuthErrorType,
    NotAuthenticatedError,
    OAuthSignOutTimeout,
    SessionInvalidError,
)
from authflow.hub import AUTH_CHANNEL, Hub
from authflow.models import Session
from authflow.storage import AuthStorage, is_true_value

logger = logging.getLogger(__name__)

HOSTED_UI_FLAG = "authflow-signin-with-hostedUI"

SIGN_OUT_TIMEOUT = 3.0

SESSION_INVALID_MESSAGES = frozenset(
    {
        "Access Token has been revoked",
        "Refresh Token has been revoked",
        "User is disabled.",
        "User does not exist.",
        "Refresh Token has expired",
        "Password reset required for the user",
    }
)


def error_message(error: BaseException) -> str:
    """Return the human-readable message of *error*."""
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error)


class SessionCoordinator:
    """Debounced session access and invalid-session cleanup.

    Args:
        hub: Bus that receives ``signOut`` and ``tokenRefresh`` events.
        storage: Store holding the hosted-UI sign-in flag.
        credentials: Cloud-credentials exchanger, cleared on cleanup.
        oauth_handler: Hosted-UI client; ``None`` when OAuth is not configured.
        is_browser: ``True`` when the hosted sign-out navigates the host away.
            The redirect is then expected to unload the process, so a sign-out
            still running after *sign_out_timeout* seconds is an error.
        client_metadata: Passed through to every provider session call.
    """

    def __init__(
        self,
        hub: Hub,
        storage: AuthStorage,
        credentials: CredentialsProvider,
        oauth_handler: Optional[OAuthHandler] = None,
        is_browser: bool = False,
        client_metadata: Optional[dict[str, str]] = None,
        sign_out_timeout: float = SIGN_OUT_TIMEOUT,
    ) -> None:
        self._hub = hub
        self._storage = storage
        self._credentials = credentials
        self._oauth_handler = oauth_handler
        self._is_browser = is_browser
        self._client_metadata = client_metadata or {}
        self._sign_out_timeout = sign_out_timeout
        self._inflight: Optional[asyncio.Future[Session]] = None
        self._inflight_count = 0
        self.current_user: Optional[ProviderUser] = None

    @property
    def inflight_count(self) -> int:
        """Number of callers currently attached to the pending refresh."""
        return self._inflight_count

    # --- session access ---

    async def get_session(self, user: Optional[ProviderUser]) -> Session:
        """Return the valid session of *user*.

        Concurrent callers share one provider call. The pending call is
        dropped when it finishes, so cancelled callers never cause a second
        call while the first is still running.

        Raises:
            NotAuthenticatedError: If *user* is ``None``.
            SessionInvalidError: If the session was invalid and cleaning it
                up failed as well.
        """
        if user is None:
            logger.debug("the user is null")
            raise NotAuthenticatedError(AuthErrorType.NO_USER_SESSION.value)

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._refresh(user))
            self._inflight.add_done_callback(self._settle_inflight)
        pending = self._inflight
        self._inflight_count += 1
        try:
            session = await asyncio.shield(pending)
        finally:
            self._inflight_count -= 1

        # Attach without re-caching the tokens in storage.
        user.sign_in_session = session
        return session

    def _settle_inflight(self, pending: asyncio.Future[Session]) -> None:
        # Callers may all have been cancelled; the outcome is still retrieved.
        if not pending.cancelled():
            pending.exception()
        if self._inflight is pending:
            self._inflight = None

    async def _refresh(self, user: ProviderUser) -> Session:
        try:
            session = await user.get_session(client_metadata=self._client_metadata)
        except Exception as exc:
            logger.debug("Failed to get the session from user %s: %s", user, exc)
            if self.is_session_invalid(exc):
                await self.recover(user, exc)
            raise
        logger.debug("Succeed to get the user session of %s", user)
        return session

    # --- invalid sessions ---

    @staticmethod
    def is_session_invalid(error: BaseException) -> bool:
        """Return ``True`` if *error* means the session can never be refreshed."""
        return error_message(error) in SESSION_INVALID_MESSAGES

    async def recover(self, user: ProviderUser, error: BaseException) -> None:
        """Clean up after the session-invalid *error*.

        Returns normally when cleanup succeeds; the caller re-raises *error*.

        Raises:
            SessionInvalidError: If cleanup itself failed. The message
                carries both failures.
        """
        try:
            await self.clean_up_invalid_session(user)
        except Exception as cleanup_exc:
            raise SessionInvalidError(
                f"Session is invalid due to: {error_message(error)} and failed "
                f"to clean up invalid session: {error_message(cleanup_exc)}"
            ) from cleanup_exc

    async def clean_up_invalid_session(self, user: ProviderUser) -> None:
        """Sign *user* out locally and drop every cached credential."""
        user.sign_out()
        self.current_user = None
        try:
            await self._credentials.clear()
        except Exception as exc:
            logger.debug("failed to clear cached items: %s", exc)

        if self.is_signed_in_hosted_ui():
            await self.hosted_sign_out()
        else:
            self._hub.dispatch(
                AUTH_CHANNEL, "signOut", None, "A user has been signed out"
            )

    # --- hosted UI ---

    def is_signed_in_hosted_ui(self) -> bool:
        """Return ``True`` if the current sign-in came through the hosted UI."""
        return self._oauth_handler is not None and is_true_value(
            self._storage, HOSTED_UI_FLAG
        )

    async def hosted_sign_out(self) -> None:
        """Run the hosted-UI sign-out redirect.

        Raises:
            OAuthSignOutTimeout: In a browser host, when the process is still
                running after the sign-out timeout.
        """
        assert self._oauth_handler is not None
        url = self._oauth_handler.sign_out()
        logger.debug("Hosted UI sign out started: %s", url)
        if not self._is_browser:
            return
        await asyncio.sleep(self._sign_out_timeout)
        raise OAuthSignOutTimeout("Signout timeout fail")

    # --- low-level refresh notifications ---

    def wrap_refresh_callback(self, callback: RefreshCallback) -> RefreshCallback:
        """Wrap a provider refresh callback so every renewal is broadcast."""

        def wrapped(error: Optional[Exception], session: Optional[Session]) -> Any:
            if session is not None:
                self._hub.dispatch(
                    AUTH_CHANNEL, "tokenRefresh", None, "New token retrieved"
                )
            else:
                self._hub.dispatch(
                    AUTH_CHANNEL,
                    "tokenRefresh_failure",
                    error,
                    "Failed to retrieve new token",
                )
            return callback(error, session)

        return wrapped
