"""Sign-in challenge state machine.

A :class:`SignInAttempt` follows one credential submission from the first
provider call to its terminal outcome::

    INIT -> AWAITING_CHALLENGE_RESPONSE -> SUCCESS | FAILURE

``AWAITING_CHALLENGE_RESPONSE`` recurs when the provider answers a
challenge response with another challenge (a new password followed by
MFA, say). Each provider call returns an
:data:`~authflow.auth.base.AuthOutcome`, and :meth:`ChallengeStateMachine.resolve`
matches it exhaustively:

- :class:`~authflow.auth.base.AuthSuccess` -- clear the challenge, exchange
  the session for cloud credentials, enrich the user, dispatch ``signIn``.
- :class:`~authflow.auth.base.AuthFailure` -- dispatch the failure event
  and raise the provider's error.
- :class:`~authflow.auth.base.ChallengeIssued` -- attach the challenge to
  the user handle and return it so the caller can respond.

Only one password sign-in may be pending at a time; passwordless
(``CUSTOM_AUTH``) attempts are not restricted.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from authflow.auth.base import (
    AuthFailure,
    AuthOutcome,
    AuthSuccess,
    ChallengeIssued,
    ChallengeKind,
    CredentialsProvider,
    IdentityProvider,
    PendingChallenge,
    ProviderUser,
)
from authflow.auth.session import SessionCoordinator
from authflow.exceptions import AuthErrorType, PendingSignInError, ValidationError
from authflow.hub import AUTH_CHANNEL, Hub
from authflow.models import AuthenticationDetails, Session

logger = logging.getLogger(__name__)

__all__ = [
    "ChallengeKind",
    "ChallengeStateMachine",
    "SignInAttempt",
    "SignInOperation",
    "SignInState",
]

CUSTOM_AUTH = "CUSTOM_AUTH"


class SignInState(str, enum.Enum):
    INIT = "INIT"
    AWAITING_CHALLENGE_RESPONSE = "AWAITING_CHALLENGE_RESPONSE"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class SignInOperation(str, enum.Enum):
    """The entry point that produced an attempt; selects events and enrichment."""

    SIGN_IN = "sign_in"
    CUSTOM_CHALLENGE_ANSWER = "custom_challenge_answer"
    CONFIRM_SIGN_IN = "confirm_sign_in"
    COMPLETE_NEW_PASSWORD = "complete_new_password"


_TERMINAL = (SignInState.SUCCESS, SignInState.FAILURE)


@dataclass
class SignInAttempt:
    """One credential submission and the state it has reached."""

    user: ProviderUser
    operation: SignInOperation
    state: SignInState = SignInState.INIT
    _settled: bool = False

    @property
    def resolved(self) -> bool:
        return self._settled or self.state in _TERMINAL

    def settle(self) -> None:
        """Claim the terminal resolution of this attempt.

        Raises:
            RuntimeError: If the attempt was already resolved.
        """
        if self.resolved:
            raise RuntimeError(
                f"Sign-in attempt for {self.user.username!r} was already resolved"
            )
        self._settled = True


FetchCurrentUser = Callable[[], Awaitable[ProviderUser]]


class ChallengeStateMachine:
    """Drives sign-in attempts to a terminal outcome.

    Args:
        provider: Creates user handles for new attempts.
        hub: Receives ``signIn`` and failure events.
        credentials: Exchanges the new session for cloud credentials.
        coordinator: Holds the current user once sign-in succeeds.
        fetch_current_user: Re-reads the signed-in user with its attributes.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        hub: Hub,
        credentials: CredentialsProvider,
        coordinator: SessionCoordinator,
        fetch_current_user: FetchCurrentUser,
    ) -> None:
        self._provider = provider
        self._hub = hub
        self._credentials = credentials
        self._coordinator = coordinator
        self._fetch_current_user = fetch_current_user
        self._password_sign_in_pending = False

    @property
    def password_sign_in_pending(self) -> bool:
        return self._password_sign_in_pending

    # --- entry points ---

    async def sign_in_with_password(
        self, details: AuthenticationDetails
    ) -> ProviderUser:
        """Authenticate with username and password.

        Raises:
            PendingSignInError: If another password sign-in has not resolved yet.
        """
        if self._password_sign_in_pending:
            raise PendingSignInError("Pending sign-in attempt already in progress")

        self._password_sign_in_pending = True
        try:
            return await self.authenticate(details)
        finally:
            self._password_sign_in_pending = False

    async def authenticate(self, details: AuthenticationDetails) -> ProviderUser:
        """Run one password attempt without the pending sign-in guard.

        Used by auto sign-in, which retries on its own schedule.
        """
        user = self._provider.create_user(details.username)
        attempt = SignInAttempt(user, SignInOperation.SIGN_IN)
        outcome = await self._call(user.authenticate(details))
        return await self.resolve(attempt, outcome)

    async def sign_in_without_password(
        self, details: AuthenticationDetails
    ) -> ProviderUser:
        """Start a custom-auth sign-in; the provider answers with a challenge."""
        user = self._provider.create_user(details.username)
        user.authentication_flow_type = CUSTOM_AUTH
        attempt = SignInAttempt(user, SignInOperation.SIGN_IN)
        outcome = await self._call(user.initiate_auth(details))
        return await self.resolve(attempt, outcome)

    async def send_custom_challenge_answer(
        self,
        user: ProviderUser,
        answer: str,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> ProviderUser:
        if not answer:
            raise ValidationError(AuthErrorType.EMPTY_CHALLENGE_RESPONSE)
        attempt = self._respond(user, SignInOperation.CUSTOM_CHALLENGE_ANSWER)
        outcome = await self._call(
            user.send_custom_challenge_answer(answer, client_metadata)
        )
        return await self.resolve(attempt, outcome)

    async def confirm_sign_in(
        self,
        user: ProviderUser,
        code: str,
        mfa_type: Optional[str] = None,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> ProviderUser:
        """Answer an SMS or TOTP challenge with *code*."""
        if not code:
            raise ValidationError(AuthErrorType.EMPTY_CODE)
        attempt = self._respond(user, SignInOperation.CONFIRM_SIGN_IN)
        outcome = await self._call(user.send_mfa_code(code, mfa_type, client_metadata))
        return await self.resolve(attempt, outcome)

    async def complete_new_password(
        self,
        user: ProviderUser,
        password: str,
        required_attributes: Optional[dict[str, str]] = None,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> ProviderUser:
        if not password:
            raise ValidationError(AuthErrorType.EMPTY_PASSWORD)
        attempt = self._respond(user, SignInOperation.COMPLETE_NEW_PASSWORD)
        outcome = await self._call(
            user.complete_new_password_challenge(
                password, required_attributes or {}, client_metadata
            )
        )
        return await self.resolve(attempt, outcome)

    # --- resolution ---

    async def resolve(self, attempt: SignInAttempt, outcome: AuthOutcome) -> ProviderUser:
        """Apply *outcome* to *attempt* and return the resulting user handle.

        Raises:
            TypeError: If *outcome* is not one of the known variants.
            RuntimeError: If *attempt* was already resolved.
        """
        if isinstance(outcome, ChallengeIssued):
            return self._on_challenge(attempt, outcome)
        if isinstance(outcome, AuthSuccess):
            return await self._on_success(attempt, outcome.session)
        if isinstance(outcome, AuthFailure):
            self._on_failure(attempt, outcome.error)
        raise TypeError(f"Unexpected sign-in outcome: {outcome!r}")

    def _on_challenge(
        self, attempt: SignInAttempt, outcome: ChallengeIssued
    ) -> ProviderUser:
        if attempt.resolved:
            raise RuntimeError(
                f"Sign-in attempt for {attempt.user.username!r} was already resolved"
            )
        logger.debug("signIn challenge %s for %s", outcome.kind.value, attempt.user)
        attempt.user.challenge = PendingChallenge(outcome.kind, dict(outcome.params))
        attempt.state = SignInState.AWAITING_CHALLENGE_RESPONSE
        return attempt.user

    async def _on_success(self, attempt: SignInAttempt, session: Session) -> ProviderUser:
        attempt.settle()
        user = attempt.user
        user.challenge = None
        user.set_sign_in_session(session)
        await self._exchange_credentials(session)

        if attempt.operation in (
            SignInOperation.SIGN_IN,
            SignInOperation.CUSTOM_CHALLENGE_ANSWER,
        ):
            try:
                signed_in = await self._fetch_current_user()
            except Exception as exc:
                logger.error("Failed to get the signed in user: %s", exc)
                attempt.state = SignInState.FAILURE
                raise
        else:
            signed_in = user
            if attempt.operation is SignInOperation.CONFIRM_SIGN_IN:
                try:
                    current = await self._fetch_current_user()
                    user.attributes = current.attributes
                except Exception as exc:
                    logger.debug("cannot get updated user: %s", exc)

        self._coordinator.current_user = signed_in
        attempt.state = SignInState.SUCCESS
        self._hub.dispatch(
            AUTH_CHANNEL,
            "signIn",
            signed_in,
            f"A user {user.username} has been signed in",
        )
        return signed_in

    def _on_failure(self, attempt: SignInAttempt, error: Exception) -> None:
        attempt.settle()
        attempt.state = SignInState.FAILURE
        user = attempt.user
        logger.debug("%s failure for %s: %s", attempt.operation.value, user, error)
        if attempt.operation is SignInOperation.COMPLETE_NEW_PASSWORD:
            self._hub.dispatch(
                AUTH_CHANNEL,
                "completeNewPassword_failure",
                error,
                f"{user.username} failed to complete the new password flow",
            )
        elif attempt.operation is not SignInOperation.CONFIRM_SIGN_IN:
            self._hub.dispatch(
                AUTH_CHANNEL, "signIn_failure", error, f"{user.username} failed to signin"
            )
        raise error

    # --- helpers ---

    @staticmethod
    def _respond(user: ProviderUser, operation: SignInOperation) -> SignInAttempt:
        return SignInAttempt(
            user, operation, state=SignInState.AWAITING_CHALLENGE_RESPONSE
        )

    @staticmethod
    async def _call(pending: Awaitable[AuthOutcome]) -> AuthOutcome:
        try:
            return await pending
        except NotImplementedError:
            raise
        except Exception as exc:
            return AuthFailure(exc)

    async def _exchange_credentials(self, session: Session) -> None:
        try:
            await self._credentials.clear()
            credentials = await self._credentials.set(session, "session")
            logger.debug("succeed to get cloud credentials: %s", credentials)
        except Exception as exc:
            logger.debug("cannot get cloud credentials: %s", exc)
