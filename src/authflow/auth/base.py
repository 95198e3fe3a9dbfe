"""Abstract collaborators of the orchestration core.

This module defines the seams between authflow and the outside world:

- :class:`ProviderUser` and :class:`IdentityProvider` -- the
  identity-provider client (user pool) that performs network calls.
- :class:`OAuthHandler` -- starts hosted-UI sign-in and trades a redirect
  URL for tokens.
- :class:`CredentialsProvider` -- exchanges a session for short-lived
  cloud credentials. :class:`NoCredentials` is the default when no
  identity pool is configured.
- :class:`UrlHistory` -- replaces the host's visible URL after a redirect.

Provider sign-in calls return an :data:`AuthOutcome`, a tagged variant of
:class:`AuthSuccess`, :class:`AuthFailure` and :class:`ChallengeIssued`,
instead of invoking a bag of named callbacks.

To plug in a provider, subclass :class:`IdentityProvider` and
:class:`ProviderUser`. Only :meth:`ProviderUser.get_session`,
:meth:`ProviderUser.set_sign_in_session` and :meth:`ProviderUser.sign_out`
are mandatory; every other operation raises :class:`NotImplementedError`
until overridden.

See Also:
    :mod:`authflow.hosted` for the bundled hosted-UI implementations.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from authflow.models import (
    AuthenticationDetails,
    CodeDeliveryDetails,
    Session,
    SignUpResult,
    TokenResponse,
    UserAttribute,
)

RefreshCallback = Callable[[Optional[Exception], Optional[Session]], None]


class ChallengeKind(str, enum.Enum):
    """Intermediate steps the provider may require before sign-in completes."""

    CUSTOM_CHALLENGE = "CUSTOM_CHALLENGE"
    SMS_MFA = "SMS_MFA"
    MFA_SETUP = "MFA_SETUP"
    NEW_PASSWORD_REQUIRED = "NEW_PASSWORD_REQUIRED"
    SOFTWARE_TOKEN_MFA = "SOFTWARE_TOKEN_MFA"
    SELECT_MFA_TYPE = "SELECT_MFA_TYPE"


@dataclass(frozen=True)
class PendingChallenge:
    """A challenge waiting for the caller's response."""

    kind: ChallengeKind
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthSuccess:
    """The provider established a session."""

    session: Session


@dataclass(frozen=True)
class AuthFailure:
    """The provider rejected the attempt."""

    error: Exception


@dataclass(frozen=True)
class ChallengeIssued:
    """The provider needs another answer before it can issue a session."""

    kind: ChallengeKind
    params: dict[str, Any] = field(default_factory=dict)


AuthOutcome = Union[AuthSuccess, AuthFailure, ChallengeIssued]


class ProviderUser(ABC):
    """Handle for one user of the identity provider.

    The orchestration core attaches state to the handle as sign-in
    progresses: the current :attr:`sign_in_session`, a
    :attr:`challenge` while one is pending, and the enriched
    :attr:`attributes` / :attr:`preferred_mfa` once the profile is fetched.

    Args:
        username: The user's login name.
    """

    def __init__(self, username: str) -> None:
        self.username = username
        self.sign_in_session: Optional[Session] = None
        self.challenge: Optional[PendingChallenge] = None
        self.attributes: dict[str, Any] = {}
        self.preferred_mfa: Optional[str] = None
        self.authentication_flow_type: Optional[str] = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(username={self.username!r})"

    def _unsupported(self, operation: str) -> NotImplementedError:
        return NotImplementedError(
            f"{type(self).__name__} does not support '{operation}'"
        )

    # --- session ---

    @abstractmethod
    async def get_session(
        self, client_metadata: Optional[dict[str, str]] = None
    ) -> Session:
        """Return a valid session, refreshing it with the provider if needed."""
        ...

    @abstractmethod
    def set_sign_in_session(self, session: Session) -> None:
        """Attach *session* to the user and cache its tokens."""
        ...

    @abstractmethod
    def sign_out(self) -> None:
        """Forget the cached tokens of this user locally."""
        ...

    async def global_sign_out(self) -> None:
        """Revoke every token issued to the user."""
        raise self._unsupported("global_sign_out")

    # --- sign-in flows ---

    async def authenticate(self, details: AuthenticationDetails) -> AuthOutcome:
        """Start a password-based sign-in."""
        raise self._unsupported("authenticate")

    async def initiate_auth(self, details: AuthenticationDetails) -> AuthOutcome:
        """Start a custom-auth (passwordless) sign-in."""
        raise self._unsupported("initiate_auth")

    async def send_custom_challenge_answer(
        self, answer: str, client_metadata: Optional[dict[str, str]] = None
    ) -> AuthOutcome:
        """Answer a custom challenge."""
        raise self._unsupported("send_custom_challenge_answer")

    async def send_mfa_code(
        self,
        code: str,
        mfa_type: Optional[str] = None,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> AuthOutcome:
        """Answer an SMS or TOTP challenge."""
        raise self._unsupported("send_mfa_code")

    async def complete_new_password_challenge(
        self,
        password: str,
        required_attributes: dict[str, str],
        client_metadata: Optional[dict[str, str]] = None,
    ) -> AuthOutcome:
        """Answer a new-password-required challenge."""
        raise self._unsupported("complete_new_password_challenge")

    # --- registration and passwords ---

    async def confirm_registration(
        self,
        code: str,
        force_alias_creation: bool = True,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> str:
        raise self._unsupported("confirm_registration")

    async def resend_confirmation_code(
        self, client_metadata: Optional[dict[str, str]] = None
    ) -> CodeDeliveryDetails:
        raise self._unsupported("resend_confirmation_code")

    async def change_password(
        self,
        old_password: str,
        new_password: str,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> str:
        raise self._unsupported("change_password")

    async def forgot_password(
        self, client_metadata: Optional[dict[str, str]] = None
    ) -> CodeDeliveryDetails:
        raise self._unsupported("forgot_password")

    async def confirm_password(
        self,
        code: str,
        new_password: str,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> str:
        raise self._unsupported("confirm_password")

    # --- profile ---

    async def get_user_data(
        self,
        bypass_cache: bool = False,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        """Return ``UserAttributes``, ``PreferredMfaSetting`` and ``UserMFASettingList``."""
        raise self._unsupported("get_user_data")

    async def get_user_attributes(self) -> list[UserAttribute]:
        raise self._unsupported("get_user_attributes")

    async def update_attributes(
        self,
        attributes: list[UserAttribute],
        client_metadata: Optional[dict[str, str]] = None,
    ) -> tuple[str, list[CodeDeliveryDetails]]:
        """Update attributes; returns the result and any code deliveries triggered."""
        raise self._unsupported("update_attributes")

    async def delete_attributes(self, names: list[str]) -> str:
        raise self._unsupported("delete_attributes")

    async def get_attribute_verification_code(
        self, attribute: str, client_metadata: Optional[dict[str, str]] = None
    ) -> CodeDeliveryDetails:
        raise self._unsupported("get_attribute_verification_code")

    async def verify_attribute(self, attribute: str, code: str) -> str:
        raise self._unsupported("verify_attribute")

    async def delete_user(self) -> str:
        raise self._unsupported("delete_user")

    # --- MFA ---

    async def set_user_mfa_preference(
        self,
        sms_settings: Optional[dict[str, bool]],
        totp_settings: Optional[dict[str, bool]],
    ) -> str:
        raise self._unsupported("set_user_mfa_preference")

    async def associate_software_token(self) -> str:
        """Start TOTP setup and return the shared secret."""
        raise self._unsupported("associate_software_token")

    async def verify_software_token(self, code: str, friendly_name: str) -> Session:
        raise self._unsupported("verify_software_token")

    # --- devices ---

    async def set_device_status_remembered(self) -> str:
        raise self._unsupported("set_device_status_remembered")

    async def forget_device(self) -> None:
        raise self._unsupported("forget_device")

    async def list_devices(
        self, limit: int, pagination_token: Optional[str] = None
    ) -> dict[str, Any]:
        """Return ``{"Devices": [{"DeviceKey": ..., "DeviceAttributes": [...]}]}``."""
        raise self._unsupported("list_devices")


class IdentityProvider(ABC):
    """The user pool: creates user handles and restores the last signed-in user.

    The orchestration context installs a refresh-callback wrapper with
    :meth:`set_refresh_wrapper`; implementations pass every low-level token
    renewal through :meth:`wrap_refresh_callback` so observers are notified.
    """

    _refresh_wrapper: Optional[Callable[[RefreshCallback], RefreshCallback]] = None

    @abstractmethod
    def create_user(self, username: str) -> ProviderUser:
        """Return a fresh handle for *username*."""
        ...

    @abstractmethod
    def current_user(self) -> Optional[ProviderUser]:
        """Return a handle for the last signed-in user, or ``None``."""
        ...

    async def sign_up(
        self,
        username: str,
        password: str,
        attributes: list[UserAttribute],
        validation_data: list[UserAttribute],
        client_metadata: Optional[dict[str, str]] = None,
    ) -> SignUpResult:
        raise NotImplementedError(f"{type(self).__name__} does not support 'sign_up'")

    def set_refresh_wrapper(
        self, wrapper: Callable[[RefreshCallback], RefreshCallback]
    ) -> None:
        self._refresh_wrapper = wrapper

    def wrap_refresh_callback(self, callback: RefreshCallback) -> RefreshCallback:
        if self._refresh_wrapper is None:
            return callback
        return self._refresh_wrapper(callback)


class OAuthHandler(ABC):
    """Hosted-UI client: authorize redirect, code exchange, sign-out redirect."""

    @abstractmethod
    def initiate_authorization(
        self,
        provider: Optional[str] = None,
        custom_state: Optional[str] = None,
    ) -> str:
        """Send the user to the authorize endpoint and return the URL used."""
        ...

    @abstractmethod
    async def exchange_code(
        self, url: str, user_agent: Optional[str] = None
    ) -> TokenResponse:
        """Trade the code or token carried by *url* for a token triple."""
        ...

    @abstractmethod
    def sign_out(self) -> str:
        """Send the user to the hosted logout endpoint and return the URL used."""
        ...


class CredentialsProvider(ABC):
    """Exchanges sessions for short-lived cloud credentials."""

    @abstractmethod
    async def set(self, session: Optional[Session], source: str) -> Any:
        """Exchange *session* (``source`` is ``"session"`` or ``"guest"``)."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Forget any exchanged credentials."""
        ...

    async def get(self) -> Any:
        return None


class NoCredentials(CredentialsProvider):
    """Credentials provider used when no identity pool is configured."""

    async def set(self, session: Optional[Session], source: str) -> None:
        return None

    async def clear(self) -> None:
        return None


class UrlHistory(ABC):
    """The host's address bar. Only browser-like hosts provide one."""

    @abstractmethod
    def replace_state(self, url: str) -> None:
        """Replace the visible URL without adding a history entry."""
        ...
