"""The explicit orchestration context.

:class:`AuthContext` owns one instance of each core component and exposes
every authentication operation an application needs. There is no
process-wide singleton: an application builds one context per identity
provider configuration, and tests build as many independent contexts as
they like.

Wiring::

    AuthContext
    +-- SessionCoordinator      current user, debounced refresh, cleanup
    +-- ChallengeStateMachine   sign-in attempts and challenge responses
    +-- RedirectHandler         hosted-UI redirect completion (with OAuth)
    +-- AutoSignInOrchestrator  sign-in after registration

All operations are coroutines and must run on one event loop. The storage
is synced once, before the first read.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from authflow import __version__
from authflow.auth.attributes import (
    attributes_to_object,
    mfa_type_from_user_data,
    partition_verified,
    updatable_attributes,
)
from authflow.auth.auto_signin import (
    MAX_POLLING_DURATION,
    POLLING_INTERVAL,
    AutoSignInOrchestrator,
)
from authflow.auth.base import (
    CredentialsProvider,
    IdentityProvider,
    NoCredentials,
    OAuthHandler,
    ProviderUser,
    UrlHistory,
)
from authflow.auth.challenge import ChallengeStateMachine
from authflow.auth.redirect import (
    FEDERATED_USER_AGENT,
    OAUTH_FLOW_TIMEOUT,
    RedirectHandler,
)
from authflow.auth.session import HOSTED_UI_FLAG, SIGN_OUT_TIMEOUT, SessionCoordinator
from authflow.exceptions import (
    AuthErrorType,
    ConfigError,
    DeviceConfigError,
    NetworkError,
    NoUserPoolError,
    NotAuthenticatedError,
    ValidationError,
)
from authflow.hub import AUTH_CHANNEL, Hub, HubEvent, Subscription
from authflow.models import (
    AuthenticationDetails,
    AuthOptions,
    CodeDeliveryDetails,
    Device,
    Session,
    SignUpResult,
    UserAttribute,
)
from authflow.storage import AuthStorage, FileStorage, MemoryStorage, is_valid_storage

logger = logging.getLogger(__name__)

USER_ADMIN_SCOPE = "aws.cognito.signin.user.admin"
MAX_DEVICES = 60
FEDERATED_INFO = "authflow-federated-info"
TOTP_DEVICE_NAME = "My TOTP device"

_USER_AGENT = f"authflow/{__version__}"


def _default_storage(options: AuthOptions) -> AuthStorage:
    if options.storage_file:
        return FileStorage(Path(options.storage_file).expanduser())
    return MemoryStorage()


class AuthContext:
    """Authentication orchestration for one identity-provider configuration.

    Args:
        options: Effective configuration, usually from
            :func:`authflow.config.resolve_options`.
        provider: User-pool client. Operations that need one raise
            :class:`~authflow.exceptions.NoUserPoolError` without it.
        storage: Key/value store; defaults to ``options.storage_file`` or
            memory.
        hub: Event bus; a private one is created when omitted.
        credentials: Cloud-credentials exchanger; defaults to
            :class:`~authflow.auth.base.NoCredentials`.
        oauth_handler: Hosted-UI client; enables federated sign-in and
            redirect handling.
        history: Address bar of a browser host. Its presence also marks the
            host as a browser for hosted sign-out.
        auto_sign_in_interval: Seconds between auto sign-in polls.
        auto_sign_in_max_duration: Seconds after which polling gives up.
        oauth_wait_timeout: Ceiling for waiting on an in-flight redirect.
        sign_out_timeout: Ceiling for a browser hosted sign-out.

    Raises:
        ConfigError: If *storage* does not implement the storage methods.
    """

    def __init__(
        self,
        options: AuthOptions,
        provider: Optional[IdentityProvider] = None,
        storage: Optional[AuthStorage] = None,
        hub: Optional[Hub] = None,
        credentials: Optional[CredentialsProvider] = None,
        oauth_handler: Optional[OAuthHandler] = None,
        history: Optional[UrlHistory] = None,
        auto_sign_in_interval: float = POLLING_INTERVAL,
        auto_sign_in_max_duration: float = MAX_POLLING_DURATION,
        oauth_wait_timeout: float = OAUTH_FLOW_TIMEOUT,
        sign_out_timeout: float = SIGN_OUT_TIMEOUT,
    ) -> None:
        if storage is None:
            storage = _default_storage(options)
        elif not is_valid_storage(storage):
            logger.error("The storage in the Auth config is not valid!")
            raise ConfigError("Empty storage object")

        self.options = options
        self.provider = provider
        self.storage = storage
        self.hub = hub or Hub()
        self.credentials = credentials or NoCredentials()
        self.oauth_handler = oauth_handler
        self._oauth_wait_timeout = oauth_wait_timeout
        self._synced = False
        self._hosted_ui_subscription: Optional[Subscription] = None

        self.coordinator = SessionCoordinator(
            self.hub,
            self.storage,
            self.credentials,
            oauth_handler=oauth_handler,
            is_browser=history is not None,
            client_metadata=options.client_metadata,
            sign_out_timeout=sign_out_timeout,
        )

        self.challenges: Optional[ChallengeStateMachine] = None
        self.auto_sign_in: Optional[AutoSignInOrchestrator] = None
        self.redirect: Optional[RedirectHandler] = None
        if provider is not None:
            provider.set_refresh_wrapper(self.coordinator.wrap_refresh_callback)
            self.challenges = ChallengeStateMachine(
                provider,
                self.hub,
                self.credentials,
                self.coordinator,
                self.current_user_pool_user,
            )
            self.auto_sign_in = AutoSignInOrchestrator(
                self.challenges,
                self.hub,
                self.storage,
                verification_method=options.sign_up_verification_method,
                interval=auto_sign_in_interval,
                max_duration=auto_sign_in_max_duration,
            )
            if oauth_handler is not None:
                self.redirect = RedirectHandler(
                    options,
                    provider,
                    oauth_handler,
                    self.storage,
                    self.hub,
                    self.credentials,
                    history=history,
                )

    def __repr__(self) -> str:
        return f"AuthContext(user_pool_id={self.options.user_pool_id!r})"

    @property
    def user(self) -> Optional[ProviderUser]:
        """The user signed in through this context, if any."""
        return self.coordinator.current_user

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def configure(self) -> AuthOptions:
        """Sync storage, start tracking hosted-UI sign-ins, recover auto sign-in."""
        logger.debug("configure Auth")
        await self._ensure_synced()
        if self._hosted_ui_subscription is None:
            self._hosted_ui_subscription = self.hub.listen(
                AUTH_CHANNEL, self._track_hosted_ui
            )
        self.hub.dispatch(
            AUTH_CHANNEL,
            "configured",
            None,
            "The Auth category has been configured successfully",
        )
        if self.auto_sign_in is not None:
            self.auto_sign_in.recover_abandoned()
        return self.options

    async def close(self) -> None:
        """Stop listening on the hub and wait for auto sign-in to settle."""
        if self._hosted_ui_subscription is not None:
            self._hosted_ui_subscription.cancel()
            self._hosted_ui_subscription = None
        if self.auto_sign_in is not None:
            await self.auto_sign_in.drain()

    async def _ensure_synced(self) -> None:
        if self._synced:
            return
        sync = getattr(self.storage, "sync", None)
        if callable(sync):
            try:
                await sync()
            except Exception as exc:
                logger.debug("Failed to sync cache info into memory: %s", exc)
                raise
        self._synced = True

    def _track_hosted_ui(self, payload: HubEvent) -> None:
        if payload.event in ("signIn", "verify"):
            self.storage.set_item(HOSTED_UI_FLAG, "false")
        elif payload.event == "signOut":
            self.storage.remove_item(HOSTED_UI_FLAG)
        elif payload.event == "cognitoHostedUI":
            self.storage.set_item(HOSTED_UI_FLAG, "true")

    def _require_user_pool(self) -> IdentityProvider:
        if self.provider is None:
            if self.options.user_pool_id or self.options.identity_pool_id:
                raise NoUserPoolError(AuthErrorType.MISSING_AUTH_CONFIG)
            raise NoUserPoolError(AuthErrorType.NO_CONFIG)
        return self.provider

    def _require_challenges(self) -> ChallengeStateMachine:
        self._require_user_pool()
        assert self.challenges is not None
        return self.challenges

    def _metadata(self, client_metadata: Optional[dict[str, str]]) -> dict[str, str]:
        return client_metadata or self.options.client_metadata

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def sign_up(
        self,
        username: str,
        password: str,
        attributes: Optional[Mapping[str, str]] = None,
        validation_data: Optional[Mapping[str, str]] = None,
        client_metadata: Optional[dict[str, str]] = None,
        auto_sign_in: bool = False,
        auto_sign_in_validation_data: Optional[dict[str, str]] = None,
        auto_sign_in_client_metadata: Optional[dict[str, str]] = None,
    ) -> SignUpResult:
        """Register a new user.

        With *auto_sign_in* the user is signed in as soon as the account is
        confirmed; the outcome arrives as an ``autoSignIn`` or
        ``autoSignIn_failure`` event, never as an error of this call.
        """
        provider = self._require_user_pool()
        if not username:
            raise ValidationError(AuthErrorType.EMPTY_USERNAME)
        if not password:
            raise ValidationError(AuthErrorType.EMPTY_PASSWORD)

        attribute_list = [
            UserAttribute(name=k, value=v) for k, v in (attributes or {}).items()
        ]
        validation_list = [
            UserAttribute(name=k, value=v) for k, v in (validation_data or {}).items()
        ]
        logger.debug("signUp attrs: %s", attribute_list)

        orchestrator = self.auto_sign_in
        assert orchestrator is not None
        if auto_sign_in:
            orchestrator.request()

        try:
            result = await provider.sign_up(
                username,
                password,
                attribute_list,
                validation_list,
                self._metadata(client_metadata),
            )
        except Exception as exc:
            if auto_sign_in:
                orchestrator.withdraw()
            self.hub.dispatch(
                AUTH_CHANNEL, "signUp_failure", exc, f"{username} failed to signup"
            )
            raise

        self.hub.dispatch(
            AUTH_CHANNEL, "signUp", result, f"{username} has signed up successfully"
        )
        if auto_sign_in:
            details = AuthenticationDetails(
                username=username,
                password=password,
                validation_data=auto_sign_in_validation_data or {},
                client_metadata=auto_sign_in_client_metadata or {},
            )
            orchestrator.start(details, result)
        return result

    async def confirm_sign_up(
        self,
        username: str,
        code: str,
        force_alias_creation: bool = True,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> str:
        provider = self._require_user_pool()
        if not username:
            raise ValidationError(AuthErrorType.EMPTY_USERNAME)
        if not code:
            raise ValidationError(AuthErrorType.EMPTY_CODE)

        user = provider.create_user(username)
        result = await user.confirm_registration(
            code, force_alias_creation, self._metadata(client_metadata)
        )
        self.hub.dispatch(
            AUTH_CHANNEL,
            "confirmSignUp",
            result,
            f"{username} has been confirmed successfully",
        )
        assert self.auto_sign_in is not None
        self.auto_sign_in.check_orphaned_intent()
        return result

    async def resend_sign_up(
        self, username: str, client_metadata: Optional[dict[str, str]] = None
    ) -> CodeDeliveryDetails:
        provider = self._require_user_pool()
        if not username:
            raise ValidationError(AuthErrorType.EMPTY_USERNAME)
        user = provider.create_user(username)
        return await user.resend_confirmation_code(self._metadata(client_metadata))

    # ------------------------------------------------------------------
    # Sign in and challenges
    # ------------------------------------------------------------------

    async def sign_in(
        self,
        username: str,
        password: Optional[str] = None,
        validation_data: Optional[dict[str, str]] = None,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> ProviderUser:
        """Sign in with a password, or start a custom-auth flow without one.

        The returned user carries a :attr:`~ProviderUser.challenge` when the
        provider needs another answer.
        """
        machine = self._require_challenges()
        if username is not None and not isinstance(username, str):
            raise ValidationError(AuthErrorType.INVALID_USERNAME)
        if not username:
            raise ValidationError(AuthErrorType.EMPTY_USERNAME)

        details = AuthenticationDetails(
            username=username,
            password=password,
            validation_data=validation_data or {},
            client_metadata=self._metadata(client_metadata),
        )
        if password:
            return await machine.sign_in_with_password(details)
        return await machine.sign_in_without_password(details)

    async def confirm_sign_in(
        self,
        user: ProviderUser,
        code: str,
        mfa_type: Optional[str] = None,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> ProviderUser:
        return await self._require_challenges().confirm_sign_in(
            user, code, mfa_type, self._metadata(client_metadata)
        )

    async def complete_new_password(
        self,
        user: ProviderUser,
        password: str,
        required_attributes: Optional[dict[str, str]] = None,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> ProviderUser:
        return await self._require_challenges().complete_new_password(
            user, password, required_attributes, self._metadata(client_metadata)
        )

    async def send_custom_challenge_answer(
        self,
        user: ProviderUser,
        answer: str,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> ProviderUser:
        return await self._require_challenges().send_custom_challenge_answer(
            user, answer, self._metadata(client_metadata)
        )

    # ------------------------------------------------------------------
    # Current user and session
    # ------------------------------------------------------------------

    async def current_user_pool_user(self, bypass_cache: bool = False) -> ProviderUser:
        """Return the signed-in user with a fresh session and its attributes.

        Waits (bounded) for an in-flight hosted-UI redirect first. Attributes
        and the preferred MFA are loaded only when the access token grants
        the user-admin scope.

        Raises:
            NotAuthenticatedError: If nobody is signed in.
        """
        provider = self._require_user_pool()
        await self._ensure_synced()
        if self.redirect is not None:
            await self.redirect.wait_for_resolution(self._oauth_wait_timeout)

        user = provider.current_user()
        if user is None:
            logger.debug("Failed to get user from user pool")
            raise NotAuthenticatedError("No current user")

        session = await self.coordinator.get_session(user)
        if bypass_cache:
            await self.credentials.clear()

        if USER_ADMIN_SCOPE not in session.scopes:
            logger.debug(
                "Unable to get the user data because the %s is not in the "
                "scopes of the access token",
                USER_ADMIN_SCOPE,
            )
            return user

        try:
            data = await user.get_user_data(
                bypass_cache=bypass_cache, client_metadata=self.options.client_metadata
            )
        except Exception as exc:
            logger.debug("getting user data failed: %s", exc)
            if self.coordinator.is_session_invalid(exc):
                await self.coordinator.recover(user, exc)
                raise
            return user

        user.preferred_mfa = data.get("PreferredMfaSetting") or "NOMFA"
        user.attributes = attributes_to_object(data.get("UserAttributes") or [])
        return user

    def _federated_user(self) -> Optional[dict[str, Any]]:
        raw = self.storage.get_item(FEDERATED_INFO)
        if not raw:
            return None
        try:
            info = json.loads(raw)
            return {**info["user"], "token": info.get("token")}
        except (ValueError, KeyError, TypeError) as exc:
            logger.debug("cannot load federated user from auth storage: %s", exc)
            return None

    async def current_authenticated_user(
        self, bypass_cache: bool = False
    ) -> ProviderUser | dict[str, Any]:
        """Return the federated user from storage, else the user-pool user.

        Raises:
            NotAuthenticatedError: If nobody is signed in.
        """
        logger.debug("getting current authenticated user")
        await self._ensure_synced()
        federated = self._federated_user()
        if federated is not None:
            logger.debug("get current authenticated federated user")
            return federated

        try:
            user = await self.current_user_pool_user(bypass_cache=bypass_cache)
        except NoUserPoolError:
            logger.error(
                "Cannot get the current user because the user pool is missing. "
                "Please make sure the context is configured with a valid user pool id"
            )
            raise
        except Exception as exc:
            logger.debug("The user is not authenticated by the error: %s", exc)
            raise NotAuthenticatedError("The user is not authenticated") from exc
        self.coordinator.current_user = user
        return user

    async def current_session(self) -> Session:
        logger.debug("Getting current session")
        if self.provider is None:
            raise ConfigError("No User Pool in the configuration.")
        user = await self.current_user_pool_user()
        return await self.coordinator.get_session(user)

    async def user_session(self, user: Optional[ProviderUser]) -> Session:
        return await self.coordinator.get_session(user)

    async def current_user_credentials(self) -> Any:
        """Exchange the current session for credentials, or fall back to guest."""
        await self._ensure_synced()
        try:
            session = await self.current_session()
        except Exception as exc:
            logger.debug("getting guest credentials: %s", exc)
            return await self.credentials.set(None, "guest")
        return await self.credentials.set(session, "session")

    async def current_credentials(self) -> Any:
        return await self.credentials.get()

    async def current_user_info(self) -> Optional[dict[str, Any]]:
        """Return ``{"id", "username", "attributes"}`` of the signed-in user.

        ``None`` when nobody is signed in, ``{}`` when attributes cannot be read.
        """
        try:
            user = await self.current_user_pool_user()
        except Exception as exc:
            logger.error("%s", exc)
            return None

        try:
            attributes = await self.user_attributes(user)
        except Exception as exc:
            logger.error("currentUserInfo error: %s", exc)
            return {}

        credentials = None
        try:
            credentials = await self.current_credentials()
        except Exception as exc:
            logger.debug(
                "Failed to retrieve credentials while getting current user info: %s", exc
            )
        identity_id = None
        if isinstance(credentials, Mapping):
            identity_id = credentials.get("identity_id")
        elif credentials is not None:
            identity_id = getattr(credentials, "identity_id", None)
        return {
            "id": identity_id,
            "username": user.username,
            "attributes": attributes_to_object(attributes),
        }

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    async def user_attributes(self, user: ProviderUser) -> list[UserAttribute]:
        await self.coordinator.get_session(user)
        return await user.get_user_attributes()

    async def verified_contact(self, user: ProviderUser) -> dict[str, dict[str, Any]]:
        """Partition the user's email and phone number by verification status."""
        return partition_verified(await self.user_attributes(user))

    async def update_user_attributes(
        self,
        user: ProviderUser,
        attributes: Mapping[str, Any],
        client_metadata: Optional[dict[str, str]] = None,
    ) -> str:
        """Update *attributes*; ``sub`` and ``*_verified`` are never sent.

        Dispatches ``updateUserAttributes`` with, per attribute, whether it
        was updated right away or awaits a confirmation code.
        """
        await self.coordinator.get_session(user)
        try:
            result, deliveries = await user.update_attributes(
                updatable_attributes(attributes), self._metadata(client_metadata)
            )
        except Exception as exc:
            self.hub.dispatch(
                AUTH_CHANNEL,
                "updateUserAttributes_failure",
                exc,
                "Failed to update attributes",
            )
            raise

        summary: dict[str, dict[str, Any]] = {}
        for name in attributes:
            entry: dict[str, Any] = {"is_updated": True}
            delivery = next((d for d in deliveries if d.attribute_name == name), None)
            if delivery is not None:
                entry["is_updated"] = False
                entry["code_delivery_details"] = delivery
            summary[name] = entry
        self.hub.dispatch(
            AUTH_CHANNEL,
            "updateUserAttributes",
            summary,
            "Attributes successfully updated",
        )
        return result

    async def delete_user_attributes(self, user: ProviderUser, names: list[str]) -> str:
        await self.coordinator.get_session(user)
        return await user.delete_attributes(names)

    async def verify_user_attribute(
        self,
        user: ProviderUser,
        attribute: str,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> CodeDeliveryDetails:
        return await user.get_attribute_verification_code(
            attribute, self._metadata(client_metadata)
        )

    async def verify_user_attribute_submit(
        self, user: ProviderUser, attribute: str, code: str
    ) -> str:
        if not code:
            raise ValidationError(AuthErrorType.EMPTY_CODE)
        return await user.verify_attribute(attribute, code)

    async def verify_current_user_attribute(self, attribute: str) -> CodeDeliveryDetails:
        user = await self.current_user_pool_user()
        return await self.verify_user_attribute(user, attribute)

    async def verify_current_user_attribute_submit(self, attribute: str, code: str) -> str:
        user = await self.current_user_pool_user()
        return await self.verify_user_attribute_submit(user, attribute, code)

    # ------------------------------------------------------------------
    # MFA
    # ------------------------------------------------------------------

    async def _user_data(self, user: ProviderUser, bypass_cache: bool) -> dict[str, Any]:
        try:
            return await user.get_user_data(
                bypass_cache=bypass_cache, client_metadata=self.options.client_metadata
            )
        except Exception as exc:
            logger.debug("getting user data failed: %s", exc)
            if self.coordinator.is_session_invalid(exc):
                await self.coordinator.recover(user, exc)
            raise

    async def get_preferred_mfa(self, user: ProviderUser, bypass_cache: bool = False) -> str:
        data = await self._user_data(user, bypass_cache)
        mfa_type = mfa_type_from_user_data(data)
        if mfa_type is None:
            logger.debug("invalid case for getPreferredMFA: %s", data)
            raise ValidationError(AuthErrorType.INVALID_MFA)
        return mfa_type

    async def set_preferred_mfa(self, user: ProviderUser, method: str) -> str:
        """Set the preferred MFA: ``TOTP``, ``SOFTWARE_TOKEN_MFA``, ``SMS``, ``SMS_MFA`` or ``NOMFA``."""
        data = await self._user_data(user, bypass_cache=True)
        enabled = {"PreferredMfa": True, "Enabled": True}
        disabled = {"PreferredMfa": False, "Enabled": False}
        sms_settings: Optional[dict[str, bool]] = None
        totp_settings: Optional[dict[str, bool]] = None

        if method in ("TOTP", "SOFTWARE_TOKEN_MFA"):
            totp_settings = enabled
        elif method in ("SMS", "SMS_MFA"):
            sms_settings = enabled
        elif method == "NOMFA":
            current = mfa_type_from_user_data(data)
            if current == "NOMFA":
                return "No change for mfa type"
            if current == "SMS_MFA":
                sms_settings = disabled
            elif current == "SOFTWARE_TOKEN_MFA":
                totp_settings = disabled
            else:
                raise ValidationError(AuthErrorType.INVALID_MFA)
            for listed in data.get("UserMFASettingList") or []:
                if listed == "SMS_MFA":
                    sms_settings = disabled
                elif listed == "SOFTWARE_TOKEN_MFA":
                    totp_settings = disabled
        else:
            logger.debug("no valid mfa method provided")
            raise ValidationError(AuthErrorType.NO_MFA)

        result = await user.set_user_mfa_preference(sms_settings, totp_settings)
        logger.debug("Set user mfa success: %s", result)
        # Refresh the cached user data.
        await self._user_data(user, bypass_cache=True)
        return result

    async def setup_totp(self, user: ProviderUser) -> str:
        """Start TOTP enrolment and return the shared secret."""
        return await user.associate_software_token()

    async def verify_totp_token(self, user: ProviderUser, code: str) -> Session:
        logger.debug("verification totp token for %s", user)
        session = user.sign_in_session
        is_logged_in = session is not None and session.is_valid()
        result = await user.verify_software_token(code, TOTP_DEVICE_NAME)
        if not is_logged_in:
            self.hub.dispatch(
                AUTH_CHANNEL, "signIn", user, f"A user {user.username} has been signed in"
            )
        self.hub.dispatch(
            AUTH_CHANNEL, "verify", user, f"A user {user.username} has been verified"
        )
        return result

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    async def change_password(
        self,
        user: ProviderUser,
        old_password: str,
        new_password: str,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> str:
        await self.coordinator.get_session(user)
        return await user.change_password(
            old_password, new_password, self._metadata(client_metadata)
        )

    async def forgot_password(
        self, username: str, client_metadata: Optional[dict[str, str]] = None
    ) -> CodeDeliveryDetails:
        provider = self._require_user_pool()
        if not username:
            raise ValidationError(AuthErrorType.EMPTY_USERNAME)
        user = provider.create_user(username)
        try:
            delivery = await user.forgot_password(self._metadata(client_metadata))
        except Exception as exc:
            logger.debug("forgot password failure: %s", exc)
            self.hub.dispatch(
                AUTH_CHANNEL,
                "forgotPassword_failure",
                exc,
                f"{username} forgotPassword failed",
            )
            raise
        self.hub.dispatch(
            AUTH_CHANNEL,
            "forgotPassword",
            user,
            f"{username} has initiated forgot password flow",
        )
        return delivery

    async def forgot_password_submit(
        self,
        username: str,
        code: str,
        password: str,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> str:
        provider = self._require_user_pool()
        if not username:
            raise ValidationError(AuthErrorType.EMPTY_USERNAME)
        if not code:
            raise ValidationError(AuthErrorType.EMPTY_CODE)
        if not password:
            raise ValidationError(AuthErrorType.EMPTY_PASSWORD)
        user = provider.create_user(username)
        try:
            result = await user.confirm_password(
                code, password, self._metadata(client_metadata)
            )
        except Exception as exc:
            self.hub.dispatch(
                AUTH_CHANNEL,
                "forgotPasswordSubmit_failure",
                exc,
                f"{username} forgotPasswordSubmit failed",
            )
            raise
        self.hub.dispatch(
            AUTH_CHANNEL,
            "forgotPasswordSubmit",
            user,
            f"{username} forgotPasswordSubmit successful",
        )
        return result

    # ------------------------------------------------------------------
    # Sign out and account deletion
    # ------------------------------------------------------------------

    async def sign_out(self, global_: bool = False) -> None:
        """Sign the current user out; *global_* revokes every issued token."""
        try:
            await self.credentials.clear()
        except Exception as exc:
            logger.debug("failed to clear cached items: %s", exc)

        if self.provider is not None:
            user = self.provider.current_user()
            if user is not None:
                await self._provider_sign_out(user, global_)
            else:
                logger.debug("no current user")
        else:
            logger.debug("no user pool")

        self.hub.dispatch(
            AUTH_CHANNEL, "signOut", self.coordinator.current_user, "A user has been signed out"
        )
        self.coordinator.current_user = None

    async def _provider_sign_out(self, user: ProviderUser, global_: bool) -> None:
        await self._ensure_synced()
        signed_in_hosted_ui = self.coordinator.is_signed_in_hosted_ui()
        if global_:
            logger.debug("user global sign out %s", user)
            await self.coordinator.get_session(user)
            await user.global_sign_out()
        else:
            logger.debug("user sign out %s", user)
            user.sign_out()
        if signed_in_hosted_ui:
            await self.coordinator.hosted_sign_out()

    async def delete_user(self) -> str:
        """Delete the signed-in user's account and sign out."""
        await self._ensure_synced()
        provider = self._require_user_pool()
        signed_in_hosted_ui = self.coordinator.is_signed_in_hosted_ui()

        user = provider.current_user()
        if user is None:
            logger.debug("Failed to get user from user pool")
            raise NotAuthenticatedError("No current user.")

        await self.coordinator.get_session(user)
        result = await user.delete_user()
        self.hub.dispatch(
            AUTH_CHANNEL, "userDeleted", result, "The authenticated user has been deleted."
        )
        user.sign_out()
        self.coordinator.current_user = None
        try:
            await self.credentials.clear()
        except Exception as exc:
            logger.debug("failed to clear cached items: %s", exc)

        if signed_in_hosted_ui:
            await self.coordinator.hosted_sign_out()
        else:
            self.hub.dispatch(AUTH_CHANNEL, "signOut", None, "A user has been signed out")
        return result

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def _device_user(self) -> ProviderUser:
        try:
            return await self.current_user_pool_user()
        except Exception as exc:
            logger.debug("The user is not authenticated by the error: %s", exc)
            raise NotAuthenticatedError("The user is not authenticated") from exc

    @staticmethod
    def _device_error(error: Exception) -> Exception:
        code = getattr(error, "code", None)
        if code == "InvalidParameterException":
            return DeviceConfigError()
        if code == "NetworkError":
            return NetworkError(AuthErrorType.NETWORK_ERROR.value)
        return error

    async def remember_device(self) -> str:
        user = await self._device_user()
        try:
            return await user.set_device_status_remembered()
        except Exception as exc:
            mapped = self._device_error(exc)
            if mapped is exc:
                raise
            raise mapped from exc

    async def forget_device(self) -> None:
        user = await self._device_user()
        try:
            await user.forget_device()
        except Exception as exc:
            mapped = self._device_error(exc)
            if mapped is exc:
                raise
            raise mapped from exc

    async def fetch_devices(self) -> list[Device]:
        """List the remembered devices of the signed-in user (at most 60)."""
        user = await self._device_user()
        try:
            data = await user.list_devices(MAX_DEVICES, None)
        except Exception as exc:
            mapped = self._device_error(exc)
            if mapped is exc:
                raise
            raise mapped from exc

        devices = []
        for device in data.get("Devices", []):
            name = next(
                (
                    attr.get("Value")
                    for attr in device.get("DeviceAttributes", [])
                    if attr.get("Name") == "device_name"
                ),
                None,
            )
            devices.append(Device(id=device["DeviceKey"], name=name))
        return devices

    # ------------------------------------------------------------------
    # Federation
    # ------------------------------------------------------------------

    def federated_sign_in(
        self, provider: Optional[str] = None, custom_state: Optional[str] = None
    ) -> str:
        """Send the user to the hosted UI and return the authorize URL.

        *provider* selects a social identity provider (``Google``,
        ``Facebook`` ...); the hosted UI's own page is shown without one.
        *custom_state* comes back as a ``customOAuthState`` event.
        """
        if not self.options.identity_pool_id and not self.options.user_pool_id:
            raise ConfigError(
                "Federation requires either a User Pool or Identity Pool in config"
            )
        if not self.options.user_pool_id:
            raise ConfigError(
                "Federation with Identity Pools requires tokens passed as arguments"
            )
        if self.oauth_handler is None:
            raise ConfigError("OAuth is not configured for this user pool")

        self.storage.set_item(FEDERATED_USER_AGENT, f"{_USER_AGENT} federatedSignIn")
        return self.oauth_handler.initiate_authorization(provider, custom_state)

    async def handle_redirect(self, url: str) -> Any:
        """Complete a hosted-UI sign-in from the callback *url*.

        Exchange failures are reported as hub events only; see
        :class:`~authflow.auth.redirect.RedirectHandler`.
        """
        if self.redirect is None:
            raise ConfigError("OAuth responses require a User Pool defined in config")
        await self._ensure_synced()
        return await self.redirect.handle_url(url)
