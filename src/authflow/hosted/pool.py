"""Token-cache user pool for hosted-UI sign-in.

:class:`HostedUIUserPool` is the bundled
:class:`~authflow.auth.base.IdentityProvider`. It never sees a password:
users arrive through the hosted UI, and the pool's job is to cache their
tokens, renew them with the ``refresh_token`` grant, read the profile from
``/oauth2/userInfo`` and revoke tokens on global sign-out.

Tokens are cached in the context's storage under::

    authflow.{client_id}.LastAuthUser
    authflow.{client_id}.{username}.idToken
    authflow.{client_id}.{username}.accessToken
    authflow.{client_id}.{username}.refreshToken
    authflow.{client_id}.{username}.clockDrift
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from authflow.auth.base import IdentityProvider, ProviderUser
from authflow.exceptions import (
    ConfigError,
    NetworkError,
    OAuthError,
    ProviderError,
)
from authflow.hosted.oauth import HostedUIOAuthHandler
from authflow.models import (
    AuthenticationDetails,
    AuthOptions,
    Session,
    UserAttribute,
    clock_drift,
)
from authflow.storage import AuthStorage

logger = logging.getLogger(__name__)

NOT_AUTHORIZED = "NotAuthorizedException"

PASSWORD_FLOWS_UNSUPPORTED = (
    "The hosted UI user pool signs users in through the browser; "
    "use federated sign-in instead"
)


class HostedUIUser(ProviderUser):
    """A user whose tokens came from the hosted UI."""

    def __init__(self, username: str, pool: HostedUIUserPool) -> None:
        super().__init__(username)
        self._pool = pool

    async def get_session(
        self, client_metadata: Optional[dict[str, str]] = None
    ) -> Session:
        session = self.sign_in_session or self._pool.load_session(self.username)
        if session is None:
            raise ProviderError(
                "Local storage is missing an ID Token, Please authenticate",
                NOT_AUTHORIZED,
            )
        if session.is_valid():
            self.sign_in_session = session
            return session
        if not session.refresh_token:
            raise ProviderError("Refresh Token has expired", NOT_AUTHORIZED)
        session = await self._pool.refresh(self.username, session)
        self.sign_in_session = session
        return session

    def set_sign_in_session(self, session: Session) -> None:
        self.sign_in_session = session
        self._pool.cache_session(self.username, session)

    def sign_out(self) -> None:
        self.sign_in_session = None
        self._pool.clear_cached(self.username)

    async def global_sign_out(self) -> None:
        session = self.sign_in_session or self._pool.load_session(self.username)
        if session is not None and session.refresh_token:
            await self._pool.revoke(session.refresh_token)
        self.sign_out()

    async def authenticate(self, details: AuthenticationDetails) -> Any:
        raise ConfigError(PASSWORD_FLOWS_UNSUPPORTED)

    async def initiate_auth(self, details: AuthenticationDetails) -> Any:
        raise ConfigError(PASSWORD_FLOWS_UNSUPPORTED)

    async def get_user_data(
        self,
        bypass_cache: bool = False,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        session = await self.get_session(client_metadata)
        info = await self._pool.user_info(session.access_token)
        return {
            "Username": info.get("username", self.username),
            "UserAttributes": [
                {"Name": name, "Value": value if isinstance(value, str) else str(value).lower()}
                for name, value in info.items()
                if name != "username"
            ],
            "PreferredMfaSetting": None,
            "UserMFASettingList": None,
        }

    async def get_user_attributes(self) -> list[UserAttribute]:
        data = await self.get_user_data()
        return [UserAttribute.model_validate(attr) for attr in data["UserAttributes"]]


class HostedUIUserPool(IdentityProvider):
    """Identity provider backed by the hosted UI's token endpoints.

    Args:
        options: Must carry ``user_pool_web_client_id`` and ``oauth``.
        storage: Token cache.
        oauth_handler: Performs token-endpoint requests; one is created
            from *options* when omitted.
        transport: Optional ``httpx`` transport for ``userInfo`` and
            ``revoke`` requests.
    """

    def __init__(
        self,
        options: AuthOptions,
        storage: AuthStorage,
        oauth_handler: Optional[HostedUIOAuthHandler] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ) -> None:
        if not options.user_pool_web_client_id:
            raise ConfigError("Hosted UI user pool requires 'user_pool_web_client_id'")
        self._client_id = options.user_pool_web_client_id
        self._storage = storage
        self._oauth = oauth_handler or HostedUIOAuthHandler(
            options, storage, transport=transport, timeout=timeout
        )
        self._transport = transport
        self._timeout = timeout

    @property
    def key_prefix(self) -> str:
        return f"authflow.{self._client_id}"

    def _key(self, username: str, name: str) -> str:
        return f"{self.key_prefix}.{username}.{name}"

    # --- IdentityProvider ---

    def create_user(self, username: str) -> HostedUIUser:
        return HostedUIUser(username, self)

    def current_user(self) -> Optional[HostedUIUser]:
        username = self._storage.get_item(f"{self.key_prefix}.LastAuthUser")
        if not username:
            return None
        return self.create_user(username)

    # --- token cache ---

    def cache_session(self, username: str, session: Session) -> None:
        self._storage.set_item(self._key(username, "idToken"), session.id_token)
        self._storage.set_item(self._key(username, "accessToken"), session.access_token)
        if session.refresh_token:
            self._storage.set_item(
                self._key(username, "refreshToken"), session.refresh_token
            )
        self._storage.set_item(self._key(username, "clockDrift"), str(session.clock_drift))
        self._storage.set_item(f"{self.key_prefix}.LastAuthUser", username)

    def load_session(self, username: str) -> Optional[Session]:
        id_token = self._storage.get_item(self._key(username, "idToken"))
        access_token = self._storage.get_item(self._key(username, "accessToken"))
        if not id_token or not access_token:
            return None
        drift = self._storage.get_item(self._key(username, "clockDrift"))
        return Session(
            id_token=id_token,
            access_token=access_token,
            refresh_token=self._storage.get_item(self._key(username, "refreshToken")),
            clock_drift=int(drift) if drift else 0,
        )

    def clear_cached(self, username: str) -> None:
        for name in ("idToken", "accessToken", "refreshToken", "clockDrift"):
            self._storage.remove_item(self._key(username, name))
        self._storage.remove_item(f"{self.key_prefix}.LastAuthUser")

    # --- network ---

    async def refresh(self, username: str, session: Session) -> Session:
        """Renew *session* with the ``refresh_token`` grant.

        Raises:
            ProviderError: ``Refresh Token has expired`` when the provider
                answers ``invalid_grant``; the message of the provider error
                otherwise.
        """
        callback = self.wrap_refresh_callback(lambda error, session: None)
        logger.debug("Refreshing session of %s", username)
        try:
            token_data = await self._oauth.post_token_request(
                {
                    "grant_type": "refresh_token",
                    "client_id": self._client_id,
                    "refresh_token": session.refresh_token or "",
                }
            )
        except OAuthError as exc:
            if str(exc) == "invalid_grant":
                error = ProviderError("Refresh Token has expired", NOT_AUTHORIZED)
            else:
                error = ProviderError(str(exc))
            callback(error, None)
            raise error from exc

        id_token = token_data.get("id_token", session.id_token)
        access_token = token_data["access_token"]
        refreshed = Session(
            id_token=id_token,
            access_token=access_token,
            # the refresh grant does not rotate the refresh token
            refresh_token=token_data.get("refresh_token", session.refresh_token),
            clock_drift=clock_drift(id_token, access_token),
        )
        self.cache_session(username, refreshed)
        callback(None, refreshed)
        return refreshed

    async def user_info(self, access_token: str) -> dict[str, Any]:
        """Return the claims served by ``/oauth2/userInfo``."""
        url = f"{self._oauth.base_url}/oauth2/userInfo"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.get(
                    url, headers={"Authorization": f"Bearer {access_token}"}
                )
        except httpx.HTTPError as exc:
            raise NetworkError(f"Failed to reach {url}: {exc}") from exc

        if response.status_code == 401:
            raise ProviderError("Access Token has been revoked", NOT_AUTHORIZED)
        if response.is_error:
            raise ProviderError(
                f"userInfo request failed with status {response.status_code}"
            )
        return response.json()

    async def revoke(self, refresh_token: str) -> None:
        """Revoke *refresh_token* and every access token issued from it."""
        url = f"{self._oauth.base_url}/oauth2/revoke"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    url, data={"token": refresh_token, "client_id": self._client_id}
                )
        except httpx.HTTPError as exc:
            raise NetworkError(f"Failed to reach {url}: {exc}") from exc
        if response.is_error:
            raise ProviderError(
                f"Token revocation failed with status {response.status_code}"
            )
