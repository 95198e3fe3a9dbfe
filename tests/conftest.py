"""Shared test fixtures for authflow.

Provides an isolated config environment, a scripted in-memory identity
provider, JWT/session factories, an event recorder, and a ready-wired
:class:`~authflow.auth.context.AuthContext`. These fixtures are
automatically discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Callable, Optional

import jwt
import pytest

from authflow.auth import AuthContext
from authflow.auth.base import (
    AuthOutcome,
    AuthSuccess,
    CredentialsProvider,
    IdentityProvider,
    ProviderUser,
)
from authflow.hub import AUTH_CHANNEL, Hub, HubEvent
from authflow.models import (
    AuthenticationDetails,
    AuthOptions,
    CodeDeliveryDetails,
    OAuthOptions,
    Session,
    SignUpResult,
    UserAttribute,
)
from authflow.output import reset_output
from authflow.storage import MemoryStorage

ADMIN_SCOPE = "openid email aws.cognito.signin.user.admin"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time; CliRunner swaps those streams per invocation.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Points XDG_CONFIG_HOME and XDG_DATA_HOME into tmp_path, clears every
    AUTHFLOW_* variable and changes the working directory to tmp_path.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("authflow.config._is_xdg_platform", lambda: True)

    for var in [
        "AUTHFLOW_USER_POOL_ID",
        "AUTHFLOW_CLIENT_ID",
        "AUTHFLOW_IDENTITY_POOL_ID",
        "AUTHFLOW_REGION",
        "AUTHFLOW_OAUTH_DOMAIN",
        "AUTHFLOW_REDIRECT_SIGN_IN",
        "AUTHFLOW_REDIRECT_SIGN_OUT",
        "AUTHFLOW_STORAGE_FILE",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Tokens and sessions
# ---------------------------------------------------------------------------


def make_token(
    username: str = "alice",
    expires_in: int = 3600,
    scope: Optional[str] = None,
    **claims: Any,
) -> str:
    """Encode an HS256 JWT; signatures are never verified by authflow."""
    now = int(time.time())
    payload: dict[str, Any] = {
        "sub": f"sub-{username}",
        "cognito:username": username,
        "iat": now,
        "exp": now + expires_in,
    }
    if scope is not None:
        payload["scope"] = scope
    payload.update(claims)
    return jwt.encode(payload, "test-secret", algorithm="HS256")


@pytest.fixture
def token_factory() -> Callable[..., str]:
    return make_token


@pytest.fixture
def session_factory() -> Callable[..., Session]:
    def factory(
        username: str = "alice",
        expires_in: int = 3600,
        scope: str = ADMIN_SCOPE,
        refresh_token: Optional[str] = "refresh-token",
    ) -> Session:
        return Session(
            id_token=make_token(username, expires_in),
            access_token=make_token(username, expires_in, scope=scope),
            refresh_token=refresh_token,
        )

    return factory


# ---------------------------------------------------------------------------
# Scripted identity provider
# ---------------------------------------------------------------------------


class FakeUser(ProviderUser):
    """User handle whose provider calls are scripted through its pool."""

    def __init__(self, username: str, pool: FakeProvider) -> None:
        super().__init__(username)
        self.pool = pool

    async def get_session(
        self, client_metadata: Optional[dict[str, str]] = None
    ) -> Session:
        self.pool.get_session_calls += 1
        if self.pool.session_delay:
            await asyncio.sleep(self.pool.session_delay)
        if self.pool.session_error is not None:
            raise self.pool.session_error
        session = self.pool.sessions.get(self.username)
        if session is None:
            raise RuntimeError("no cached session")
        return session

    def set_sign_in_session(self, session: Session) -> None:
        self.sign_in_session = session
        self.pool.sessions[self.username] = session
        self.pool.last_user = self.username

    def sign_out(self) -> None:
        self.pool.signed_out.append(self.username)
        if self.pool.sign_out_error is not None:
            raise self.pool.sign_out_error
        self.sign_in_session = None
        self.pool.sessions.pop(self.username, None)
        self.pool.last_user = None

    async def global_sign_out(self) -> None:
        self.pool.global_signed_out.append(self.username)
        self.sign_out()

    async def _next(self, call: str, *args: Any) -> AuthOutcome:
        self.pool.calls.append((call, self.username) + args)
        if self.pool.outcomes:
            outcome = self.pool.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return AuthSuccess(self.pool.new_session(self.username))

    async def authenticate(self, details: AuthenticationDetails) -> AuthOutcome:
        return await self._next("authenticate", details.password)

    async def initiate_auth(self, details: AuthenticationDetails) -> AuthOutcome:
        return await self._next("initiate_auth")

    async def send_custom_challenge_answer(
        self, answer: str, client_metadata: Optional[dict[str, str]] = None
    ) -> AuthOutcome:
        return await self._next("send_custom_challenge_answer", answer)

    async def send_mfa_code(
        self,
        code: str,
        mfa_type: Optional[str] = None,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> AuthOutcome:
        return await self._next("send_mfa_code", code)

    async def complete_new_password_challenge(
        self,
        password: str,
        required_attributes: dict[str, str],
        client_metadata: Optional[dict[str, str]] = None,
    ) -> AuthOutcome:
        return await self._next("complete_new_password_challenge", password)

    async def confirm_registration(
        self,
        code: str,
        force_alias_creation: bool = True,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> str:
        self.pool.calls.append(("confirm_registration", self.username, code))
        return "SUCCESS"

    async def forgot_password(
        self, client_metadata: Optional[dict[str, str]] = None
    ) -> CodeDeliveryDetails:
        if self.pool.forgot_password_error is not None:
            raise self.pool.forgot_password_error
        return CodeDeliveryDetails(
            attribute_name="email", delivery_medium="EMAIL", destination="a***@e***"
        )

    async def confirm_password(
        self,
        code: str,
        new_password: str,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> str:
        return "SUCCESS"

    async def get_user_data(
        self,
        bypass_cache: bool = False,
        client_metadata: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        self.pool.calls.append(("get_user_data", self.username))
        if self.pool.user_data_error is not None:
            raise self.pool.user_data_error
        return self.pool.user_data

    async def get_user_attributes(self) -> list[UserAttribute]:
        return [
            UserAttribute.model_validate(attr)
            for attr in self.pool.user_data.get("UserAttributes", [])
        ]

    async def update_attributes(
        self,
        attributes: list[UserAttribute],
        client_metadata: Optional[dict[str, str]] = None,
    ) -> tuple[str, list[CodeDeliveryDetails]]:
        self.pool.updated_attributes = attributes
        deliveries = [
            CodeDeliveryDetails(
                attribute_name=attr.name, delivery_medium="EMAIL", destination="x"
            )
            for attr in attributes
            if attr.name == "email"
        ]
        return "SUCCESS", deliveries

    async def set_user_mfa_preference(
        self,
        sms_settings: Optional[dict[str, bool]],
        totp_settings: Optional[dict[str, bool]],
    ) -> str:
        self.pool.mfa_preferences.append((sms_settings, totp_settings))
        return "SUCCESS"

    async def verify_software_token(self, code: str, friendly_name: str) -> Session:
        return self.pool.new_session(self.username)

    async def delete_user(self) -> str:
        return "SUCCESS"

    async def list_devices(
        self, limit: int, pagination_token: Optional[str] = None
    ) -> dict[str, Any]:
        if self.pool.device_error is not None:
            raise self.pool.device_error
        return {
            "Devices": [
                {
                    "DeviceKey": "eu-west-1_device1",
                    "DeviceAttributes": [
                        {"Name": "device_status", "Value": "valid"},
                        {"Name": "device_name", "Value": "laptop"},
                    ],
                },
                {"DeviceKey": "eu-west-1_device2", "DeviceAttributes": []},
            ]
        }


class FakeProvider(IdentityProvider):
    """In-memory user pool with scripted outcomes and failure switches."""

    def __init__(self, session_factory: Callable[..., Session]) -> None:
        self.new_session = session_factory
        self.sessions: dict[str, Session] = {}
        self.last_user: Optional[str] = None
        self.outcomes: list[Any] = []
        self.calls: list[tuple[Any, ...]] = []
        self.signed_out: list[str] = []
        self.global_signed_out: list[str] = []
        self.get_session_calls = 0
        self.session_delay = 0.0
        self.session_error: Optional[Exception] = None
        self.sign_out_error: Optional[Exception] = None
        self.user_data_error: Optional[Exception] = None
        self.forgot_password_error: Optional[Exception] = None
        self.device_error: Optional[Exception] = None
        self.sign_up_error: Optional[Exception] = None
        self.sign_up_confirmed = False
        self.updated_attributes: list[UserAttribute] = []
        self.mfa_preferences: list[tuple[Any, Any]] = []
        self.user_data: dict[str, Any] = {
            "UserAttributes": [
                {"Name": "sub", "Value": "sub-alice"},
                {"Name": "email", "Value": "alice@example.com"},
                {"Name": "email_verified", "Value": "true"},
                {"Name": "phone_number", "Value": "+15555550100"},
                {"Name": "phone_number_verified", "Value": "false"},
            ],
            "PreferredMfaSetting": None,
            "UserMFASettingList": [],
        }

    def create_user(self, username: str) -> FakeUser:
        return FakeUser(username, self)

    def current_user(self) -> Optional[FakeUser]:
        if self.last_user is None:
            return None
        return self.create_user(self.last_user)

    def sign_in(self, username: str = "alice") -> FakeUser:
        """Seed a signed-in user without running a sign-in flow."""
        user = self.create_user(username)
        user.set_sign_in_session(self.new_session(username))
        return user

    async def sign_up(
        self,
        username: str,
        password: str,
        attributes: list[UserAttribute],
        validation_data: list[UserAttribute],
        client_metadata: Optional[dict[str, str]] = None,
    ) -> SignUpResult:
        self.calls.append(("sign_up", username))
        if self.sign_up_error is not None:
            raise self.sign_up_error
        return SignUpResult(
            username=username,
            user_confirmed=self.sign_up_confirmed,
            user_sub=f"sub-{username}",
        )


class RecordingCredentials(CredentialsProvider):
    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    async def set(self, session: Optional[Session], source: str) -> Any:
        self.calls.append(("set", source))
        return {"identity_id": "eu-west-1:identity", "source": source}

    async def clear(self) -> None:
        self.calls.append(("clear", None))

    async def get(self) -> Any:
        return {"identity_id": "eu-west-1:identity"}


# ---------------------------------------------------------------------------
# Wiring fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def provider(session_factory: Callable[..., Session]) -> FakeProvider:
    return FakeProvider(session_factory)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def hub() -> Hub:
    return Hub()


@pytest.fixture
def events(hub: Hub) -> list[HubEvent]:
    """Every event dispatched on the auth channel, in order."""
    recorded: list[HubEvent] = []
    hub.listen(AUTH_CHANNEL, recorded.append)
    return recorded


@pytest.fixture
def credentials() -> RecordingCredentials:
    return RecordingCredentials()


@pytest.fixture
def options() -> AuthOptions:
    return AuthOptions(
        user_pool_id="eu-west-1_pool",
        user_pool_web_client_id="client123",
        oauth=OAuthOptions(
            domain="auth.example.com",
            scope=["openid", "email", "aws.cognito.signin.user.admin"],
            redirect_sign_in="http://localhost:8976/callback",
            redirect_sign_out="http://localhost:8976/",
        ),
    )


@pytest.fixture
def context(
    options: AuthOptions,
    provider: FakeProvider,
    storage: MemoryStorage,
    hub: Hub,
    credentials: RecordingCredentials,
) -> AuthContext:
    return AuthContext(
        options,
        provider=provider,
        storage=storage,
        hub=hub,
        credentials=credentials,
        auto_sign_in_interval=0.01,
        auto_sign_in_max_duration=0.2,
        oauth_wait_timeout=0.5,
        sign_out_timeout=0.05,
    )


def event_names(events: list[HubEvent]) -> list[str]:
    return [e.event for e in events]


@pytest.fixture
def names() -> Callable[[list[HubEvent]], list[str]]:
    """Project recorded events onto their names."""
    return event_names


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
