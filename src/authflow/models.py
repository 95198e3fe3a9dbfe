"""Canonical Pydantic models shared across all authflow modules.

This is the single source of truth for data shapes in the project. The
models fall into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`OAuthOptions` and :class:`AuthOptions`.

**Session and provider models** -- produced by sign-in flows and the
identity-provider client:
    :class:`Session`, :class:`TokenResponse`, :class:`UserAttribute`,
    :class:`AuthenticationDetails`, :class:`SignUpResult`,
    :class:`CodeDeliveryDetails`, and :class:`Device`.

:class:`Session` is frozen: a refresh replaces it wholesale and nothing
ever mutates one in place.
"""

from __future__ import annotations

import time
from typing import Any, Literal, Optional

import jwt
from pydantic import BaseModel, ConfigDict, Field


# --- Configuration ---


class OAuthOptions(BaseModel):
    """Hosted-UI (OAuth 2.0) settings of the user pool app client.

    Example::

        OAuthOptions(
            domain="myapp.auth.eu-west-1.amazoncognito.com",
            scope=["openid", "email"],
            redirect_sign_in="http://localhost:8976/callback",
            redirect_sign_out="http://localhost:8976/",
        )
    """

    domain: str = Field(description="Hosted UI domain, without scheme")
    scope: list[str] = Field(
        default_factory=lambda: ["openid", "email", "profile"],
        description="Scopes requested on the authorize endpoint",
    )
    redirect_sign_in: str = Field(description="Callback URL after sign in")
    redirect_sign_out: str = Field(
        default="", description="Callback URL after hosted sign out"
    )
    response_type: Literal["code", "token"] = Field(
        default="code", description="Authorization code or implicit grant"
    )


class AuthOptions(BaseModel):
    """Top-level configuration of an :class:`~authflow.auth.context.AuthContext`.

    Unknown keys are preserved in ``model_extra`` so that provider clients can
    read their own settings from the same file.
    """

    model_config = ConfigDict(extra="allow")

    user_pool_id: Optional[str] = None
    user_pool_web_client_id: Optional[str] = None
    identity_pool_id: Optional[str] = None
    region: Optional[str] = None
    oauth: Optional[OAuthOptions] = None
    sign_up_verification_method: Literal["code", "link"] = Field(
        default="code",
        description="How new accounts are confirmed; 'link' enables polling auto sign-in",
    )
    authentication_flow_type: Optional[str] = Field(
        default=None,
        description="Provider flow type, e.g. USER_SRP_AUTH or USER_PASSWORD_AUTH",
    )
    client_metadata: dict[str, str] = Field(default_factory=dict)
    storage_file: Optional[str] = Field(
        default=None, description="Path of the JSON session store"
    )


# --- Tokens and sessions ---


def decode_token_payload(token: str) -> dict[str, Any]:
    """Return the claims of a JWT without verifying its signature.

    Signature verification is the identity provider's job; the client only
    reads claims (expiry, username, scopes) from tokens it was handed.
    Malformed tokens decode to an empty dict.
    """
    if not token:
        return {}
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return {}


def clock_drift(id_token: str, access_token: str, now: Optional[float] = None) -> int:
    """Seconds the local clock runs ahead of the provider, from the tokens' ``iat``."""
    issued = [
        claims["iat"]
        for claims in (decode_token_payload(id_token), decode_token_payload(access_token))
        if "iat" in claims
    ]
    if not issued:
        return 0
    return int((time.time() if now is None else now) - min(issued))


class Session(BaseModel):
    """An authenticated principal: identity, access and refresh tokens.

    Attributes:
        id_token: The OpenID Connect identity token.
        access_token: The OAuth 2.0 access token.
        refresh_token: Refresh token, absent for the implicit grant.
        clock_drift: Seconds the local clock runs ahead of the provider's clock.
    """

    model_config = ConfigDict(frozen=True)

    id_token: str
    access_token: str
    refresh_token: Optional[str] = None
    clock_drift: int = 0

    @property
    def id_claims(self) -> dict[str, Any]:
        """Decoded claims of :attr:`id_token`."""
        return decode_token_payload(self.id_token)

    @property
    def access_claims(self) -> dict[str, Any]:
        """Decoded claims of :attr:`access_token`."""
        return decode_token_payload(self.access_token)

    @property
    def scopes(self) -> frozenset[str]:
        """The authorization scopes granted to the access token."""
        return frozenset(str(self.access_claims.get("scope", "")).split())

    @property
    def username(self) -> Optional[str]:
        """Username from the identity token (``cognito:username``, then ``sub``)."""
        claims = self.id_claims
        return claims.get("cognito:username") or claims.get("sub")

    def is_valid(self, now: Optional[float] = None) -> bool:
        """Return ``True`` while both tokens are unexpired, adjusted for clock drift."""
        adjusted = (time.time() if now is None else now) - self.clock_drift
        access_exp = self.access_claims.get("exp")
        id_exp = self.id_claims.get("exp")
        if access_exp is None or id_exp is None:
            return False
        return adjusted < access_exp and adjusted < id_exp


class TokenResponse(BaseModel):
    """Tokens returned by the hosted-UI token exchange."""

    access_token: str
    id_token: str
    refresh_token: Optional[str] = None
    state: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: str = "Bearer"


# --- Provider payloads ---


class UserAttribute(BaseModel):
    """A single ``{Name, Value}`` user attribute as returned by the provider."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="Name")
    value: Any = Field(default=None, alias="Value")


class AuthenticationDetails(BaseModel):
    """Credentials submitted for one sign-in attempt."""

    username: str
    password: Optional[str] = None
    validation_data: dict[str, str] = Field(default_factory=dict)
    client_metadata: dict[str, str] = Field(default_factory=dict)


class CodeDeliveryDetails(BaseModel):
    """Where a confirmation code was sent."""

    model_config = ConfigDict(populate_by_name=True)

    attribute_name: Optional[str] = Field(default=None, alias="AttributeName")
    delivery_medium: Optional[str] = Field(default=None, alias="DeliveryMedium")
    destination: Optional[str] = Field(default=None, alias="Destination")


class SignUpResult(BaseModel):
    """Outcome of a registration call."""

    username: str
    user_confirmed: bool = False
    user_sub: Optional[str] = None
    code_delivery_details: Optional[CodeDeliveryDetails] = None


class Device(BaseModel):
    """A remembered device of the current user."""

    id: str
    name: Optional[str] = None
