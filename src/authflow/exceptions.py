"""Exception hierarchy for authflow.

All exceptions inherit from :class:`AuthflowError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`authflow.exit_codes`.
The CLI entry point in :func:`authflow.app.main` catches ``AuthflowError``
and exits with the appropriate code.

Validation and configuration failures carry an :class:`AuthErrorType`
so callers can branch on the kind of failure instead of the message.

Subclass hierarchy::

    AuthflowError (exit 1)
    +-- ConfigError             (exit 1)
    |   +-- NoUserPoolError     (exit 1)
    +-- ValidationError         (exit 2)
    +-- AuthError               (exit 3)
    |   +-- ProviderError       (exit 3)
    |   +-- PendingSignInError  (exit 3)
    |   +-- SessionInvalidError (exit 3)
    |   +-- NotAuthenticatedError (exit 3)
    |   +-- OAuthError          (exit 3)
    |   +-- OAuthSignOutTimeout (exit 3)
    |   +-- DeviceConfigError   (exit 3)
    +-- NetworkError            (exit 6)
    +-- StorageError            (exit 1)
"""

from __future__ import annotations

import enum
from typing import Optional

from authflow.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
)


class AuthErrorType(str, enum.Enum):
    """Well-known validation and configuration failures.

    The value of each member is the human-readable message used when the
    error is raised.
    """

    NO_CONFIG = "Auth is not configured. Provide a user pool or identity pool."
    MISSING_AUTH_CONFIG = (
        "Auth configuration is incomplete. Check the user pool id and web client id."
    )
    EMPTY_USERNAME = "Username cannot be empty"
    INVALID_USERNAME = "The username should be a non-empty string"
    EMPTY_PASSWORD = "Password cannot be empty"
    EMPTY_CODE = "Confirmation code cannot be empty"
    EMPTY_CHALLENGE_RESPONSE = "Challenge response cannot be empty"
    SIGN_UP_ERROR = "Sign up requires a username and a password"
    NO_USER_SESSION = "Failed to get the session because the user is empty"
    INVALID_MFA = "Invalid MFA type"
    NO_MFA = "No valid MFA method provided"
    DEVICE_CONFIG = "Device tracking has not been configured in this user pool"
    NETWORK_ERROR = "Network error"
    AUTO_SIGN_IN_ERROR = "Please use your credentials to sign in"


class AuthflowError(Exception):
    """Base exception for all authflow errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(AuthflowError):
    """Raised for configuration problems (missing pools, invalid JSON, bad storage)."""

    exit_code = EXIT_GENERIC_FAILURE


class NoUserPoolError(ConfigError):
    """Raised when an operation needs a user pool but none is configured."""

    def __init__(self, error_type: AuthErrorType = AuthErrorType.NO_CONFIG):
        super().__init__(error_type.value)
        self.error_type = error_type


class ValidationError(AuthflowError):
    """Raised when a required argument (username, password, code) is empty."""

    exit_code = EXIT_INVALID_USAGE

    def __init__(self, error_type: AuthErrorType):
        super().__init__(error_type.value)
        self.error_type = error_type


class AuthError(AuthflowError):
    """Raised when authentication fails or no usable session exists."""

    exit_code = EXIT_AUTH_FAILURE


class ProviderError(AuthError):
    """Structured failure reported by the identity-provider client.

    Args:
        message: The provider's message, e.g. ``"User is disabled."``.
        code: The provider's error code, e.g. ``"NotAuthorizedException"``.
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message


class PendingSignInError(AuthError):
    """Raised when a password sign-in starts while another one is still pending."""


class SessionInvalidError(AuthError):
    """Raised when a session is invalid and the local cleanup failed as well."""


class NotAuthenticatedError(AuthError):
    """Raised when there is no signed-in user."""


class OAuthError(AuthError):
    """Raised by the hosted-UI handler when a redirect cannot be exchanged."""


class OAuthSignOutTimeout(AuthError):
    """Raised when a hosted sign-out redirect did not navigate away in time."""


class DeviceConfigError(AuthError):
    """Raised when device tracking is not enabled for the user pool."""

    def __init__(self, error_type: AuthErrorType = AuthErrorType.DEVICE_CONFIG):
        super().__init__(error_type.value)
        self.error_type = error_type


class NetworkError(AuthflowError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused)."""

    exit_code = EXIT_CONNECTION_ERROR


class StorageError(AuthflowError):
    """Raised when the session storage cannot be read, written, or synced."""
