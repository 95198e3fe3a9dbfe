"""Session and credential orchestration core.

The main entry points are:

- :class:`AuthContext` -- the explicitly constructed orchestration context;
  every public auth operation lives here.
- :class:`IdentityProvider` / :class:`ProviderUser` -- abstract provider
  client to implement for a new identity provider.
- :class:`OAuthHandler` -- abstract hosted-UI client.
- :class:`SessionCoordinator`, :class:`ChallengeStateMachine`,
  :class:`RedirectHandler`, :class:`AutoSignInOrchestrator` -- the four
  components the context wires together.

Typical usage::

    from authflow.auth import AuthContext

    context = AuthContext(options, provider=pool, oauth_handler=handler)
    await context.configure()
    await context.handle_redirect(callback_url)
    user = await context.current_authenticated_user()
"""

from authflow.auth.auto_signin import AutoSignInOrchestrator
from authflow.auth.base import (
    AuthFailure,
    AuthOutcome,
    AuthSuccess,
    ChallengeIssued,
    ChallengeKind,
    CredentialsProvider,
    IdentityProvider,
    NoCredentials,
    OAuthHandler,
    PendingChallenge,
    ProviderUser,
    UrlHistory,
)
from authflow.auth.challenge import ChallengeStateMachine, SignInAttempt, SignInState
from authflow.auth.context import AuthContext
from authflow.auth.redirect import RedirectHandler, RedirectOutcome, parse_redirect
from authflow.auth.session import SessionCoordinator

__all__ = [
    "AuthContext",
    "AuthFailure",
    "AuthOutcome",
    "AuthSuccess",
    "AutoSignInOrchestrator",
    "ChallengeIssued",
    "ChallengeKind",
    "ChallengeStateMachine",
    "CredentialsProvider",
    "IdentityProvider",
    "NoCredentials",
    "OAuthHandler",
    "PendingChallenge",
    "ProviderUser",
    "RedirectHandler",
    "RedirectOutcome",
    "SessionCoordinator",
    "SignInAttempt",
    "SignInState",
    "UrlHistory",
    "parse_redirect",
]
