"""Auth commands -- sign in through the hosted UI and inspect the session.

Provides the top-level ``login``, ``whoami``, ``session`` and ``logout``
commands. Each invocation builds a fresh
:class:`~authflow.auth.context.AuthContext` backed by the on-disk session
store, so a sign-in survives between invocations.

Typical workflow::

    authflow config set oauth.domain myapp.auth.eu-west-1.amazoncognito.com
    authflow login              # opens the browser
    authflow whoami
    authflow logout --global
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer

from authflow.output import info, print_record, success, suggest


def build_context(overrides: Optional[dict[str, Any]] = None) -> Any:
    """Wire an :class:`~authflow.auth.context.AuthContext` for the CLI.

    Uses the hosted-UI handler and token-cache user pool with a
    :class:`~authflow.storage.FileStorage` at ``storage_file`` (or the
    default location under the data directory).
    """
    from authflow.auth import AuthContext
    from authflow.config import default_storage_path, resolve_options
    from authflow.hosted import HostedUIOAuthHandler, HostedUIUserPool
    from authflow.storage import FileStorage

    options = resolve_options(overrides)
    storage_path = (
        Path(options.storage_file).expanduser()
        if options.storage_file
        else default_storage_path()
    )
    storage = FileStorage(storage_path)

    oauth_handler = None
    provider = None
    if options.oauth is not None and options.user_pool_web_client_id:
        oauth_handler = HostedUIOAuthHandler(options, storage)
        provider = HostedUIUserPool(options, storage, oauth_handler)
    return AuthContext(
        options, provider=provider, storage=storage, oauth_handler=oauth_handler
    )


def _overrides(ctx: typer.Context) -> Optional[dict[str, Any]]:
    return ctx.obj.get("overrides") if ctx.obj else None


def login_command(
    ctx: typer.Context,
    provider: Optional[str] = typer.Option(
        None, "--provider", help="Social identity provider, e.g. Google."
    ),
    state: Optional[str] = typer.Option(
        None, "--state", help="Application state echoed back after sign-in."
    ),
    timeout: float = typer.Option(
        120.0, "--timeout", help="Seconds to wait for the browser redirect."
    ),
) -> None:
    """Sign in through the hosted UI.

    Binds the loopback ``redirect_sign_in`` address, opens the browser on
    the authorize endpoint and completes the sign-in from the redirect.

    Raises:
        ConfigError: If the hosted UI is not configured.
        OAuthError: If the redirect carries an error or the exchange fails.

    Example::

        authflow login
        authflow login --provider Google --state /dashboard
    """
    asyncio.run(_login(_overrides(ctx), provider, state, timeout))


async def _login(
    overrides: Optional[dict[str, Any]],
    provider: Optional[str],
    state: Optional[str],
    timeout: float,
) -> None:
    from authflow.exceptions import ConfigError, OAuthError
    from authflow.hosted import CallbackServer
    from authflow.hub import AUTH_CHANNEL, HubEvent

    context = build_context(overrides)
    if context.redirect is None or context.options.oauth is None:
        raise ConfigError(
            "Hosted UI is not configured: set 'oauth.domain', "
            "'oauth.redirect_sign_in' and 'user_pool_web_client_id'"
        )
    await context.configure()

    signed_in: list[Any] = []
    failures: list[str] = []
    custom_state: list[str] = []

    def on_event(payload: HubEvent) -> None:
        if payload.event == "signIn":
            signed_in.append(payload.data)
        elif payload.event == "signIn_failure":
            failures.append(str(payload.data))
        elif payload.event == "customOAuthState":
            custom_state.append(str(payload.data))

    subscription = context.hub.listen(AUTH_CHANNEL, on_event)
    try:
        with CallbackServer(context.options.oauth.redirect_sign_in, timeout) as server:
            url = context.federated_sign_in(provider, state)
            info("Opening the browser to sign in...")
            info(f"If it does not open, visit: {url}")
            redirect_url = await server.wait()
        await context.handle_redirect(redirect_url)
    finally:
        subscription.cancel()
        await context.close()

    if not signed_in:
        raise OAuthError(failures[0] if failures else "Sign-in did not complete")
    success(f"Signed in as {signed_in[0].username}")
    if custom_state:
        info(f"State: {custom_state[0]}")


def whoami_command(ctx: typer.Context) -> None:
    """Show the signed-in user and their attributes.

    Example::

        authflow whoami --json
    """
    asyncio.run(_whoami(_overrides(ctx)))


async def _whoami(overrides: Optional[dict[str, Any]]) -> None:
    from authflow.exceptions import NotAuthenticatedError

    context = build_context(overrides)
    await context.configure()
    user_info = await context.current_user_info()
    if user_info is None:
        suggest("Run 'authflow login' to sign in.")
        raise NotAuthenticatedError("Not signed in")
    print_record(user_info, title="User")


def session_command(ctx: typer.Context) -> None:
    """Show the current session, refreshing it if it expired.

    Tokens themselves are never printed.
    """
    asyncio.run(_session(_overrides(ctx)))


async def _session(overrides: Optional[dict[str, Any]]) -> None:
    context = build_context(overrides)
    await context.configure()
    session = await context.current_session()
    expires = session.access_claims.get("exp")
    print_record(
        {
            "username": session.username,
            "expires_at": (
                datetime.fromtimestamp(expires, tz=timezone.utc).isoformat()
                if expires
                else None
            ),
            "scopes": sorted(session.scopes),
            "valid": session.is_valid(),
            "refreshable": session.refresh_token is not None,
        },
        title="Session",
    )


def logout_command(
    ctx: typer.Context,
    global_: bool = typer.Option(
        False, "--global", help="Revoke every token issued to the user."
    ),
) -> None:
    """Sign out and forget the cached session.

    Example::

        authflow logout
        authflow logout --global
    """
    asyncio.run(_logout(_overrides(ctx), global_))


async def _logout(overrides: Optional[dict[str, Any]], global_: bool) -> None:
    context = build_context(overrides)
    await context.configure()
    await context.sign_out(global_=global_)
    success("Signed out.")
