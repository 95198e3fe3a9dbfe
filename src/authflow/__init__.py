"""authflow -- client-side authentication orchestration for hosted identity providers.

This package sits between an application and a hosted identity provider
(a user pool with an OAuth 2.0 hosted UI). It manages the lifecycle of a
user's session: password and passwordless sign-in, multi-step challenges
(MFA, forced password change, custom challenges), completion of hosted-UI
redirects, debounced session refresh, and automatic sign-in after
registration.

Typical usage::

    from authflow.auth import AuthContext
    from authflow.config import resolve_options

    context = AuthContext(resolve_options(), provider=my_user_pool)
    await context.configure()
    user = await context.sign_in("alice", "correct horse battery staple")

Modules:
    app: Typer application and CLI entry point.
    auth: The orchestration core and the explicit :class:`AuthContext`.
    hosted: Hosted-UI OAuth handler, token-cache user pool, loopback server.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration with precedence resolution.
    storage: Key/value storage backing sessions and sign-in flags.
    hub: Publish/subscribe bus for authentication events.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
