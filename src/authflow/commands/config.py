"""Config commands -- view and modify the user configuration.

Provides the ``authflow config`` sub-command group for reading and
updating the user's configuration file (:class:`~authflow.models.AuthOptions`).
``show`` prints the *effective* options after every precedence layer has
been applied; ``set`` only ever writes the user file.
"""

from __future__ import annotations

import json

import typer

from authflow.output import error, info, print_data, print_record, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Show the effective configuration.

    Example::

        authflow config show
        authflow config show --json
    """
    from authflow.config import config_path, resolve_options

    overrides = ctx.obj.get("overrides") if ctx.obj else None
    options = resolve_options(overrides)
    info(f"Config file: {config_path()}")
    print_record(options.model_dump(mode="json", exclude_none=True), title="Configuration")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'oauth.domain')."
    ),
    value: str = typer.Argument(help="Value to set. JSON lists and objects are parsed."),
) -> None:
    """Set a configuration value in the user config file.

    Uses dot notation for nested keys. Values starting with ``[`` or ``{``
    are parsed as JSON so list settings such as ``oauth.scope`` can be set.
    The result is validated against :class:`~authflow.models.AuthOptions`
    before saving.

    Raises:
        typer.Exit: With code 2 if the value is malformed or validation fails.

    Example::

        authflow config set user_pool_web_client_id 4abc...
        authflow config set oauth.domain myapp.auth.eu-west-1.amazoncognito.com
        authflow config set oauth.scope '["openid", "email"]'
    """
    from authflow.config import load_options, save_options
    from authflow.models import AuthOptions

    data = load_options().model_dump(mode="json", exclude_none=True)

    coerced: object = value
    if value[:1] in ("[", "{"):
        try:
            coerced = json.loads(value)
        except json.JSONDecodeError as exc:
            error(f"Invalid JSON for {key}: {exc}")
            raise typer.Exit(code=2) from None

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        existing = target.get(k)
        if existing is None:
            existing = target[k] = {}
        elif not isinstance(existing, dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = existing
    target[keys[-1]] = coerced

    try:
        options = AuthOptions.model_validate(data)
    except ValueError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_options(options)
    success(f"Set {key} = {coerced}")


@config_app.command("path")
def config_path_command() -> None:
    """Print the location of the user config file."""
    from authflow.config import config_path

    print_data(str(config_path()))
