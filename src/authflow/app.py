"""Typer application and CLI entry point for authflow.

This module wires together the top-level Typer application and registers
the built-in commands (``login``, ``whoami``, ``session``, ``logout`` and
the ``config`` group).

:func:`main` backs the ``authflow`` console script. An
:class:`~authflow.exceptions.AuthflowError` becomes an error line and its
``exit_code``; anything else is written to a crash log under the data
directory.

See Also:
    :mod:`authflow.config`: Option precedence resolution.
    :mod:`authflow.output`: The manager installed by :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer

from authflow import __version__
from authflow.exit_codes import EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="authflow",
    help="Sign in to a hosted identity provider from the terminal.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #

from authflow.commands.auth import (  # noqa: E402
    login_command,
    logout_command,
    session_command,
    whoami_command,
)
from authflow.commands.config import config_app  # noqa: E402

app.command("login")(login_command)
app.command("whoami")(whoami_command)
app.command("session")(session_command)
app.command("logout")(logout_command)
app.add_typer(config_app, name="config", help="Configuration management.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"authflow {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool, console: Any) -> None:
    """Route the ``authflow`` logger to stderr through Rich when verbose."""
    from rich.logging import RichHandler

    logger = logging.getLogger("authflow")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    if not verbose:
        logger.setLevel(logging.WARNING)
        return
    handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    user_pool_id: Optional[str] = typer.Option(
        None, "--user-pool-id", help="User pool id (overrides config)."
    ),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="User pool app client id (overrides config)."
    ),
    storage_file: Optional[str] = typer.Option(
        None, "--storage-file", help="Session store path (overrides config)."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
) -> None:
    """Global options, applied before any command runs.

    Installs the global :class:`~authflow.output.OutputManager`, attaches a
    Rich log handler when ``--verbose`` is given, and stores the option
    overrides in ``ctx.obj["overrides"]`` for the commands.
    """
    from authflow.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(
        format=fmt,
        no_color=no_color,
        quiet=quiet,
        verbose=verbose,
    )
    set_output(output)
    _configure_logging(verbose, output.stderr_console)

    overrides: dict[str, Any] = {}
    if user_pool_id:
        overrides["user_pool_id"] = user_pool_id
    if client_id:
        overrides["user_pool_web_client_id"] = client_id
    if storage_file:
        overrides["storage_file"] = storage_file

    ctx.ensure_object(dict)
    ctx.obj["overrides"] = overrides
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Ctrl-C while waiting for the browser exits with 130, without a traceback."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write the current traceback to ``<data dir>/logs`` and return its path."""
    from authflow.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """Run the CLI; never returns normally."""
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from authflow.exceptions import AuthflowError
        from authflow.output import error

        if isinstance(exc, AuthflowError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
