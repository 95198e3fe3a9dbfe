"""Terminal output for the ``authflow`` CLI.

Records (the signed-in user, a session summary, the configuration) go to
**stdout**; everything else (progress, warnings, errors, next-step hints)
goes to **stderr** so ``authflow whoami --json | jq`` stays clean.

Formats:

* ``rich`` -- a two-column table per record, used when stdout is a TTY.
* ``plain`` -- ``key<TAB>value`` lines, nested keys joined with ``.``.
* ``json`` -- the record as indented JSON.

``NO_COLOR``, ``TERM=dumb`` and ``--no-color`` disable markup. The
manager is installed once per invocation by :func:`~authflow.app.main_callback`;
the module-level helpers delegate to it.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Iterator, Mapping, Optional

from rich.console import Console
from rich.table import Table


class OutputFormat(str, Enum):
    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


def flatten_record(record: Mapping[str, Any], prefix: str = "") -> Iterator[tuple[str, str]]:
    """Yield ``(dotted_key, text)`` pairs for every leaf of *record*.

    Lists become comma-separated text and ``None`` becomes ``-``::

        >>> list(flatten_record({"attributes": {"email": "a@b.c"}, "scopes": ["openid"]}))
        [('attributes.email', 'a@b.c'), ('scopes', 'openid')]
    """
    for key, value in record.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            if value:
                yield from flatten_record(value, f"{name}.")
            else:
                yield name, "-"
        elif isinstance(value, (list, tuple, set, frozenset)):
            yield name, ", ".join(str(v) for v in value) or "-"
        elif value is None:
            yield name, "-"
        elif isinstance(value, bool):
            yield name, "yes" if value else "no"
        else:
            yield name, str(value)


class OutputManager:
    """Writes records to stdout and diagnostics to stderr.

    Args:
        format: ``AUTO`` picks ``RICH`` on a colour TTY, ``PLAIN`` otherwise.
        no_color: Drop all markup.
        quiet: Hide info, success and suggestion messages.
        verbose: Show debug messages.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose
        if format == OutputFormat.AUTO:
            format = OutputFormat.RICH if _is_tty() and not self._no_color else OutputFormat.PLAIN
        self._format = format
        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=format == OutputFormat.RICH,
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    @property
    def is_quiet(self) -> bool:
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        return self._verbose

    @property
    def stderr_console(self) -> Console:
        """Console for diagnostics; the ``--verbose`` log handler writes here too."""
        return self._stderr

    # --- stdout ---

    def print_record(self, record: Mapping[str, Any], title: Optional[str] = None) -> None:
        """Print one record: a user, a session summary or the configuration."""
        if self._format == OutputFormat.JSON:
            self.print_data(json.dumps(record, indent=2, ensure_ascii=False, default=str))
            return

        rows = list(flatten_record(record))
        if self._format == OutputFormat.PLAIN:
            for key, text in rows:
                self.print_data(f"{key}\t{text}")
            return

        table = Table(title=title, show_header=False, box=None, pad_edge=False)
        table.add_column(style="bold cyan", no_wrap=True)
        table.add_column(overflow="fold")
        for key, text in rows:
            table.add_row(key, text)
        self._stdout.print(table)

    def print_data(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)

    # --- stderr ---

    def _diagnostic(self, text: str, markup: str, optional: bool = True) -> None:
        if optional and self._quiet:
            return
        if self._no_color:
            print(text, file=sys.stderr, flush=True)
        else:
            self._stderr.print(markup)

    def info(self, message: str) -> None:
        self._diagnostic(message, message)

    def success(self, message: str) -> None:
        self._diagnostic(message, f"[green]{message}[/green]")

    def suggest(self, message: str) -> None:
        self._diagnostic(f"→ {message}", f"[dim]→ {message}[/dim]")

    def warning(self, message: str) -> None:
        """Shown even with ``--quiet``."""
        self._diagnostic(
            f"Warning: {message}", f"[yellow]Warning:[/yellow] {message}", optional=False
        )

    def error(self, message: str) -> None:
        """Shown even with ``--quiet``."""
        self._diagnostic(
            f"Error: {message}", f"[bold red]Error:[/bold red] {message}", optional=False
        )

    def debug(self, message: str) -> None:
        if self._verbose:
            self._diagnostic(f"[debug] {message}", f"[dim]\\[debug] {message}[/dim]", False)


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """``NO_COLOR`` set to anything, or ``TERM=dumb``."""
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


# --- global instance ---

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    global _output
    _output = None


def print_record(record: Mapping[str, Any], title: Optional[str] = None) -> None:
    get_output().print_record(record, title)


def print_data(text: str) -> None:
    get_output().print_data(text)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def suggest(message: str) -> None:
    get_output().suggest(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def debug(message: str) -> None:
    get_output().debug(message)
