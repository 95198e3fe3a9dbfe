"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~authflow.exceptions.AuthflowError` subclass.
Shell wrappers can inspect the exit code to tell a rejected sign-in from
a broken configuration without parsing stderr.

Example::

    $ authflow whoami
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- no signed-in user
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or empty required values."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed or no valid session is available."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""
