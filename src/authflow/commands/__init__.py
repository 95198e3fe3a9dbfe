"""Built-in CLI sub-commands for authflow.

* :mod:`~authflow.commands.auth` -- ``login``, ``whoami``, ``session`` and
  ``logout``, registered directly on the root app.
* :mod:`~authflow.commands.config` -- the ``config`` sub-application.
"""
