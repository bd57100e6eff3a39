"""Built-in CLI commands for authbridge.

* :mod:`~authbridge.commands.auth` -- ``login``, ``open-url``, ``status``
  and ``logout``, registered directly on the root app by
  :func:`~authbridge.app.main`.
"""
