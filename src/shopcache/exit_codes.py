"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~shopcache.exceptions.ShopcacheError` subclass.
Shell wrappers can inspect the exit code to tell a rejected credential
from an unreachable host without parsing stderr.

Example::

    $ shopcache fetch products
    $ echo $?
    6   # EXIT_CONNECTION_ERROR -- the app host could not be reached
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""Invalid arguments, an undeclared resource name, or a malformed registry."""

EXIT_AUTH_FAILURE = 3
"""The API rejected the request (HTTP 401/403)."""

EXIT_NOT_FOUND = 4
"""The requested resource was not found (HTTP 404)."""

EXIT_SERVER_ERROR = 5
"""The API returned an error status or an unusable payload."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""
