"""Exception hierarchy for shopcache.

All exceptions inherit from :class:`ShopcacheError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`shopcache.exit_codes`.
The CLI entry point in :func:`shopcache.app.main` catches ``ShopcacheError``
and exits with the matching code.

Two families live here:

* **Transport failures** (:class:`AuthError`, :class:`NotFoundError`,
  :class:`ServerError`, :class:`ConnectionError_`, :class:`PayloadError`)
  propagate out of a loader unchanged. The slot stays unloaded and the
  next call fetches again.
* **Programming errors** (:class:`UnknownResourceError`,
  :class:`RegistryError`) signal a name outside the closed registry or a
  malformed descriptor set. The engine never catches them.

Subclass hierarchy::

    ShopcacheError (exit 1)
    +-- InvalidUsageError     (exit 2)
    |   +-- UnknownResourceError
    |   +-- RegistryError
    +-- AuthError             (exit 3)
    +-- NotFoundError         (exit 4)
    +-- ServerError           (exit 5)
    |   +-- PayloadError
    |   +-- ChildLoadError
    +-- ConnectionError_      (exit 6)
    +-- ConfigError           (exit 1)
"""

from __future__ import annotations

from typing import Optional

from shopcache.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)


class ShopcacheError(Exception):
    """Base exception for all shopcache errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(ShopcacheError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class UnknownResourceError(InvalidUsageError):
    """Raised when a resource, slot, or derived name is not in the registry."""


class RegistryError(InvalidUsageError):
    """Raised when a descriptor set is inconsistent (duplicates, dangling parents)."""


class AuthError(ShopcacheError):
    """Raised when the API returns HTTP 401 or 403."""

    exit_code = EXIT_AUTH_FAILURE


class NotFoundError(ShopcacheError):
    """Raised when the API returns HTTP 404."""

    exit_code = EXIT_NOT_FOUND


class ServerError(ShopcacheError):
    """Raised for any other HTTP error status."""

    exit_code = EXIT_SERVER_ERROR


class PayloadError(ServerError):
    """Raised when a response body lacks the field a descriptor unwraps."""


class ChildLoadError(ServerError):
    """Aggregate failure of a child-collection load.

    Parents that loaded successfully stay committed; only the parents in
    :attr:`failures` are still unloaded and will be fetched again on the
    next call.

    Args:
        child_name: The child collection being loaded.
        failures: Exception raised for each failed parent id.
        succeeded: Parent ids whose entries were committed.
    """

    def __init__(
        self,
        child_name: str,
        failures: dict[int, Exception],
        succeeded: Optional[list[int]] = None,
    ) -> None:
        self.child_name = child_name
        self.failures = failures
        self.succeeded = list(succeeded or [])
        ids = ", ".join(str(i) for i in sorted(failures))
        super().__init__(
            f"Failed to load {child_name} for {len(failures)} parent(s): {ids}"
        )


class ConnectionError_(ShopcacheError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class ConfigError(ShopcacheError):
    """Raised for configuration problems (missing host or shop, invalid JSON)."""

    exit_code = EXIT_GENERIC_FAILURE
