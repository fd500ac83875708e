"""Numeric process exit codes used by the ``mero`` command line.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~meroclient.exceptions.MeroError` subclass.
Shell wrappers can inspect the exit code to determine the failure class
without parsing stderr.

Example::

    $ mero request GET /admin-api/contexts
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the node rejected the access token
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed or the session could not be refreshed (HTTP 401/403)."""

EXIT_NOT_FOUND = 4
"""The requested resource was not found (HTTP 404)."""

EXIT_SERVER_ERROR = 5
"""The node returned an HTTP 5xx server error."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (DNS failure, connection refused, socket closed)."""

EXIT_TIMEOUT = 7
"""A request deadline elapsed before the node answered."""

EXIT_PROTOCOL_ERROR = 8
"""The node answered with a body or frame that could not be decoded."""

EXIT_STORAGE_ERROR = 9
"""The token storage backend could not persist credentials."""

EXIT_CANCELLED = 130
"""The operation was cancelled by the user (Ctrl-C or an explicit abort)."""
