"""Exception hierarchy for meroclient.

All exceptions inherit from :class:`MeroError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`meroclient.exit_codes`.
The ``mero`` entry point catches ``MeroError`` and exits with the
appropriate code; library callers branch on the concrete type instead.

Subclass hierarchy::

    MeroError                     (exit 1)
    +-- ConfigError               (exit 1)
    +-- HTTPError                 (exit 3/4/5/1 depending on status)
    +-- NetworkError              (exit 6)
    +-- RequestCancelledError
    |   +-- AbortError            (exit 130)
    |   +-- RequestTimeoutError   (exit 7)
    +-- ResponseParseError        (exit 8)
    +-- EnvelopeError             (exit 1)
    +-- JsonRpcError              (exit 1, or 8 for a mismatched id)
    +-- StorageError              (exit 9)
    +-- AuthError                 (exit 3)
    +-- WebSocketError            (exit 6)
        +-- NotConnectedError
        +-- WebSocketTimeoutError (exit 7)
        +-- ProtocolError         (exit 8)
        +-- ReconnectError

The retry engine in :mod:`meroclient.http.retry` classifies failures by
these types: timeouts and network errors are retryable, user aborts never
are, and :class:`HTTPError` is retryable only for 5xx statuses.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from typing import Any, Optional

from meroclient.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_NOT_FOUND,
    EXIT_PROTOCOL_ERROR,
    EXIT_SERVER_ERROR,
    EXIT_STORAGE_ERROR,
    EXIT_TIMEOUT,
)


class MeroError(Exception):
    """Base exception for all meroclient errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`meroclient.exit_codes`.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(MeroError):
    """Raised for configuration problems (invalid settings file, unknown storage kind)."""


class AuthErrorCode(str, enum.Enum):
    """Values the node sends in the ``x-auth-error`` header to explain a 401."""

    MISSING_TOKEN = "missing_token"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_REVOKED = "token_revoked"
    INVALID_TOKEN = "invalid_token"


class HTTPError(MeroError):
    """Raised when the node answers with a non-2xx status.

    Carries everything needed to branch programmatically or build UI
    messaging without re-parsing strings.

    Args:
        status: Numeric HTTP status code.
        status_text: Reason phrase (e.g. ``"Service Unavailable"``).
        url: The effective request URL.
        headers: Response headers (case-insensitive mapping, typically
            :class:`httpx.Headers`).
        body_text: Response body, truncated to 65536 characters.  ``None``
            only when the body could not be decoded.
    """

    def __init__(
        self,
        status: int,
        status_text: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body_text: Optional[str] = None,
    ) -> None:
        super().__init__(f"HTTP {status} {status_text}".rstrip())
        self.status = status
        self.status_text = status_text
        self.url = url
        self.headers: Mapping[str, str] = headers if headers is not None else {}
        self.body_text = body_text
        if status in (401, 403):
            self.exit_code = EXIT_AUTH_FAILURE
        elif status == 404:
            self.exit_code = EXIT_NOT_FOUND
        elif status >= 500:
            self.exit_code = EXIT_SERVER_ERROR

    def header(self, name: str) -> Optional[str]:
        """Return a response header value, matching *name* case-insensitively."""
        value = self.headers.get(name)
        if value is not None:
            return value
        lowered = name.lower()
        for key, candidate in self.headers.items():
            if key.lower() == lowered:
                return candidate
        return None

    @property
    def auth_error(self) -> Optional[AuthErrorCode]:
        """The parsed ``x-auth-error`` header, or ``None`` if absent or unknown."""
        raw = self.header("x-auth-error")
        if raw is None:
            return None
        try:
            return AuthErrorCode(raw.strip().lower())
        except ValueError:
            return None

    @property
    def retry_after(self) -> Optional[str]:
        """The raw ``Retry-After`` header value, if the node sent one."""
        return self.header("retry-after")

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable snapshot of the error."""
        return {
            "status": self.status,
            "status_text": self.status_text,
            "url": self.url,
            "headers": {key.lower(): value for key, value in self.headers.items()},
            "body_text": self.body_text,
        }


class NetworkError(MeroError):
    """Raised when dispatch failed before any response (DNS, refused, reset)."""

    exit_code = EXIT_CONNECTION_ERROR

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class RequestCancelledError(MeroError):
    """Common base for requests stopped by their composed abort signal.

    The ``reason`` attribute holds the :class:`~meroclient.http.signals.AbortReason`
    value (``"abort"`` or ``"timeout"``) that fired first.
    """

    reason: str = "abort"

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class AbortError(RequestCancelledError):
    """Raised when a caller-supplied signal aborted the request.  Never retried."""

    exit_code = EXIT_CANCELLED
    reason = "abort"


class RequestTimeoutError(RequestCancelledError):
    """Raised when the request deadline elapsed.  Retried by the default policy."""

    exit_code = EXIT_TIMEOUT
    reason = "timeout"


class ResponseParseError(MeroError):
    """Raised when a 2xx body does not match the expected format.  Never retried."""

    exit_code = EXIT_PROTOCOL_ERROR


class EnvelopeError(MeroError):
    """Raised when a ``{data, error}`` envelope carries an error or no data.

    Args:
        message: Human-readable description.
        error: The ``error`` object from the envelope, if any.
    """

    def __init__(self, message: str, error: Any = None) -> None:
        super().__init__(message)
        self.error = error


class JsonRpcError(MeroError):
    """Raised when a JSON-RPC call returns an error object or a foreign id.

    The message is *data* when it is a string, else ``data["message"]``
    when present, else *type*.

    Args:
        type: Error type name reported by the node, e.g. ``"FunctionCallError"``.
        data: Error details, a string or an object.
        request_id: The ``id`` of the response that carried the error.
        exit_code: Optional override for the class-level exit code.
    """

    def __init__(
        self,
        type: str,
        data: Any = None,
        request_id: Any = None,
        exit_code: int | None = None,
    ) -> None:
        if isinstance(data, str):
            message = data
        elif isinstance(data, Mapping) and data.get("message"):
            message = str(data["message"])
        else:
            message = type
        super().__init__(message, exit_code)
        self.type = type
        self.data = data
        self.request_id = request_id


class StorageError(MeroError):
    """Raised when a token storage backend fails to persist credentials."""

    exit_code = EXIT_STORAGE_ERROR


class AuthError(MeroError):
    """Raised when authentication or token refresh fails."""

    exit_code = EXIT_AUTH_FAILURE


class WebSocketError(MeroError):
    """Base class for WebSocket client failures."""

    exit_code = EXIT_CONNECTION_ERROR


class NotConnectedError(WebSocketError):
    """Raised when a request is sent while the socket is absent or closed."""


class WebSocketTimeoutError(WebSocketError):
    """Raised when a correlated request received no response in time."""

    exit_code = EXIT_TIMEOUT


class ProtocolError(WebSocketError):
    """Raised when an incoming frame cannot be decoded into a known shape."""

    exit_code = EXIT_PROTOCOL_ERROR


class ReconnectError(WebSocketError):
    """Emitted to error handlers once the reconnect budget is exhausted."""
