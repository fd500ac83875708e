"""Response parsing helpers -- parse-mode detection, body decoding, error capture.

These functions sit between :class:`~meroclient.http.client.HttpClient` and
:class:`httpx.Response`.  On a 2xx response the client picks a
:class:`ParseMode` (explicit override or :func:`detect_parse_mode`) and calls
:func:`parse_body`; on any other status it calls :func:`read_error_body`
and raises :class:`~meroclient.exceptions.HTTPError`.

:func:`unwrap` handles the ``{data, error}`` envelope used by the node's
SDK-facing endpoints.
"""

from __future__ import annotations

import enum
import json
from collections.abc import Mapping
from typing import Any, Optional

import httpx

from meroclient.exceptions import EnvelopeError, ResponseParseError

MAX_ERROR_BODY_CHARS = 65536
"""Upper bound on the body text captured into an HTTP error."""

_BINARY_PREFIXES = ("image/", "video/", "audio/")


class ParseMode(str, enum.Enum):
    """How a successful response body is turned into a return value."""

    JSON = "json"
    TEXT = "text"
    BYTES = "bytes"
    RESPONSE = "response"


def detect_parse_mode(content_type: Optional[str]) -> ParseMode:
    """Infer a :class:`ParseMode` from a ``content-type`` header value.

    ``application/json`` maps to JSON, ``text/*`` to text, and
    ``application/octet-stream`` plus ``image/*``, ``video/*`` and
    ``audio/*`` to bytes.  Anything else, including a missing header,
    defaults to JSON.
    """
    if not content_type:
        return ParseMode.JSON
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type == "application/json":
        return ParseMode.JSON
    if media_type.startswith("text/"):
        return ParseMode.TEXT
    if media_type == "application/octet-stream" or media_type.startswith(_BINARY_PREFIXES):
        return ParseMode.BYTES
    return ParseMode.JSON


def parse_body(response: httpx.Response, mode: ParseMode) -> Any:
    """Decode *response* according to *mode*.

    JSON mode returns ``None`` for an empty body (``204 No Content`` and
    friends).

    Raises:
        ResponseParseError: If JSON mode is selected and the body is not
            valid JSON.
    """
    if mode is ParseMode.RESPONSE:
        return response
    if mode is ParseMode.BYTES:
        return response.content
    if mode is ParseMode.TEXT:
        return response.text
    if not response.content:
        return None
    try:
        return json.loads(response.content)
    except ValueError as exc:
        raise ResponseParseError(
            f"Invalid JSON in response from {response.request.url}: {exc}"
        ) from exc


def read_error_body(response: httpx.Response) -> Optional[str]:
    """Return the body text of an error response, truncated to 64 KiB.

    Returns ``None`` only when the body cannot be decoded at all.
    """
    try:
        text = response.text
    except (UnicodeDecodeError, LookupError):
        return None
    return text[:MAX_ERROR_BODY_CHARS]


def unwrap(envelope: Any) -> Any:
    """Extract ``data`` from a ``{data, error}`` envelope.

    Falsy but present values such as ``0``, ``False`` or ``""`` are
    returned as-is.

    Raises:
        EnvelopeError: If the envelope carries an ``error`` or its ``data``
            is missing or ``null``.
    """
    if not isinstance(envelope, Mapping):
        raise EnvelopeError(f"Expected a response envelope, got {type(envelope).__name__}")
    error = envelope.get("error")
    if error is not None:
        message = error.get("message") if isinstance(error, Mapping) else None
        raise EnvelopeError(message or str(error), error=error)
    data = envelope.get("data")
    if data is None:
        raise EnvelopeError("Response envelope contains no data")
    return data
