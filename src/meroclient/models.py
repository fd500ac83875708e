"""Canonical Pydantic models shared across meroclient modules.

The models fall into three groups:

**Credential models** -- persisted by token storage backends:
    :class:`TokenData` and :class:`TokenGrant`.

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`RetrySettings`, :class:`WebSocketSettings`, and
    :class:`ClientSettings`.

**Wire models** -- shapes exchanged with the node:
    :class:`HeadResponse`, :class:`WsRequest`, :class:`WsResponse`,
    :class:`WsEvent`, :class:`RpcRequest`, and :class:`RpcResponse`
    (with :class:`RpcExecuteParams` and :class:`RpcErrorBody`).

All models use Pydantic v2.  Runtime-only objects that hold callables
(transport configuration, request options, retry policies) are plain
dataclasses living next to the code that consumes them.
"""

from __future__ import annotations

import enum
import time
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from meroclient.exceptions import ProtocolError


# --- Credentials ---


class TokenData(BaseModel):
    """Access/refresh token pair with an absolute expiry.

    Created on successful authentication, read before each authenticated
    call, replaced on refresh, and cleared on logout or irrecoverable
    refresh failure.  The field names match the JSON the node and every
    storage backend use.

    Example::

        TokenData(access_token="eyJ...", refresh_token="eyJ...", expires_at=1760000000000)
    """

    access_token: str = Field(description="Bearer token sent in the authorization header")
    refresh_token: str = Field(description="Token exchanged for a new access token")
    expires_at: int = Field(description="Absolute expiry as epoch milliseconds")

    def is_expired(self, now_ms: Optional[int] = None) -> bool:
        """Return ``True`` when the access token is at or past its expiry."""
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return now_ms >= self.expires_at


class TokenGrant(BaseModel):
    """Token response returned by the node's ``/token`` and ``/refresh`` endpoints."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str
    expires_in: Optional[int] = Field(
        default=None, description="Lifetime of the access token in seconds"
    )


# --- Configuration ---


class CredentialsPolicy(str, enum.Enum):
    """Whether cookies accompany a request, mirroring the fetch ``credentials`` modes."""

    OMIT = "omit"
    SAME_ORIGIN = "same-origin"
    INCLUDE = "include"


class RetrySettings(BaseModel):
    """Retry budget applied to every HTTP call made through the CLI or SDK."""

    attempts: int = Field(default=1, ge=1, description="Total attempts, including the first")
    base_delay: float = Field(default=1.0, ge=0, description="Initial backoff in seconds")
    max_delay: float = Field(default=10.0, ge=0, description="Backoff cap in seconds")
    backoff_factor: float = Field(default=2.0, ge=1, description="Exponential multiplier")
    retry_rate_limited: bool = Field(
        default=False, description="Also retry HTTP 429 responses"
    )


class WebSocketSettings(BaseModel):
    """Defaults for clients created with :meth:`~meroclient.sdk.MeroClient.create_websocket`."""

    auto_reconnect: bool = True
    reconnect_delay: float = Field(default=1.0, ge=0, description="Seconds before first reconnect")
    max_reconnect_attempts: int = Field(default=5, ge=0)
    request_timeout: float = Field(default=30.0, gt=0, description="Seconds to await a response")


class ClientSettings(BaseModel):
    """User-wide configuration persisted at ``~/.config/meroclient/config.json``.

    Loaded and saved by :func:`~meroclient.config.load_settings` and
    :func:`~meroclient.config.save_settings`.  Fields here have the lowest
    precedence and can be overridden by environment variables or CLI flags.
    See :func:`~meroclient.config.resolve_settings` for the full chain.
    """

    base_url: Optional[str] = Field(default=None, description="Node base URL")
    auth_base_url: Optional[str] = Field(
        default=None,
        description="Auth service base URL; defaults to base_url (embedded auth)",
    )
    timeout: float = Field(default=10.0, gt=0, description="Request timeout in seconds")
    credentials: CredentialsPolicy = Field(default=CredentialsPolicy.SAME_ORIGIN)
    default_headers: dict[str, str] = Field(default_factory=dict)
    token_storage: str = Field(default="file", description="Token storage: memory, file")
    retry: RetrySettings = Field(default_factory=RetrySettings)
    websocket: WebSocketSettings = Field(default_factory=WebSocketSettings)

    @field_validator("base_url", "auth_base_url")
    @classmethod
    def _strip_trailing_slashes(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.rstrip("/")


# --- Wire shapes ---


class HeadResponse(BaseModel):
    """Status and headers recovered from a ``HEAD`` request."""

    status: int
    headers: dict[str, str] = Field(default_factory=dict)


class WsRequest(BaseModel):
    """Outbound WebSocket request envelope: ``{id, method, params}``."""

    id: int
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class WsResponse(BaseModel):
    """Response to a correlated request: ``{id, result?, error?}``."""

    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    result: Any = None
    error: Optional[Any] = None

    @property
    def ok(self) -> bool:
        """``True`` when the node did not report an error."""
        return self.error is None


_EVENT_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("context_id", "contextId", "context_id"),
    ("type", "type", "event"),
    ("data", "data", "payload"),
)


class WsEvent(BaseModel):
    """Unsolicited push event, normalised to one internal shape.

    The node may name each field in one of two ways; see
    :meth:`from_message`.
    """

    context_id: str
    type: str
    data: Any = None

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> WsEvent:
        """Decode a raw event frame, accepting both field-naming conventions.

        For every field the primary key is tried first, then the fallback:
        ``contextId`` / ``context_id``, ``type`` / ``event``, and
        ``data`` / ``payload``.  A primary key holding ``null`` defers to
        the fallback when the fallback is present.

        Raises:
            ProtocolError: If neither key is present for some field.
        """
        values: dict[str, Any] = {}
        for name, primary, fallback in _EVENT_FIELDS:
            if message.get(primary) is not None:
                values[name] = message[primary]
            elif fallback in message:
                values[name] = message[fallback]
            elif primary in message:
                values[name] = None
            else:
                raise ProtocolError(
                    f"Event frame is missing '{primary}' (or '{fallback}'): {sorted(message)}"
                )
        try:
            return cls.model_validate(values)
        except ValueError as exc:
            raise ProtocolError(f"Malformed event frame: {exc}") from exc


class RpcExecuteParams(BaseModel):
    """``params`` of a JSON-RPC ``execute`` call, serialised in camelCase."""

    context_id: str = Field(serialization_alias="contextId")
    method: str
    args_json: dict[str, Any] = Field(default_factory=dict, serialization_alias="argsJson")
    executor_public_key: str = Field(serialization_alias="executorPublicKey")
    substitute: list[dict[str, Any]] = Field(default_factory=list)


class RpcRequest(BaseModel):
    """JSON-RPC 2.0 request posted to ``/jsonrpc``."""

    jsonrpc: str = "2.0"
    id: int
    method: str = "execute"
    params: RpcExecuteParams


class RpcErrorBody(BaseModel):
    """The ``error`` member of a JSON-RPC response: ``{type, data?}``."""

    model_config = ConfigDict(extra="allow")

    type: str
    data: Any = None


class RpcResponse(BaseModel):
    """JSON-RPC 2.0 response: ``{jsonrpc, id, result?, error?}``.

    ``result`` is ``{"output": ...}`` for a successful execution.
    """

    model_config = ConfigDict(extra="allow")

    jsonrpc: str = "2.0"
    id: Optional[Any] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[RpcErrorBody] = None
