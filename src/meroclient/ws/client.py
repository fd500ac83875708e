"""WebSocket event client with request correlation and auto-reconnect.

One :class:`WebSocketClient` owns one duplex connection to ``<base>/ws``.
Outbound requests carry strictly increasing integer ids; a reader task
settles the matching pending future when a response with the same id
arrives.  Anything else is decoded as a push event and fanned out to the
registered handlers.

State machine::

    DISCONNECTED --connect()--> CONNECTING --open--> CONNECTED
    CONNECTED --unexpected close--> RECONNECTING --delay--> CONNECTING
    RECONNECTING --budget exhausted / auto-reconnect off--> DISCONNECTED

After a successful reconnect every previously subscribed context is
subscribed again.

Example::

    ws = WebSocketClient("http://localhost:2428", get_auth_token=session.get_access_token)
    await ws.connect()
    ws.on_event(lambda event: print(event.context_id, event.type))
    await ws.subscribe(["ctx-1"])
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import json
import logging
import re
from collections.abc import Awaitable, Iterable
from typing import Any, Callable, Optional
from urllib.parse import quote

import websockets
from websockets.exceptions import ConnectionClosed

from meroclient.exceptions import (
    NotConnectedError,
    ProtocolError,
    ReconnectError,
    WebSocketError,
    WebSocketTimeoutError,
)
from meroclient.models import WsEvent, WsRequest, WsResponse

logger = logging.getLogger(__name__)

EventHandler = Callable[[WsEvent], Any]
ErrorHandler = Callable[[BaseException], Any]
CloseHandler = Callable[[Optional[int], str], Any]
Connector = Callable[[str], Awaitable[Any]]
TokenGetter = Callable[[], Awaitable[Optional[str]]]


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


def build_ws_url(base_url: str, token: Optional[str] = None) -> str:
    """Derive the socket URL: ``http``/``https`` become ``ws``/``wss`` and ``/ws`` is appended.

    The token travels as a ``token`` query parameter because the socket
    handshake cannot carry custom headers in every runtime.
    """
    url = re.sub(r"^http:", "ws:", base_url)
    url = re.sub(r"^https:", "wss:", url)
    url = url.rstrip("/") + "/ws"
    if token:
        url = f"{url}?token={quote(token, safe='')}"
    return url


class WebSocketClient:
    """Event-subscription client for a node's ``/ws`` endpoint.

    Args:
        base_url: Node address (``http(s)://`` or ``ws(s)://``).
        get_auth_token: Async callable supplying the access token for the
            handshake.
        auto_reconnect: Reconnect after an unexpected close.
        reconnect_delay: Seconds before the first reconnect; doubles for
            each further attempt.
        max_reconnect_attempts: Reconnect budget per disconnect streak.
        request_timeout: Seconds to wait for a correlated response.
        connect: Async factory ``url -> socket``.  Defaults to
            :func:`websockets.connect`.  The socket must support
            ``send(str)``, ``close()`` and async iteration over frames.
    """

    def __init__(
        self,
        base_url: str,
        get_auth_token: Optional[TokenGetter] = None,
        *,
        auto_reconnect: bool = True,
        reconnect_delay: float = 1.0,
        max_reconnect_attempts: int = 5,
        request_timeout: float = 30.0,
        connect: Optional[Connector] = None,
    ) -> None:
        self._base_url = base_url
        self._get_auth_token = get_auth_token
        self._auto_reconnect_default = auto_reconnect
        self._auto_reconnect = auto_reconnect
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_attempts = max_reconnect_attempts
        self._request_timeout = request_timeout
        self._connector: Connector = connect if connect is not None else websockets.connect

        self._state = ConnectionState.DISCONNECTED
        self._socket: Any = None
        self._reader: Optional[asyncio.Task[None]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None
        self._connect_lock = asyncio.Lock()
        self._reconnect_attempts = 0
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[WsResponse]] = {}
        # Insertion-ordered set.
        self._subscribed: dict[str, None] = {}

        self._event_handlers: list[EventHandler] = []
        self._error_handlers: list[ErrorHandler] = []
        self._close_handlers: list[CloseHandler] = []

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def url(self) -> str:
        """Socket URL without the token query parameter."""
        return build_ws_url(self._base_url)

    @property
    def auto_reconnect(self) -> bool:
        return self._auto_reconnect

    @property
    def reconnect_delay(self) -> float:
        return self._reconnect_delay

    @property
    def max_reconnect_attempts(self) -> int:
        return self._max_reconnect_attempts

    @property
    def request_timeout(self) -> float:
        return self._request_timeout

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._socket is not None

    @property
    def subscribed_contexts(self) -> list[str]:
        """Context ids confirmed by the node, in subscription order."""
        return list(self._subscribed)

    @property
    def pending_count(self) -> int:
        """Number of requests still awaiting a response."""
        return len(self._pending)

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> WebSocketClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        """Open the socket.  A no-op when already connected.

        Concurrent callers share one handshake: the ones that arrive while
        it is in flight return once it has finished.

        Raises:
            WebSocketError: If the handshake failed.  The error is also
                passed to the error handlers.
        """
        async with self._connect_lock:
            if self.is_connected:
                return
            await self._open()

    async def _open(self) -> None:
        if self._reconnect_task is None:
            self._auto_reconnect = self._auto_reconnect_default
        self._state = ConnectionState.CONNECTING

        try:
            token = await self._get_auth_token() if self._get_auth_token is not None else None
            socket = await self._connector(build_ws_url(self._base_url, token))
        except Exception as exc:
            self._state = ConnectionState.DISCONNECTED
            error = WebSocketError(f"WebSocket connection to {self.url} failed: {exc}")
            self._emit_error(error)
            raise error from exc

        self._socket = socket
        self._state = ConnectionState.CONNECTED
        self._reconnect_attempts = 0
        self._reader = asyncio.ensure_future(self._read_loop(socket))
        logger.debug("WebSocket connected to %s", self.url)

    async def disconnect(self) -> None:
        """Close the socket, stop reconnecting, and forget all subscriptions."""
        self._auto_reconnect = False
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        self._subscribed.clear()
        self._state = ConnectionState.DISCONNECTED

        socket, self._socket = self._socket, None
        reader, self._reader = self._reader, None
        if socket is None:
            return
        await socket.close()
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        self._notify_close(socket)
        logger.debug("WebSocket disconnected")

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    async def request(self, method: str, params: Optional[dict[str, Any]] = None) -> WsResponse:
        """Send a correlated request and wait for its response.

        Raises:
            NotConnectedError: If the socket is not open.  Never queued.
            WebSocketTimeoutError: If no response arrived within
                ``request_timeout``.  The pending entry is removed.
        """
        socket = self._socket
        if socket is None or self._state is not ConnectionState.CONNECTED:
            raise NotConnectedError("WebSocket not connected")

        request_id = next(self._ids)
        future: asyncio.Future[WsResponse] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            frame = WsRequest(id=request_id, method=method, params=params or {})
            try:
                await socket.send(frame.model_dump_json())
            except ConnectionClosed as exc:
                raise NotConnectedError(f"WebSocket closed while sending: {exc}") from exc
            try:
                return await asyncio.wait_for(future, self._request_timeout)
            except asyncio.TimeoutError:
                raise WebSocketTimeoutError(
                    f"WebSocket request {request_id} ({method}) timed out "
                    f"after {self._request_timeout:g}s"
                ) from None
        finally:
            self._pending.pop(request_id, None)

    async def subscribe(self, context_ids: Iterable[str]) -> WsResponse:
        """Subscribe to events of *context_ids*.

        The subscribed set only grows when the node answers without an error.
        """
        ids = list(context_ids)
        response = await self.request("subscribe", {"contextIds": ids})
        if response.ok:
            for context_id in ids:
                self._subscribed[context_id] = None
        return response

    async def unsubscribe(self, context_ids: Iterable[str]) -> WsResponse:
        """Unsubscribe from *context_ids*; the set shrinks only on success."""
        ids = list(context_ids)
        response = await self.request("unsubscribe", {"contextIds": ids})
        if response.ok:
            for context_id in ids:
                self._subscribed.pop(context_id, None)
        return response

    # ------------------------------------------------------------------ #
    # Handlers
    # ------------------------------------------------------------------ #

    def on_event(self, handler: EventHandler) -> Callable[[], None]:
        """Register an event handler.  Returns a callable that unregisters it."""
        return self._register(self._event_handlers, handler)

    def on_error(self, handler: ErrorHandler) -> Callable[[], None]:
        """Register an error handler.  Returns a callable that unregisters it."""
        return self._register(self._error_handlers, handler)

    def on_close(self, handler: CloseHandler) -> Callable[[], None]:
        """Register a close handler called with ``(code, reason)``."""
        return self._register(self._close_handlers, handler)

    @staticmethod
    def _register(handlers: list[Any], handler: Any) -> Callable[[], None]:
        handlers.append(handler)

        def unregister() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unregister

    def _emit_error(self, error: BaseException) -> None:
        for handler in list(self._error_handlers):
            try:
                handler(error)
            except Exception:
                logger.exception("WebSocket error handler raised")

    def _notify_close(self, socket: Any) -> None:
        code = getattr(socket, "close_code", None)
        reason = getattr(socket, "close_reason", None) or ""
        for handler in list(self._close_handlers):
            try:
                handler(code, reason)
            except Exception as exc:
                self._emit_error(exc)

    # ------------------------------------------------------------------ #
    # Incoming frames
    # ------------------------------------------------------------------ #

    async def _read_loop(self, socket: Any) -> None:
        try:
            async for raw in socket:
                self._handle_message(raw)
        except ConnectionClosed as exc:
            logger.debug("WebSocket closed abnormally: %s", exc)
        self._handle_close(socket)

    def _handle_message(self, raw: Any) -> None:
        try:
            text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
            message = json.loads(text)
        except ValueError as exc:
            self._emit_error(ProtocolError(f"Invalid JSON frame: {exc}"))
            return
        if not isinstance(message, dict):
            self._emit_error(ProtocolError(f"Unexpected frame: {message!r}"))
            return

        msg_id = message.get("id")
        if isinstance(msg_id, int) and not isinstance(msg_id, bool):
            future = self._pending.pop(msg_id, None)
            if future is not None:
                if not future.done():
                    future.set_result(WsResponse.model_validate(message))
                return
            if "result" in message or "error" in message:
                logger.debug("Dropping response for unknown request id %d", msg_id)
                return

        try:
            event = WsEvent.from_message(message)
        except ProtocolError as exc:
            self._emit_error(exc)
            return
        for handler in list(self._event_handlers):
            try:
                handler(event)
            except Exception as exc:
                self._emit_error(exc)

    # ------------------------------------------------------------------ #
    # Reconnect
    # ------------------------------------------------------------------ #

    def _handle_close(self, socket: Any) -> None:
        if socket is not self._socket:
            return
        self._socket = None
        self._reader = None
        self._state = ConnectionState.DISCONNECTED
        logger.debug("WebSocket closed (code=%s)", getattr(socket, "close_code", None))
        self._notify_close(socket)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if not self._auto_reconnect:
            return
        if self._reconnect_attempts >= self._max_reconnect_attempts:
            self._emit_error(ReconnectError("Max reconnect attempts reached"))
            return
        self._reconnect_attempts += 1
        delay = self._reconnect_delay * 2 ** (self._reconnect_attempts - 1)
        self._state = ConnectionState.RECONNECTING
        logger.debug(
            "Reconnecting in %.2fs (attempt %d/%d)",
            delay,
            self._reconnect_attempts,
            self._max_reconnect_attempts,
        )
        self._reconnect_task = asyncio.ensure_future(self._reconnect(delay))

    async def _reconnect(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.connect()
        except Exception as exc:
            logger.debug("Reconnect attempt %d failed: %s", self._reconnect_attempts, exc)
            self._reconnect_task = None
            self._schedule_reconnect()
            return
        self._reconnect_task = None
        if not self._subscribed:
            return
        try:
            await self.subscribe(list(self._subscribed))
        except WebSocketError as exc:
            logger.debug("Resubscribe after reconnect failed: %s", exc)
