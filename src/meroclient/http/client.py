"""Asynchronous HTTP transport client for a Calimero node.

:class:`HttpClient` wraps :class:`httpx.AsyncClient` and runs every call
through the same pipeline:

1. Resolve the URL against :attr:`Transport.base_url` (:func:`resolve_url`).
2. Merge default and per-call headers case-insensitively (:func:`merge_headers`),
   dropping ``content-type`` for :class:`FormData` bodies.
3. Inject ``authorization: Bearer <token>`` from the token getter unless the
   caller already set one.  Getter failures are logged and ignored.
4. Compose the abort signal from the transport default, the caller signal,
   and a timeout signal.
5. Dispatch, applying the credentials policy to outgoing cookies.
6. Raise :class:`~meroclient.exceptions.HTTPError` on non-2xx, or parse the
   body according to the :class:`~meroclient.http.response.ParseMode`.

A 401 triggers one refresh-and-retry when :attr:`Transport.refresh_token`
is configured.  Concurrent 401s share a single in-flight refresh.  A
:class:`~meroclient.http.retry.RetryPolicy` from the call or the transport
wraps the whole pipeline.

Example::

    transport = Transport(base_url="http://localhost:2428", get_auth_token=session.get_valid_token)
    async with HttpClient(transport) as client:
        contexts = await client.get("/admin-api/contexts")
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import re
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from meroclient.exceptions import (
    HTTPError,
    NetworkError,
    RequestTimeoutError,
    StorageError,
)
from meroclient.http.response import ParseMode, detect_parse_mode, parse_body, read_error_body
from meroclient.http.retry import RetryPolicy, with_retry
from meroclient.http.signals import AbortSignal, combine_signals, timeout_signal
from meroclient.models import CredentialsPolicy, HeadResponse

logger = logging.getLogger(__name__)

TokenGetter = Callable[[], Awaitable[Optional[str]]]
TokenRefresher = Callable[[], Awaitable[str]]
TokenRefreshedCallback = Callable[[str], Awaitable[None]]

_ABSOLUTE_URL = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")


@dataclass(frozen=True)
class Transport:
    """Immutable per-client configuration.

    Attributes:
        base_url: Node address; trailing slashes are stripped.
        default_headers: Headers sent with every call.  Per-call headers
            override them case-insensitively.
        get_auth_token: Async callable returning the current access token.
        on_token_refresh: Async callback invoked once per successful refresh
            with the new access token.
        refresh_token: Async callable returning a new access token.  Enables
            the automatic refresh-and-retry on 401.
        timeout: Default deadline in seconds; ``None`` disables it.
        credentials: Default cookie policy.
        default_signal: Abort signal applied to every call.
        retry: Default retry policy for every call.
        http_client: Pre-built :class:`httpx.AsyncClient` to dispatch with.
            It is not closed by :meth:`HttpClient.aclose`.
    """

    base_url: str = ""
    default_headers: Mapping[str, str] = field(default_factory=dict)
    get_auth_token: Optional[TokenGetter] = None
    on_token_refresh: Optional[TokenRefreshedCallback] = None
    refresh_token: Optional[TokenRefresher] = None
    timeout: Optional[float] = 30.0
    credentials: CredentialsPolicy = CredentialsPolicy.SAME_ORIGIN
    default_signal: Optional[AbortSignal] = None
    retry: Optional[RetryPolicy] = None
    http_client: Optional[httpx.AsyncClient] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))


@dataclass(frozen=True)
class FormData:
    """Form payload.  httpx encodes it as multipart when *files* is non-empty.

    Example::

        FormData(fields={"name": "app.wasm"}, files={"file": ("app.wasm", blob)})
    """

    fields: Mapping[str, Any] = field(default_factory=dict)
    files: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RequestOptions:
    """Per-call overrides.  Any field left as ``None`` falls back to :class:`Transport`."""

    method: str = "GET"
    headers: Optional[Mapping[str, str]] = None
    body: Any = None
    parse: Optional[ParseMode] = None
    timeout: Optional[float] = None
    signal: Optional[AbortSignal] = None
    credentials: Optional[CredentialsPolicy] = None
    retry: Optional[RetryPolicy] = None
    params: Optional[Mapping[str, Any]] = None


def resolve_url(base_url: str, path: str) -> str:
    """Join *path* onto *base_url* with exactly one separating slash.

    Absolute URLs (anything with a scheme) are returned unchanged.
    """
    if _ABSOLUTE_URL.match(path):
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def merge_headers(
    defaults: Optional[Mapping[str, str]],
    overrides: Optional[Mapping[str, str]],
) -> httpx.Headers:
    """Overlay *overrides* onto *defaults*, matching keys case-insensitively.

    The result never holds two entries whose keys differ only by case, and
    an override keeps the spelling the caller used.
    """
    headers = httpx.Headers(dict(defaults or {}))
    for key, value in (overrides or {}).items():
        headers[key] = value
    return headers


def _same_origin(url: httpx.URL, base_url: str) -> bool:
    if not base_url:
        return True
    base = httpx.URL(base_url)
    return (url.scheme, url.host, url.port) == (base.scheme, base.host, base.port)


class HttpClient:
    """Typed async client bound to one :class:`Transport`.

    Can be used as an async context manager or closed explicitly with
    :meth:`aclose`.  The underlying :class:`httpx.AsyncClient` is created
    lazily unless the transport supplies one.
    """

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = transport.http_client
        self._owns_client = transport.http_client is None
        self._refresh_task: Optional[asyncio.Task[str]] = None

    @property
    def transport(self) -> Transport:
        """The immutable configuration this client was built with."""
        return self._transport

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> HttpClient:
        self._ensure_client()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Deadlines are enforced by the composed abort signal.
            self._client = httpx.AsyncClient(timeout=None, follow_redirects=True)
            self._owns_client = True
        return self._client

    # ------------------------------------------------------------------ #
    # Verbs
    # ------------------------------------------------------------------ #

    async def get(self, path: str, options: Optional[RequestOptions] = None) -> Any:
        """Send a ``GET`` request and return the parsed body."""
        return await self.request(path, self._with(options, method="GET"))

    async def delete(self, path: str, options: Optional[RequestOptions] = None) -> Any:
        """Send a ``DELETE`` request and return the parsed body."""
        return await self.request(path, self._with(options, method="DELETE"))

    async def post(
        self, path: str, body: Any = None, options: Optional[RequestOptions] = None
    ) -> Any:
        """Send a ``POST`` request.  Non-form, non-raw bodies are JSON-encoded."""
        return await self.request(path, self._with(options, method="POST", body=body))

    async def put(
        self, path: str, body: Any = None, options: Optional[RequestOptions] = None
    ) -> Any:
        """Send a ``PUT`` request.  Non-form, non-raw bodies are JSON-encoded."""
        return await self.request(path, self._with(options, method="PUT", body=body))

    async def patch(
        self, path: str, body: Any = None, options: Optional[RequestOptions] = None
    ) -> Any:
        """Send a ``PATCH`` request.  Non-form, non-raw bodies are JSON-encoded."""
        return await self.request(path, self._with(options, method="PATCH", body=body))

    async def head(self, path: str, options: Optional[RequestOptions] = None) -> HeadResponse:
        """Send a ``HEAD`` request and return its status and headers."""
        response: httpx.Response = await self.request(
            path, self._with(options, method="HEAD", parse=ParseMode.RESPONSE)
        )
        return HeadResponse(status=response.status_code, headers=dict(response.headers))

    async def request(self, path: str, options: Optional[RequestOptions] = None) -> Any:
        """Run the full request pipeline for *path*.

        Args:
            path: Relative path joined onto the base URL, or an absolute URL.
            options: Per-call overrides.

        Returns:
            The parsed body: decoded JSON, ``str``, ``bytes``, or the raw
            :class:`httpx.Response` in ``response`` mode.

        Raises:
            HTTPError: On a non-2xx status.
            NetworkError: When dispatch failed before any response.
            AbortError: When the caller or default signal fired.
            RequestTimeoutError: When the deadline elapsed.
            ResponseParseError: When a JSON body is malformed.
        """
        if options is None:
            options = RequestOptions()
        policy = options.retry if options.retry is not None else self._transport.retry
        if policy is None:
            return await self._execute(path, options)

        async def attempt_call(attempt: int) -> Any:
            if attempt:
                logger.debug("Retry attempt %d for %s %s", attempt, options.method, path)
            return await self._execute(path, options)

        return await with_retry(attempt_call, policy)

    @staticmethod
    def _with(options: Optional[RequestOptions], **changes: Any) -> RequestOptions:
        base = options if options is not None else RequestOptions()
        if changes.get("body", base.body) is None:
            changes.pop("body", None)
        return dataclasses.replace(base, **changes)

    # ------------------------------------------------------------------ #
    # Pipeline
    # ------------------------------------------------------------------ #

    async def _execute(self, path: str, options: RequestOptions) -> Any:
        loop = asyncio.get_running_loop()
        started = loop.time()
        timeout = options.timeout if options.timeout is not None else self._transport.timeout
        try:
            return await self._send_once(path, options, timeout)
        except HTTPError as error:
            if not self._should_refresh(error, options):
                raise
            await self._await_refresh(error)
            if timeout:
                timeout -= loop.time() - started
                if timeout <= 0:
                    logger.debug("Deadline spent during token refresh for %s", error.url)
                    raise error
            return await self._send_once(path, options, timeout)

    async def _send_once(
        self, path: str, options: RequestOptions, timeout: Optional[float]
    ) -> Any:
        url = resolve_url(self._transport.base_url, path)
        headers = merge_headers(self._transport.default_headers, options.headers)
        content = self._encode_body(options.body, headers)
        await self._inject_auth(headers)

        deadline = timeout_signal(timeout) if timeout else None
        signal = combine_signals([self._transport.default_signal, options.signal, deadline])
        try:
            client = self._ensure_client()
            request = client.build_request(
                options.method.upper(),
                url,
                headers=headers,
                params=options.params,
                **content,
            )
            self._apply_credentials(request, options)
            logger.debug("%s %s", request.method, request.url)
            response = await self._dispatch(client, request, signal)
        finally:
            if signal is not None:
                signal.close()
            if deadline is not None:
                deadline.close()

        if not response.is_success:
            raise HTTPError(
                response.status_code,
                response.reason_phrase,
                str(request.url),
                response.headers,
                read_error_body(response),
            )
        mode = ParseMode(options.parse) if options.parse else detect_parse_mode(
            response.headers.get("content-type")
        )
        return parse_body(response, mode)

    @staticmethod
    def _encode_body(body: Any, headers: httpx.Headers) -> dict[str, Any]:
        if body is None:
            return {}
        if isinstance(body, FormData):
            # httpx writes the multipart boundary itself.
            if "content-type" in headers:
                del headers["content-type"]
            return {"data": dict(body.fields) or None, "files": dict(body.files) or None}
        if isinstance(body, (bytes, bytearray, str)):
            return {"content": body}
        if "content-type" not in headers:
            headers["content-type"] = "application/json"
        return {"content": json.dumps(body).encode("utf-8")}

    async def _inject_auth(self, headers: httpx.Headers) -> None:
        getter = self._transport.get_auth_token
        if getter is None or "authorization" in headers:
            return
        try:
            token = await getter()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Auth token lookup failed; sending request without it: %s", exc)
            return
        if token:
            headers["authorization"] = f"Bearer {token}"

    def _apply_credentials(self, request: httpx.Request, options: RequestOptions) -> None:
        policy = CredentialsPolicy(options.credentials or self._transport.credentials)
        if policy is CredentialsPolicy.INCLUDE:
            return
        if policy is CredentialsPolicy.SAME_ORIGIN and _same_origin(
            request.url, self._transport.base_url
        ):
            return
        if "cookie" in request.headers:
            del request.headers["cookie"]

    async def _dispatch(
        self,
        client: httpx.AsyncClient,
        request: httpx.Request,
        signal: Optional[AbortSignal],
    ) -> httpx.Response:
        url = str(request.url)
        if signal is None:
            return await self._send(client, request)
        signal.raise_if_aborted(url)

        send_task = asyncio.ensure_future(self._send(client, request))
        abort_task = asyncio.ensure_future(signal.wait())
        try:
            done, _ = await asyncio.wait(
                {send_task, abort_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            send_task.cancel()
            raise
        finally:
            abort_task.cancel()

        if send_task in done:
            return send_task.result()
        send_task.cancel()
        logger.debug("%s %s cancelled (%s)", request.method, url, signal.reason)
        raise signal.to_error(url)

    @staticmethod
    async def _send(client: httpx.AsyncClient, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        try:
            return await client.send(request)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(f"Request timed out {url}: {exc}", url=url) from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"Network error for {url}: {exc}", url=url) from exc

    # ------------------------------------------------------------------ #
    # Token refresh
    # ------------------------------------------------------------------ #

    def _should_refresh(self, error: HTTPError, options: RequestOptions) -> bool:
        if error.status != 401 or self._transport.refresh_token is None:
            return False
        return not (options.signal is not None and options.signal.aborted)

    async def _await_refresh(self, error: HTTPError) -> None:
        """Wait for the shared refresh; re-raise *error* if it fails."""
        if self._refresh_task is None:
            logger.debug("401 from %s (%s); refreshing access token", error.url, error.auth_error)
            self._refresh_task = asyncio.ensure_future(self._run_refresh())
            self._refresh_task.add_done_callback(self._clear_refresh_task)
        try:
            await asyncio.shield(self._refresh_task)
        except StorageError:
            raise
        except Exception as exc:
            logger.debug("Token refresh failed: %s", exc)
            raise error from exc

    async def _run_refresh(self) -> str:
        refresher = self._transport.refresh_token
        assert refresher is not None
        token = await refresher()
        if not token or not token.strip():
            raise ValueError("Token refresh returned an empty token")
        if self._transport.on_token_refresh is not None:
            await self._transport.on_token_refresh(token)
        return token

    def _clear_refresh_task(self, task: asyncio.Task[str]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
