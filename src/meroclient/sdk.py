"""High-level entry point wiring settings, token storage, auth, HTTP and WebSocket.

:class:`MeroClient` builds two :class:`~meroclient.http.client.HttpClient`
instances:

* the **API client**, bound to ``base_url``, which injects the session's
  access token and refreshes it on 401;
* the **auth client**, bound to ``auth_base_url`` (defaults to
  ``base_url``), which never refreshes, so a failing refresh endpoint
  cannot loop back into itself.

Example::

    async with MeroClient(ClientSettings(base_url="http://localhost:2428")) as mero:
        await mero.authenticate("admin", "secret")
        contexts = await mero.http.get("/admin-api/contexts")
        value = await mero.rpc.query("ctx-1", "get", {"key": "k"}, executor_key)
"""

from __future__ import annotations

from typing import Any, Optional

from meroclient.auth.api import AuthApi
from meroclient.auth.session import AuthSession
from meroclient.auth.storage import TokenStorage, create_token_storage
from meroclient.exceptions import AuthError, ConfigError
from meroclient.http.client import HttpClient, Transport
from meroclient.http.retry import RetryPolicy, default_retry_condition, retry_on_rate_limit
from meroclient.models import ClientSettings, RetrySettings, TokenData
from meroclient.rpc.client import RpcClient
from meroclient.ws.client import WebSocketClient


def retry_policy_from_settings(settings: RetrySettings) -> Optional[RetryPolicy]:
    """Translate persisted retry settings into a :class:`RetryPolicy`.

    Returns ``None`` when only a single attempt is configured.
    """
    if settings.attempts <= 1:
        return None
    return RetryPolicy(
        attempts=settings.attempts,
        base_delay=settings.base_delay,
        max_delay=settings.max_delay,
        backoff_factor=settings.backoff_factor,
        retry_condition=(
            retry_on_rate_limit if settings.retry_rate_limited else default_retry_condition
        ),
    )


class MeroClient:
    """Typed access to one Calimero node.

    Args:
        settings: Resolved client settings.  ``base_url`` is required.
        storage: Token storage; defaults to the backend named by
            ``settings.token_storage``.
        username: Default username for :meth:`authenticate`.
        password: Default password for :meth:`authenticate`.

    Raises:
        ConfigError: If ``settings.base_url`` is missing.
    """

    def __init__(
        self,
        settings: ClientSettings,
        storage: Optional[TokenStorage] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> None:
        if not settings.base_url:
            raise ConfigError("No node base URL configured")
        self._settings = settings
        self._username = username
        self._password = password

        auth_base_url = settings.auth_base_url or settings.base_url
        retry = retry_policy_from_settings(settings.retry)

        # The auth client reads the current token without ever refreshing it.
        self._auth_http = HttpClient(
            Transport(
                base_url=auth_base_url,
                default_headers=dict(settings.default_headers),
                get_auth_token=self._current_access_token,
                timeout=settings.timeout,
                credentials=settings.credentials,
            )
        )
        self._auth_api = AuthApi(self._auth_http, embedded=auth_base_url == settings.base_url)
        self._session = AuthSession(
            self._auth_api,
            storage if storage is not None else create_token_storage(settings.token_storage),
        )

        self._http = HttpClient(
            Transport(
                base_url=settings.base_url,
                default_headers=dict(settings.default_headers),
                get_auth_token=self._session.get_access_token,
                refresh_token=self._session.refresh_access_token,
                timeout=settings.timeout,
                credentials=settings.credentials,
                retry=retry,
            )
        )
        self._rpc = RpcClient(self._http)

    async def _current_access_token(self) -> Optional[str]:
        return await self._session.current_access_token()

    async def __aenter__(self) -> MeroClient:
        await self.init()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def http(self) -> HttpClient:
        """HTTP client for the node's APIs, with token injection and refresh."""
        return self._http

    @property
    def rpc(self) -> RpcClient:
        """JSON-RPC execution of context methods over :attr:`http`."""
        return self._rpc

    @property
    def auth(self) -> AuthApi:
        """Raw auth endpoints."""
        return self._auth_api

    @property
    def session(self) -> AuthSession:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    @property
    def token(self) -> Optional[TokenData]:
        return self._session.token

    async def init(self) -> None:
        """Restore a stored token, if any."""
        await self._session.load()

    async def authenticate(
        self, username: Optional[str] = None, password: Optional[str] = None
    ) -> TokenData:
        """Log in with explicit credentials or the ones given at construction.

        Raises:
            AuthError: If no credentials are available or the node rejects them.
        """
        username = username if username is not None else self._username
        password = password if password is not None else self._password
        if username is None or password is None:
            raise AuthError("No credentials provided for authentication")
        return await self._session.authenticate(username, password)

    async def set_token(self, token: Optional[TokenData]) -> None:
        """Install a token obtained elsewhere, or clear it with ``None``."""
        await self._session.set_token(token)

    async def clear_token(self) -> None:
        await self._session.clear_token()

    def create_websocket(self, **overrides: Any) -> WebSocketClient:
        """Build a :class:`~meroclient.ws.client.WebSocketClient` for this node.

        Defaults come from ``settings.websocket``; keyword arguments
        override them (``auto_reconnect``, ``reconnect_delay``,
        ``max_reconnect_attempts``, ``request_timeout``, ``connect``).
        """
        options: dict[str, Any] = self._settings.websocket.model_dump()
        options.update(overrides)
        assert self._settings.base_url is not None
        return WebSocketClient(
            self._settings.base_url,
            get_auth_token=self._session.get_access_token,
            **options,
        )

    async def aclose(self) -> None:
        """Close both HTTP clients."""
        await self._http.aclose()
        await self._auth_http.aclose()
