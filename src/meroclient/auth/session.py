"""Token lifecycle: authenticate, hand out valid tokens, refresh, clear.

:class:`AuthSession` is the only writer of the injected
:class:`~meroclient.auth.storage.TokenStorage`.  It keeps the current token in
memory so the per-request token getter stays cheap, refreshes preemptively
when the token is past its expiry, and coalesces concurrent refreshes into a
single in-flight exchange.

Refresh failures are classified before surfacing as
:class:`~meroclient.exceptions.AuthError`:

========================================  ===============
Failure                                   Stored tokens
========================================  ===============
Node says the token is "still valid"      kept
HTTP 4xx                                  cleared
HTTP 5xx                                  kept
Anything else                             cleared
========================================  ===============
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from meroclient.auth.api import AuthApi, token_from_grant
from meroclient.auth.storage import InMemoryTokenStorage, TokenStorage
from meroclient.exceptions import AuthError, HTTPError, MeroError
from meroclient.models import TokenData

logger = logging.getLogger(__name__)

_STILL_VALID_MARKERS = ("still valid", "token valid")


class AuthSession:
    """Owns the access/refresh token pair for one client.

    Args:
        api: Token exchange client.
        storage: Where tokens persist.  Defaults to in-memory storage.

    Example::

        session = AuthSession(AuthApi(auth_http), FileTokenStorage())
        await session.load()
        if not session.is_authenticated:
            await session.authenticate("admin", "secret")
    """

    def __init__(self, api: AuthApi, storage: Optional[TokenStorage] = None) -> None:
        self._api = api
        self._storage = storage if storage is not None else InMemoryTokenStorage()
        self._token: Optional[TokenData] = None
        self._refresh_task: Optional[asyncio.Task[TokenData]] = None

    @property
    def storage(self) -> TokenStorage:
        return self._storage

    @property
    def token(self) -> Optional[TokenData]:
        """The current token, without any expiry check."""
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    async def load(self) -> Optional[TokenData]:
        """Restore the token from storage, if one is stored."""
        stored = await self._storage.get_token()
        if stored is not None:
            self._token = stored
            logger.debug("Loaded stored token expiring at %d", stored.expires_at)
        return self._token

    async def authenticate(self, username: str, password: str) -> TokenData:
        """Obtain a fresh token pair with a username and password.

        Raises:
            AuthError: If the node rejected the request or answered oddly.
            StorageError: If the new token could not be persisted.
        """
        try:
            grant = await self._api.obtain_token(username, password)
        except HTTPError as exc:
            detail = exc.body_text or str(exc)
            raise AuthError(
                f"Authentication failed: HTTP {exc.status} {exc.status_text}: {detail}"
            ) from exc
        except MeroError as exc:
            raise AuthError(f"Authentication failed: {exc}") from exc
        token = token_from_grant(grant)
        await self.set_token(token)
        return token

    async def set_token(self, token: Optional[TokenData]) -> None:
        """Replace the token (e.g. after an external login), or clear it with ``None``."""
        self._token = token
        if token is None:
            await self._storage.clear_token()
        else:
            await self._storage.set_token(token)

    async def clear_token(self) -> None:
        """Forget the token in memory and in storage."""
        await self.set_token(None)

    async def get_valid_token(self) -> Optional[TokenData]:
        """Return a non-expired token, refreshing first if needed.

        Returns ``None`` when not authenticated.
        """
        if self._token is None:
            return None
        if self._token.is_expired():
            logger.debug("Access token expired; refreshing before use")
            return await self.refresh()
        return self._token

    async def get_access_token(self) -> Optional[str]:
        """Token getter for :class:`~meroclient.http.client.Transport`."""
        token = await self.get_valid_token()
        return token.access_token if token is not None else None

    async def current_access_token(self) -> Optional[str]:
        """Token getter that never refreshes, for the auth endpoints themselves."""
        return self._token.access_token if self._token is not None else None

    async def refresh(self) -> TokenData:
        """Exchange the refresh token for a new pair.

        Concurrent callers share one in-flight exchange and all see its
        outcome.

        Raises:
            AuthError: If the exchange failed (see the module docs for
                which failures clear the stored token).
            StorageError: If the new token could not be persisted.
        """
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._do_refresh())
            self._refresh_task.add_done_callback(self._clear_refresh_task)
        return await asyncio.shield(self._refresh_task)

    async def refresh_access_token(self) -> str:
        """Refresh callback for :class:`~meroclient.http.client.Transport`."""
        return (await self.refresh()).access_token

    def _clear_refresh_task(self, task: asyncio.Task[TokenData]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    async def _do_refresh(self) -> TokenData:
        current = self._token
        if current is None or not current.refresh_token:
            raise AuthError("No refresh token available")
        try:
            grant = await self._api.refresh(current)
        except MeroError as exc:
            raise await self._refresh_failure(exc) from exc
        token = token_from_grant(grant)
        await self.set_token(token)
        logger.debug("Access token refreshed; new expiry %d", token.expires_at)
        return token

    async def _refresh_failure(self, exc: MeroError) -> AuthError:
        body = (exc.body_text or "") if isinstance(exc, HTTPError) else str(exc)
        if any(marker in body for marker in _STILL_VALID_MARKERS):
            logger.warning("Refresh rejected because the access token is still valid")
            return AuthError("Token is valid but request failed. Check Authorization header.")
        status = exc.status if isinstance(exc, HTTPError) else None
        if status is not None and 400 <= status < 500:
            logger.warning("Refresh failed with HTTP %d; clearing tokens", status)
            await self.clear_token()
            return AuthError(f"Session expired. Please log in again. ({status})")
        if status is not None and status >= 500:
            logger.warning("Refresh failed with HTTP %d; keeping tokens", status)
            return AuthError(f"Server error during refresh. Please try again later. ({status})")
        logger.warning("Refresh failed (%s); clearing tokens", exc)
        await self.clear_token()
        return AuthError(f"Token refresh failed: {exc}")
