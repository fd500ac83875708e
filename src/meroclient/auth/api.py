"""Token exchange against the node's auth endpoints.

The node serves auth either embedded (same origin as the admin API, under an
``/auth`` prefix) or proxied (a separate service at its own base URL, no
prefix).  :class:`AuthApi` hides that difference.

Responses use the ``{data, error}`` envelope; :func:`~meroclient.http.response.unwrap`
extracts the payload.
"""

from __future__ import annotations

import base64
import json
import time
from typing import Any, Optional

from pydantic import ValidationError

from meroclient.exceptions import ResponseParseError
from meroclient.http.client import HttpClient
from meroclient.http.response import unwrap
from meroclient.models import TokenData, TokenGrant

CLIENT_NAME = "meroclient"
DEFAULT_EXPIRES_IN = 3600


class AuthApi:
    """Thin client for ``/token``, ``/refresh`` and ``/providers``.

    Args:
        http: Client bound to the auth base URL.  It must not be configured
            with a refresh callback, so a failing refresh endpoint cannot
            recurse into itself.
        embedded: Prefix paths with ``/auth`` (auth served by the node itself).
    """

    def __init__(self, http: HttpClient, embedded: bool = True) -> None:
        self._http = http
        self._embedded = embedded

    @property
    def embedded(self) -> bool:
        return self._embedded

    def _path(self, path: str) -> str:
        return f"/auth{path}" if self._embedded else path

    async def obtain_token(
        self,
        username: str,
        password: str,
        permissions: Optional[list[str]] = None,
    ) -> TokenGrant:
        """Exchange a username and password for a token pair.

        Raises:
            HTTPError: If the node rejects the credentials.
            EnvelopeError: If the envelope carries an error or no data.
            ResponseParseError: If the payload is not a token grant.
        """
        body = {
            "auth_method": "user_password",
            "public_key": username,
            "client_name": CLIENT_NAME,
            "permissions": permissions if permissions is not None else ["admin"],
            "timestamp": int(time.time()),
            "provider_data": {"username": username, "password": password},
        }
        return _grant(await self._http.post(self._path("/token"), body))

    async def refresh(self, token: TokenData) -> TokenGrant:
        """Exchange the current pair for a new one.  The node requires both tokens."""
        body = {"access_token": token.access_token, "refresh_token": token.refresh_token}
        return _grant(await self._http.post(self._path("/refresh"), body))

    async def get_providers(self) -> Any:
        """Return the auth providers the node advertises."""
        return unwrap(await self._http.get(self._path("/providers")))


def _grant(envelope: Any) -> TokenGrant:
    try:
        return TokenGrant.model_validate(unwrap(envelope))
    except ValidationError as exc:
        raise ResponseParseError(f"Unexpected token response: {exc}") from exc


def _jwt_expiry_ms(access_token: str) -> Optional[int]:
    """Read the ``exp`` claim (seconds) from an unverified JWT, as epoch ms."""
    parts = access_token.split(".")
    if len(parts) < 2:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment))
        return int(claims["exp"] * 1000)
    except (ValueError, TypeError, KeyError):
        return None


def token_from_grant(grant: TokenGrant, now: Optional[float] = None) -> TokenData:
    """Build :class:`~meroclient.models.TokenData` from a token grant.

    The expiry comes from the access token's JWT ``exp`` claim when it can
    be decoded, otherwise from ``expires_in`` (default one hour).
    """
    expires_at = _jwt_expiry_ms(grant.access_token)
    if expires_at is None:
        if now is None:
            now = time.time()
        expires_at = int((now + (grant.expires_in or DEFAULT_EXPIRES_IN)) * 1000)
    return TokenData(
        access_token=grant.access_token,
        refresh_token=grant.refresh_token,
        expires_at=expires_at,
    )
