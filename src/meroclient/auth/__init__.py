"""Authentication for meroclient: token storage, token exchange, and the session.

The main entry points are:

- :class:`TokenStorage` -- async persistence contract, with
  :class:`InMemoryTokenStorage` and :class:`FileTokenStorage` implementations
  and the :func:`create_token_storage` factory.
- :class:`AuthApi` -- ``/token`` and ``/refresh`` calls against the node.
- :class:`AuthSession` -- token lifecycle with preemptive and single-flight refresh.

Typical usage::

    from meroclient.auth import AuthApi, AuthSession, create_token_storage

    session = AuthSession(AuthApi(auth_http), create_token_storage("file"))
    await session.load()
    token = await session.get_valid_token()
"""

from meroclient.auth.api import AuthApi, token_from_grant
from meroclient.auth.session import AuthSession
from meroclient.auth.storage import (
    FileTokenStorage,
    InMemoryTokenStorage,
    TokenStorage,
    create_token_storage,
)

__all__ = [
    "AuthApi",
    "AuthSession",
    "FileTokenStorage",
    "InMemoryTokenStorage",
    "TokenStorage",
    "create_token_storage",
    "token_from_grant",
]
