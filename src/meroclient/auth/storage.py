"""Token storage backends.

Every backend implements the small async :class:`TokenStorage` contract:

- :meth:`~TokenStorage.get_token` never raises; absence is ``None``.
- :meth:`~TokenStorage.set_token` raises :class:`~meroclient.exceptions.StorageError`
  when the token cannot be persisted.
- :meth:`~TokenStorage.clear_token` is idempotent.
- :meth:`~TokenStorage.is_available` is a capability probe that never raises.

:class:`FileTokenStorage` keeps one JSON file (by default
``~/.local/share/meroclient/tokens/token.json``).  Writes are atomic via
:func:`~meroclient.config.atomic_write` with ``0o600`` permissions so that
tokens are never world-readable, even momentarily.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional, Union

from meroclient.config import atomic_write, get_tokens_dir
from meroclient.exceptions import ConfigError, StorageError
from meroclient.models import TokenData

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_FILE = "token.json"


class TokenStorage(abc.ABC):
    """Abstract persistence contract for a single :class:`~meroclient.models.TokenData`."""

    @abc.abstractmethod
    async def get_token(self) -> Optional[TokenData]:
        """Return the stored token, or ``None`` if there is none."""

    @abc.abstractmethod
    async def set_token(self, token: TokenData) -> None:
        """Replace the stored token.

        Raises:
            StorageError: If the token could not be persisted.
        """

    @abc.abstractmethod
    async def clear_token(self) -> None:
        """Remove the stored token.  Clearing an empty store is a no-op."""

    @abc.abstractmethod
    async def is_available(self) -> bool:
        """Whether this backend can be used in the current environment."""


class InMemoryTokenStorage(TokenStorage):
    """Process-local storage.  Tokens vanish when the instance is dropped."""

    def __init__(self) -> None:
        self._token: Optional[TokenData] = None

    async def get_token(self) -> Optional[TokenData]:
        return self._token.model_copy() if self._token is not None else None

    async def set_token(self, token: TokenData) -> None:
        self._token = token.model_copy()

    async def clear_token(self) -> None:
        self._token = None

    async def is_available(self) -> bool:
        return True


class FileTokenStorage(TokenStorage):
    """JSON-file storage with atomic ``0o600`` writes.

    Args:
        path: Explicit file path.  Takes precedence over *dir* / *key*.
        dir: Directory holding the token file.  Defaults to
            :func:`~meroclient.config.get_tokens_dir`.
        key: File name inside *dir*.  Defaults to ``token.json``.

    Example::

        storage = FileTokenStorage(dir="/tmp/mero", key="node-1.json")
        await storage.set_token(token)
        assert await storage.get_token() == token
    """

    def __init__(
        self,
        path: Union[str, Path, None] = None,
        *,
        dir: Union[str, Path, None] = None,
        key: Optional[str] = None,
    ) -> None:
        if path is not None:
            self._path = Path(path).expanduser()
        else:
            base = Path(dir).expanduser() if dir is not None else get_tokens_dir()
            self._path = base / (key or DEFAULT_TOKEN_FILE)

    @property
    def path(self) -> Path:
        """The filesystem path of the token file."""
        return self._path

    async def get_token(self) -> Optional[TokenData]:
        return await asyncio.to_thread(self._read)

    async def set_token(self, token: TokenData) -> None:
        text = json.dumps(token.model_dump(mode="json"), indent=2) + "\n"
        try:
            await asyncio.to_thread(atomic_write, self._path, text, 0o600)
        except OSError as exc:
            raise StorageError(f"Failed to store token at {self._path}: {exc}") from exc

    async def clear_token(self) -> None:
        await asyncio.to_thread(self._unlink)

    async def is_available(self) -> bool:
        return await asyncio.to_thread(self._probe)

    def _read(self) -> Optional[TokenData]:
        if not self._path.is_file():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return TokenData.model_validate(data)
        except (json.JSONDecodeError, ValueError, OSError) as exc:
            logger.debug("Ignoring unreadable token file %s: %s", self._path, exc)
            return None

    def _unlink(self) -> None:
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to delete token file %s: %s", self._path, exc)

    def _probe(self) -> bool:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self._path.parent, os.W_OK)


def create_token_storage(kind: str = "memory", **config: Any) -> TokenStorage:
    """Build a storage backend by name.

    Args:
        kind: ``"memory"`` or ``"file"``.
        **config: Keyword arguments forwarded to the backend (``path``,
            ``dir``, ``key`` for files).

    Raises:
        ConfigError: If *kind* is not a known backend.
    """
    if kind == "memory":
        return InMemoryTokenStorage()
    if kind == "file":
        return FileTokenStorage(**config)
    raise ConfigError(f"Unknown token storage '{kind}' (expected 'memory' or 'file')")
