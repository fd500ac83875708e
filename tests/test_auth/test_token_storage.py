"""Tests for meroclient.auth.storage -- in-memory and file token storage."""

from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from meroclient.auth.storage import (
    FileTokenStorage,
    InMemoryTokenStorage,
    create_token_storage,
)
from meroclient.exceptions import ConfigError, StorageError
from meroclient.models import TokenData


def _token(suffix: str = "1") -> TokenData:
    return TokenData(
        access_token=f"access-{suffix}",
        refresh_token=f"refresh-{suffix}",
        expires_at=1_900_000_000_000,
    )


class TestInMemoryTokenStorage:

    @pytest.mark.asyncio
    async def test_round_trip(self) -> None:
        storage = InMemoryTokenStorage()
        token = _token()

        await storage.set_token(token)

        assert await storage.get_token() == token

    @pytest.mark.asyncio
    async def test_empty_store_returns_none(self) -> None:
        assert await InMemoryTokenStorage().get_token() is None

    @pytest.mark.asyncio
    async def test_clear_twice(self) -> None:
        storage = InMemoryTokenStorage()
        await storage.set_token(_token())

        await storage.clear_token()
        await storage.clear_token()

        assert await storage.get_token() is None

    @pytest.mark.asyncio
    async def test_returns_copies(self) -> None:
        storage = InMemoryTokenStorage()
        token = _token()
        await storage.set_token(token)

        stored = await storage.get_token()
        assert stored is not None and stored is not token
        stored.access_token = "mutated"

        again = await storage.get_token()
        assert again is not None and again.access_token == "access-1"

    @pytest.mark.asyncio
    async def test_is_available(self) -> None:
        assert await InMemoryTokenStorage().is_available() is True


class TestFileTokenStorage:

    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path: Path) -> None:
        storage = FileTokenStorage(tmp_path / "token.json")
        token = _token()

        await storage.set_token(token)

        assert await storage.get_token() == token
        assert await FileTokenStorage(tmp_path / "token.json").get_token() == token

    @pytest.mark.asyncio
    async def test_overwrite(self, tmp_path: Path) -> None:
        storage = FileTokenStorage(dir=tmp_path, key="node.json")
        await storage.set_token(_token("1"))
        await storage.set_token(_token("2"))

        assert storage.path == tmp_path / "node.json"
        assert await storage.get_token() == _token("2")

    @pytest.mark.asyncio
    async def test_file_is_private(self, tmp_path: Path) -> None:
        storage = FileTokenStorage(tmp_path / "token.json")
        await storage.set_token(_token())

        mode = stat.S_IMODE(os.stat(storage.path).st_mode)
        assert mode == 0o600

    @pytest.mark.asyncio
    async def test_missing_file_returns_none(self, tmp_path: Path) -> None:
        assert await FileTokenStorage(tmp_path / "absent.json").get_token() is None

    @pytest.mark.asyncio
    async def test_corrupt_file_returns_none(self, tmp_path: Path) -> None:
        path = tmp_path / "token.json"
        path.write_text("{not json")
        assert await FileTokenStorage(path).get_token() is None

        path.write_text('{"access_token": "a"}')
        assert await FileTokenStorage(path).get_token() is None

    @pytest.mark.asyncio
    async def test_clear_twice(self, tmp_path: Path) -> None:
        storage = FileTokenStorage(tmp_path / "token.json")
        await storage.set_token(_token())

        await storage.clear_token()
        await storage.clear_token()

        assert not storage.path.exists()
        assert await storage.get_token() is None

    @pytest.mark.asyncio
    async def test_write_failure_raises_storage_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        storage = FileTokenStorage(blocker / "token.json")

        with pytest.raises(StorageError, match="Failed to store token"):
            await storage.set_token(_token())

    @pytest.mark.asyncio
    async def test_is_available(self, tmp_path: Path) -> None:
        assert await FileTokenStorage(tmp_path / "sub" / "token.json").is_available() is True

        blocker = tmp_path / "file"
        blocker.write_text("")
        assert await FileTokenStorage(blocker / "token.json").is_available() is False

    @pytest.mark.asyncio
    async def test_default_path_in_data_dir(self, isolated_config: Path) -> None:
        storage = FileTokenStorage()
        assert storage.path == isolated_config / "data" / "meroclient" / "tokens" / "token.json"


class TestCreateTokenStorage:

    def test_memory(self) -> None:
        assert isinstance(create_token_storage("memory"), InMemoryTokenStorage)

    def test_file_with_config(self, tmp_path: Path) -> None:
        storage = create_token_storage("file", path=tmp_path / "t.json")
        assert isinstance(storage, FileTokenStorage)
        assert storage.path == tmp_path / "t.json"

    def test_unknown_kind(self) -> None:
        with pytest.raises(ConfigError, match="Unknown token storage"):
            create_token_storage("keychain")
