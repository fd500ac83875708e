"""Fixtures shared by the meroclient test suite.

* per-test reset of the process-wide :class:`~meroclient.output.OutputManager`
  and of the ``meroclient`` log handlers the CLI installs;
* ``isolated_config`` -- config and data directories under ``tmp_path``;
* ``recording_handler`` -- scripted ``httpx.MockTransport`` handlers;
* ``cli_runner`` -- Typer's ``CliRunner``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest
from rich.logging import RichHandler

from meroclient.output import reset_output

_MERO_ENV_VARS = ("MERO_BASE_URL", "MERO_AUTH_BASE_URL", "MERO_TIMEOUT", "MERO_TOKEN_STORAGE")


@pytest.fixture(autouse=True)
def _fresh_output_state():
    """Forget output state a test (or a CLI invocation inside it) installed.

    Both the OutputManager and the RichHandler hold the streams that were
    current when they were built; CliRunner closes those streams when the
    invocation ends.
    """
    yield
    reset_output()
    logger = logging.getLogger("meroclient")
    for handler in [h for h in logger.handlers if isinstance(h, RichHandler)]:
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG config and data homes at ``tmp_path/config`` and ``tmp_path/data``.

    Also clears every ``MERO_*`` variable and changes into ``tmp_path``.

    Returns:
        ``tmp_path``.
    """
    monkeypatch.setattr("meroclient.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in _MERO_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


class RecordingHandler:
    """MockTransport handler that records requests and replays responses.

    *responses* is either a single callable ``(request) -> Response`` or a
    list consumed in order (the last entry repeats).
    """

    def __init__(self, responses: Callable[[httpx.Request], httpx.Response] | list[httpx.Response]):
        self._responses = responses
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if callable(self._responses):
            return self._responses(request)
        index = min(len(self.requests) - 1, len(self._responses) - 1)
        return self._responses[index]

    @property
    def count(self) -> int:
        return len(self.requests)


@pytest.fixture
def recording_handler() -> Callable[..., RecordingHandler]:
    """Factory for :class:`RecordingHandler` instances."""
    return RecordingHandler


@pytest.fixture
def cli_runner():
    from typer.testing import CliRunner

    return CliRunner()
