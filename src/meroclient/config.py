"""Where meroclient keeps its files, and how settings are resolved.

Settings live in one JSON document (:class:`~meroclient.models.ClientSettings`)
at ``<config_dir>/config.json``; file-backed tokens live under
``<data_dir>/tokens``.  On Linux and the BSDs both directories follow the
XDG Base Directory variables; elsewhere everything sits under
``~/.meroclient``.

Effective settings are layered by :func:`resolve_settings`: CLI flags over
``MERO_*`` environment variables over the settings file over model
defaults.  Files are replaced with :func:`atomic_write`, so a crash never
leaves a half-written settings or token file behind.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from meroclient.exceptions import ConfigError
from meroclient.models import ClientSettings

_APP_NAME = "meroclient"
_CONFIG_FILENAME = "config.json"

ENV_BASE_URL = "MERO_BASE_URL"
ENV_AUTH_BASE_URL = "MERO_AUTH_BASE_URL"
ENV_TIMEOUT = "MERO_TIMEOUT"
ENV_TOKEN_STORAGE = "MERO_TOKEN_STORAGE"


# --- Directories ---


def _is_xdg_platform() -> bool:
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _xdg_dir(env_var: str, *default: str) -> Path:
    root = os.environ.get(env_var) or Path.home().joinpath(*default)
    return Path(root) / _APP_NAME


def get_config_dir() -> Path:
    """Settings directory, created on first use.

    ``$XDG_CONFIG_HOME/meroclient`` (default ``~/.config/meroclient``) on
    XDG platforms, ``~/.meroclient`` otherwise.
    """
    if _is_xdg_platform():
        return _ensure_dir(_xdg_dir("XDG_CONFIG_HOME", ".config"))
    return _ensure_dir(Path.home() / f".{_APP_NAME}")


def get_data_dir() -> Path:
    """Data directory (tokens, crash logs), created on first use.

    ``$XDG_DATA_HOME/meroclient`` (default ``~/.local/share/meroclient``) on
    XDG platforms, ``~/.meroclient/data`` otherwise.
    """
    if _is_xdg_platform():
        return _ensure_dir(_xdg_dir("XDG_DATA_HOME", ".local", "share"))
    return _ensure_dir(Path.home() / f".{_APP_NAME}" / "data")


def get_tokens_dir() -> Path:
    """``<data_dir>/tokens``, the default home of file token storage."""
    return _ensure_dir(get_data_dir() / "tokens")


# --- Atomic replace ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Replace *path* with *data* in one rename.

    The content is written and fsynced to a hidden sibling first, then moved
    over *path* with :func:`os.replace`.  *mode* is applied to the sibling
    before anything is written, so token files are never readable by others.

    Raises:
        OSError: If writing or renaming fails.  The sibling is removed.
    """
    _ensure_dir(path.parent)
    tmp = tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    )
    try:
        with tmp:
            if mode is not None:
                os.chmod(tmp.name, mode)
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp.name, path)
    except BaseException:
        Path(tmp.name).unlink(missing_ok=True)
        raise


# --- Settings file ---


def settings_path() -> Path:
    """Path to the settings file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_settings() -> ClientSettings:
    """Load settings from the config directory.

    Returns:
        The deserialised :class:`~meroclient.models.ClientSettings`, or a
        default instance if the file does not exist.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = settings_path()
    if not path.is_file():
        return ClientSettings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return ClientSettings.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid settings at {path}: {exc}") from exc


def save_settings(settings: ClientSettings) -> None:
    """Persist *settings* atomically to the config directory."""
    data = settings.model_dump(mode="json")
    atomic_write(settings_path(), json.dumps(data, indent=2) + "\n")


def update_setting(settings: ClientSettings, key: str, value: str) -> ClientSettings:
    """Return a copy of *settings* with the dotted *key* set to *value*.

    Values are parsed as JSON when possible (``"5"`` becomes ``5``,
    ``"true"`` becomes ``True``) and used verbatim otherwise.

    Example::

        update_setting(settings, "retry.attempts", "3")

    Raises:
        ConfigError: If the key is unknown or the value fails validation.
    """
    try:
        parsed: Any = json.loads(value)
    except json.JSONDecodeError:
        parsed = value

    data = settings.model_dump(mode="json")
    node = data
    parts = key.split(".")
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            raise ConfigError(f"Unknown setting '{key}'")
        node = child
    if parts[-1] not in node:
        raise ConfigError(f"Unknown setting '{key}'")
    node[parts[-1]] = parsed

    try:
        return ClientSettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid value for '{key}': {exc}") from exc


# --- Precedence resolution ---


def resolve_settings(
    cli_base_url: Optional[str] = None,
    cli_timeout: Optional[float] = None,
) -> ClientSettings:
    """Resolve settings with the full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_base_url``, ``cli_timeout``)
        2. Environment variables (``MERO_BASE_URL``, ``MERO_AUTH_BASE_URL``,
           ``MERO_TIMEOUT``, ``MERO_TOKEN_STORAGE``)
        3. User config (``~/.config/meroclient/config.json``)
        4. Defaults

    Raises:
        ConfigError: If the settings file or an environment value is invalid.
    """
    settings = load_settings()
    overrides: dict[str, Any] = {}

    env_base_url = os.environ.get(ENV_BASE_URL)
    if env_base_url:
        overrides["base_url"] = env_base_url
    env_auth_url = os.environ.get(ENV_AUTH_BASE_URL)
    if env_auth_url:
        overrides["auth_base_url"] = env_auth_url
    env_timeout = os.environ.get(ENV_TIMEOUT)
    if env_timeout:
        try:
            overrides["timeout"] = float(env_timeout)
        except ValueError as exc:
            raise ConfigError(f"{ENV_TIMEOUT} must be a number, got '{env_timeout}'") from exc
    env_storage = os.environ.get(ENV_TOKEN_STORAGE)
    if env_storage:
        overrides["token_storage"] = env_storage

    if cli_base_url is not None:
        overrides["base_url"] = cli_base_url
    if cli_timeout is not None:
        overrides["timeout"] = cli_timeout

    if not overrides:
        return settings
    try:
        return ClientSettings.model_validate({**settings.model_dump(mode="json"), **overrides})
    except ValidationError as exc:
        raise ConfigError(f"Invalid settings override: {exc}") from exc


# --- Secrets ---


def resolve_credential(source: str) -> str:
    """Read a secret (e.g. the login password) from *source*.

    ``env:NAME`` reads an environment variable, ``file:PATH`` reads a file
    (``~`` expanded, surrounding whitespace stripped), and ``prompt`` asks on
    the terminal without echo.

    Raises:
        ConfigError: If the variable is unset, the file is missing or
            unreadable, stdin is not a terminal, or *source* has another form.
    """
    kind, _, target = source.partition(":")

    if kind == "env" and target:
        if target not in os.environ:
            raise ConfigError(f"Environment variable '{target}' is not set (source: {source})")
        return os.environ[target]

    if kind == "file" and target:
        path = Path(target).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path}")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError("Cannot prompt for a password: stdin is not a TTY")
        return getpass.getpass("Password: ")

    raise ConfigError(f"Unknown credential source format: {source}")
