"""Built-in CLI sub-commands for meroclient.

This package groups the Typer sub-command modules that form the ``mero``
command tree:

* :mod:`~meroclient.commands.request` -- ``request`` and ``head`` against
  the node's HTTP APIs.
* :mod:`~meroclient.commands.auth` -- log in, log out, inspect the stored
  token.
* :mod:`~meroclient.commands.ws` -- subscribe to context events.
* :mod:`~meroclient.commands.config` -- view and modify user settings.

Every command resolves settings the same way and runs its coroutine through
:func:`run`, which turns :class:`~meroclient.exceptions.MeroError` into a
diagnostic on stderr and the error's exit code.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, Optional, TypeVar

import typer

from meroclient.auth.storage import TokenStorage
from meroclient.config import resolve_settings
from meroclient.exceptions import HTTPError, MeroError
from meroclient.output import get_output
from meroclient.sdk import MeroClient

T = TypeVar("T")


def build_client(ctx: typer.Context, storage: Optional[TokenStorage] = None) -> MeroClient:
    """Create a :class:`~meroclient.sdk.MeroClient` from the global CLI options."""
    obj = ctx.obj or {}
    settings = resolve_settings(
        cli_base_url=obj.get("base_url"),
        cli_timeout=obj.get("timeout"),
    )
    return MeroClient(settings, storage=storage)


def run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro* to completion, reporting library errors the CLI way.

    Raises:
        typer.Exit: With the error's ``exit_code`` when a
            :class:`~meroclient.exceptions.MeroError` escapes.
    """
    output = get_output()
    try:
        return asyncio.run(coro)
    except HTTPError as exc:
        output.http_error(exc)
        raise typer.Exit(code=exc.exit_code) from None
    except MeroError as exc:
        output.error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
