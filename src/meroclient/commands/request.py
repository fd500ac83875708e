"""Request commands -- call the node's HTTP APIs directly.

``mero request`` sends an arbitrary request through the full transport
pipeline (token injection, refresh on 401, timeout, retry) and prints the
parsed body to stdout.  ``mero head`` prints a resource's status and
headers without downloading it.

Example::

    mero request GET /admin-api/contexts
    mero request POST /jsonrpc --data @call.json -H "x-trace: 1"
    mero --json head /admin-api/health
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import typer

from meroclient.commands import build_client, run
from meroclient.exit_codes import EXIT_INVALID_USAGE
from meroclient.http.client import RequestOptions
from meroclient.http.response import ParseMode
from meroclient.http.retry import RetryPolicy
from meroclient.models import HeadResponse
from meroclient.output import get_output

_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


def parse_header(raw: str) -> tuple[str, str]:
    """Split a ``Key: Value`` (or ``Key=Value``) header argument.

    Raises:
        typer.BadParameter: If *raw* has no separator or an empty key.
    """
    for separator in (":", "="):
        if separator in raw:
            key, value = raw.split(separator, 1)
            key = key.strip()
            if key:
                return key, value.strip()
    raise typer.BadParameter(f"Expected 'Key: Value', got: {raw}")


def parse_data(raw: Optional[str]) -> Any:
    """Turn the ``--data`` argument into a request body.

    ``@path`` reads the file as bytes, valid JSON is sent as JSON, and
    anything else is sent as a text body.
    """
    if raw is None:
        return None
    if raw.startswith("@"):
        path = Path(raw[1:]).expanduser()
        try:
            return path.read_bytes()
        except OSError as exc:
            raise typer.BadParameter(f"Cannot read {path}: {exc}") from None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def request_command(
    ctx: typer.Context,
    method: str = typer.Argument(help="HTTP method (GET, POST, PUT, PATCH, DELETE)."),
    path: str = typer.Argument(help="Path relative to the base URL, or an absolute URL."),
    data: Optional[str] = typer.Option(
        None, "--data", "-d", help="Request body: JSON, text, or @file."
    ),
    header: Optional[list[str]] = typer.Option(
        None, "--header", "-H", help="Extra header 'Key: Value' (repeatable)."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", "-t", help="Per-request timeout in seconds."
    ),
    retries: Optional[int] = typer.Option(
        None, "--retries", "-r", min=1, help="Total attempts for retryable failures."
    ),
    parse: Optional[ParseMode] = typer.Option(
        None, "--parse", help="Force body parsing (json, text, bytes)."
    ),
) -> None:
    """Send a request and print the response body.

    Raises:
        typer.Exit: With code 2 for an unknown method or ``--parse response``,
            otherwise with the library error's exit code.
    """
    output = get_output()
    verb = method.upper()
    if verb not in _METHODS:
        output.error(f"Unsupported method: {method}")
        raise typer.Exit(code=EXIT_INVALID_USAGE)
    if parse == ParseMode.RESPONSE:
        output.error("--parse response is not available from the CLI")
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    options = RequestOptions(
        method=verb,
        headers=dict(parse_header(h) for h in header or []),
        body=parse_data(data),
        parse=parse,
        timeout=timeout,
        retry=RetryPolicy(attempts=retries) if retries is not None else None,
    )

    async def _send() -> Any:
        async with build_client(ctx) as mero:
            output.debug(f"{verb} {path}")
            return await mero.http.request(path, options)

    output.format_response(run(_send()))


def head_command(
    ctx: typer.Context,
    path: str = typer.Argument(help="Path relative to the base URL, or an absolute URL."),
) -> None:
    """Print the status and headers of a ``HEAD`` request."""
    output = get_output()

    async def _head() -> HeadResponse:
        async with build_client(ctx) as mero:
            return await mero.http.head(path)

    response = run(_head())
    output.info(f"HTTP {response.status}")
    output.print_table(
        ["Header", "Value"],
        [[key, value] for key, value in response.headers.items()],
        title=path,
    )
