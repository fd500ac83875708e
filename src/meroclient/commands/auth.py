"""Auth commands -- obtain, inspect, and discard node tokens.

Provides the ``mero auth`` sub-command group.  Tokens are persisted by the
storage backend named in settings (``token_storage``, default ``file``), so
a ``login`` carries over to later ``request`` and ``ws`` invocations.

Typical workflow::

    mero auth login --username admin              # prompts for the password
    mero auth login -u admin -p env:MERO_PASSWORD # non-interactive
    mero auth status
    mero auth logout
"""

from __future__ import annotations

import time
from typing import Optional

import typer

from meroclient.commands import build_client, run
from meroclient.config import resolve_credential
from meroclient.exceptions import ConfigError
from meroclient.exit_codes import EXIT_AUTH_FAILURE, EXIT_INVALID_USAGE
from meroclient.models import TokenData
from meroclient.output import get_output

auth_app = typer.Typer(no_args_is_help=True)


@auth_app.command("login")
def auth_login(
    ctx: typer.Context,
    username: str = typer.Option(..., "--username", "-u", help="Node username."),
    password_source: str = typer.Option(
        "prompt",
        "--password",
        "-p",
        help="Password source: env:VAR, file:/path, or prompt.",
    ),
) -> None:
    """Log in with a username and password and store the token pair.

    Raises:
        typer.Exit: With code 2 if the password source cannot be resolved,
            or code 3 if the node rejects the credentials.

    Example::

        mero auth login -u admin -p file:~/.mero-password
    """
    output = get_output()
    try:
        password = resolve_credential(password_source)
    except ConfigError as exc:
        output.error(str(exc))
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None

    async def _login() -> tuple[TokenData, str]:
        async with build_client(ctx) as mero:
            token = await mero.authenticate(username, password)
            return token, mero.settings.token_storage

    token, storage_kind = run(_login())
    output.success(f"Logged in as {username}.")
    output.info(f"Token expires at {_format_expiry(token)}")
    if storage_kind == "memory":
        output.warning("token_storage is 'memory'; the token will not persist.")
        output.suggest("Persist tokens: mero config set token_storage file")


@auth_app.command("logout")
def auth_logout(ctx: typer.Context) -> None:
    """Forget the stored token pair.  Safe to run when already logged out."""

    async def _logout() -> None:
        async with build_client(ctx) as mero:
            await mero.clear_token()

    run(_logout())
    get_output().success("Logged out.")


@auth_app.command("status")
def auth_status(ctx: typer.Context) -> None:
    """Show whether a token is stored and when it expires.

    Raises:
        typer.Exit: With code 3 when no token is stored.
    """
    output = get_output()

    async def _status() -> tuple[str, Optional[TokenData]]:
        async with build_client(ctx) as mero:
            return mero.settings.base_url or "", mero.token

    base_url, token = run(_status())
    if token is None:
        output.error(f"Not logged in to {base_url}")
        output.suggest("Log in: mero auth login --username <name>")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)

    rows = [
        ["Node", base_url],
        ["Expires", _format_expiry(token)],
        ["Expired", "yes" if token.is_expired() else "no"],
        ["Refresh token", "present" if token.refresh_token else "missing"],
    ]
    output.print_table(["Field", "Value"], rows, title="Auth Status")


def _format_expiry(token: TokenData) -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S %Z", time.localtime(token.expires_at / 1000))
