"""Config commands -- view and modify user settings.

Provides the ``mero config`` sub-command group for reading and updating
the settings file (:class:`~meroclient.models.ClientSettings`) in the
meroclient config directory.  Settings there have the lowest precedence:
environment variables and global CLI flags override them.
"""

from __future__ import annotations

import typer

from meroclient.exceptions import ConfigError
from meroclient.exit_codes import EXIT_INVALID_USAGE
from meroclient.output import get_output

config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(
    resolved: bool = typer.Option(
        False, "--resolved", help="Apply environment overrides before printing."
    ),
) -> None:
    """Show current settings.

    Example::

        mero config show
        mero --json config show --resolved
    """
    from meroclient.config import load_settings, resolve_settings, settings_path

    output = get_output()
    try:
        settings = resolve_settings() if resolved else load_settings()
    except ConfigError as exc:
        output.error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    output.info(f"Settings file: {settings_path()}")
    output.format_response(settings.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Setting key (dot notation, e.g., 'retry.attempts')."
    ),
    value: str = typer.Argument(help="Value to set (parsed as JSON when possible)."),
) -> None:
    """Set a setting and save it.

    Raises:
        typer.Exit: With code 2 if the key is unknown or the value is invalid.

    Example::

        mero config set base_url http://localhost:2428
        mero config set retry.attempts 3
        mero config set websocket.auto_reconnect false
    """
    from meroclient.config import load_settings, save_settings, update_setting

    output = get_output()
    try:
        settings = update_setting(load_settings(), key, value)
    except ConfigError as exc:
        output.error(str(exc))
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None
    save_settings(settings)
    output.success(f"Set {key} = {value}")


@config_app.command("path")
def config_path() -> None:
    """Print the settings file path."""
    from meroclient.config import settings_path

    get_output().print_data(str(settings_path()))
