"""The ``mero`` command line: global options, sub-command registration, entry point.

Global options are parsed once by :func:`main_callback`, which installs the
process-wide :class:`~meroclient.output.OutputManager` and leaves the
connection overrides (``--base-url``, ``--timeout``) in ``ctx.obj`` for
:func:`~meroclient.commands.build_client`.

:func:`main` is the ``mero`` console script.  Library errors that escape a
command exit with their own code; Ctrl-C exits with 130; anything else
leaves a traceback under ``<data_dir>/logs`` and exits with 1.

See Also:
    :mod:`meroclient.commands`: The ``request``, ``head``, ``auth``, ``ws``
    and ``config`` commands.
"""

from __future__ import annotations

import signal
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import typer

from meroclient import __version__
from meroclient.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE

app = typer.Typer(
    name="mero",
    help="Call a Calimero node's HTTP APIs and follow its context events.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

from meroclient.commands.auth import auth_app  # noqa: E402
from meroclient.commands.config import config_app  # noqa: E402
from meroclient.commands.request import head_command, request_command  # noqa: E402
from meroclient.commands.ws import ws_app  # noqa: E402

app.command("request")(request_command)
app.command("head")(head_command)
app.add_typer(auth_app, name="auth", help="Log in, log out, and inspect the stored token.")
app.add_typer(ws_app, name="ws", help="Subscribe to context events over WebSocket.")
app.add_typer(config_app, name="config", help="Read and change persisted settings.")


def _print_version(value: bool) -> None:
    if value:
        typer.echo(f"mero {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", callback=_print_version, is_eager=True, help="Print the version."
    ),
    base_url: Optional[str] = typer.Option(
        None, "--base-url", help="Node address, e.g. http://localhost:2428 (beats MERO_BASE_URL)."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Deadline in seconds for each HTTP call (beats MERO_TIMEOUT)."
    ),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON on stdout."),
    plain_output: bool = typer.Option(False, "--plain", help="Emit tab-separated text on stdout."),
    no_color: bool = typer.Option(False, "--no-color", help="Never colour output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only report warnings and errors."),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug messages and library logs."
    ),
) -> None:
    """Set up output and connection overrides for the chosen sub-command.

    Args:
        ctx: Typer invocation context; ``ctx.obj`` receives ``base_url``,
            ``timeout`` and ``verbose``.
        version: Eager flag handled by :func:`_print_version`.
        base_url: Highest-precedence node address.
        timeout: Highest-precedence request deadline.
        json_output: Select :attr:`~meroclient.output.OutputFormat.JSON`.
        plain_output: Select :attr:`~meroclient.output.OutputFormat.PLAIN`.
        no_color: Strip colour and markup.
        quiet: Hide informational stderr lines.
        verbose: Show debug stderr lines and ``meroclient`` log records.
    """
    from meroclient.output import OutputFormat, OutputManager, configure_logging, set_output

    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN
    else:
        fmt = OutputFormat.AUTO

    output = OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose)
    set_output(output)
    configure_logging(output)

    ctx.obj = {"base_url": base_url, "timeout": timeout, "verbose": verbose}


def _exit_on_sigint() -> None:
    def _on_sigint(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nInterrupted.\n")
        sys.exit(EXIT_CANCELLED)

    signal.signal(signal.SIGINT, _on_sigint)


def _dump_traceback() -> Path:
    """Save the active traceback under ``<data_dir>/logs`` and return the file."""
    from meroclient.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / f"mero-{datetime.now():%Y%m%d-%H%M%S}.log"
    log_path.write_text(traceback.format_exc(), encoding="utf-8")
    return log_path


def main() -> None:
    """Console-script entry point for ``mero``.

    Raises:
        SystemExit: Always, with the command's exit code.
    """
    from meroclient.exceptions import MeroError
    from meroclient.output import get_output

    _exit_on_sigint()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nInterrupted.\n")
        sys.exit(EXIT_CANCELLED)
    except MeroError as exc:
        get_output().error(str(exc))
        sys.exit(exc.exit_code)
    except Exception:
        log_path = _dump_traceback()
        get_output().error(f"Unexpected failure; traceback saved to {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
