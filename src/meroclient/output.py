"""Rendering for the ``mero`` CLI.

Response bodies, header tables and WebSocket events are the only things
written to stdout, so ``mero --json request GET /admin-api/contexts | jq``
always sees clean data.  Status lines, warnings, errors, next-step hints
and ``meroclient`` log records go to stderr.

The format is chosen per process: ``--json``, ``--plain``, or ``AUTO``,
which picks Rich on an interactive terminal and plain text when piped.
``NO_COLOR``, ``TERM=dumb`` and ``--no-color`` switch colour off.

:class:`OutputManager` is created once in :func:`~meroclient.app.main_callback`
and installed via :func:`set_output`; commands fetch it with
:func:`get_output`.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from meroclient.exceptions import HTTPError
from meroclient.models import WsEvent

_ERROR_BODY_PREVIEW = 500


class OutputFormat(str, Enum):
    """Supported output formats.

    ``AUTO`` resolves to ``RICH`` when stdout is an interactive TTY and colour
    is not disabled, or to ``PLAIN`` otherwise.
    """

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class OutputManager:
    """Writes data to stdout and diagnostics to stderr in one output format.

    Args:
        format: Requested format; ``AUTO`` is resolved once, here.
        no_color: Plain characters only, no ANSI styling.
        quiet: Drop ``info``, ``success`` and ``suggest`` lines.
        verbose: Show ``debug`` lines.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose

        self._format = _resolve_format(format, self._no_color)

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=(self._format == OutputFormat.RICH),
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    @property
    def is_quiet(self) -> bool:
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        return self._verbose

    @property
    def stderr_console(self) -> Console:
        """The Rich console bound to stderr (used for log records)."""
        return self._stderr

    # --- stdout ---

    def format_response(self, data: Any) -> None:
        """Render a parsed response body to stdout in the active format.

        ``bytes`` bodies are written raw to ``sys.stdout.buffer`` so binary
        downloads can be redirected to a file.
        """
        if data is None:
            return
        if isinstance(data, (bytes, bytearray)):
            sys.stdout.buffer.write(data)
            sys.stdout.flush()
            return
        if self._format == OutputFormat.JSON:
            self.print_data(_to_json(data))
        elif self._format == OutputFormat.PLAIN:
            self._print_plain(data)
        else:
            self._print_rich(data)

    def print_event(self, event: WsEvent) -> None:
        """Render one WebSocket event to stdout.

        JSON and plain formats emit one compact JSON object per line so the
        stream can be consumed with ``jq`` or ``while read``.
        """
        record = event.model_dump(mode="json")
        if self._format == OutputFormat.RICH:
            header = Text.assemble((event.context_id, "bold cyan"), " ", (event.type, "green"))
            self._stdout.print(header, highlight=False)
            self._print_rich(record["data"])
        else:
            self.print_data(json.dumps(record, ensure_ascii=False, default=str))

    def print_data(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)

    def print_table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        """Print rows under *headers*.

        JSON output is a list of ``{header: cell}`` objects; plain output is
        a tab-separated header line followed by one line per row.
        """
        if self._format == OutputFormat.RICH:
            table = Table(*headers, title=title, header_style="bold cyan", box=box.SIMPLE)
            for row in rows:
                table.add_row(*row)
            self._stdout.print(table)
            return
        if self._format == OutputFormat.JSON:
            self.print_data(_to_json([dict(zip(headers, row)) for row in rows]))
            return
        for line in [headers, *rows]:
            self.print_data("\t".join(line))

    # --- stderr ---

    def info(self, message: str) -> None:
        """Informational message.  Suppressed by ``--quiet``."""
        if not self._quiet:
            self._emit(message, message)

    def success(self, message: str) -> None:
        """Green success message.  Suppressed by ``--quiet``."""
        if not self._quiet:
            self._emit(message, f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        """Yellow warning.  NOT suppressed by ``--quiet``."""
        self._emit(f"Warning: {message}", f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        """Bold-red error.  Never suppressed."""
        self._emit(f"Error: {message}", f"[bold red]Error:[/bold red] {message}")

    def suggest(self, message: str) -> None:
        """Dimmed next-step suggestion.  Suppressed by ``--quiet``."""
        if not self._quiet:
            formatted = f"→ {message}"
            self._emit(formatted, f"[dim]{formatted}[/dim]")

    def debug(self, message: str) -> None:
        """Debug message, shown only with ``--verbose``."""
        if self._verbose:
            self._emit(f"[debug] {message}", f"[dim]\\[debug] {message}[/dim]")

    def http_error(self, exc: HTTPError) -> None:
        """Report an :class:`~meroclient.exceptions.HTTPError` with a body preview."""
        self.error(str(exc))
        self.info(f"URL: {exc.url}")
        if exc.auth_error is not None:
            self.info(f"x-auth-error: {exc.auth_error.value}")
        if exc.body_text:
            preview = exc.body_text[:_ERROR_BODY_PREVIEW]
            if len(exc.body_text) > _ERROR_BODY_PREVIEW:
                preview += "..."
            self.info(preview)

    def _emit(self, plain: str, markup: str) -> None:
        if self._no_color:
            print(plain, file=sys.stderr, flush=True)
        else:
            self._stderr.print(markup)

    def _print_plain(self, data: Any) -> None:
        # dict: key<TAB>value lines; list: one line per item, dict cells tab-joined
        if isinstance(data, dict):
            lines = [f"{key}\t{_plain_value(value)}" for key, value in data.items()]
        elif isinstance(data, list):
            lines = [
                "\t".join(map(_plain_value, item.values())) if isinstance(item, dict) else _plain_value(item)
                for item in data
            ]
        else:
            lines = [_plain_value(data)]
        for line in lines:
            self.print_data(line)

    def _print_rich(self, data: Any) -> None:
        if isinstance(data, str):
            self._stdout.print(data, markup=False, highlight=False)
            return
        syntax = Syntax(_to_json(data), "json", theme="monokai", word_wrap=True)
        self._stdout.print(syntax)


# --- helpers ---


def _to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def _plain_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _resolve_format(requested: OutputFormat, no_color: bool) -> OutputFormat:
    if requested != OutputFormat.AUTO:
        return requested
    if _is_tty() and not no_color:
        return OutputFormat.RICH
    return OutputFormat.PLAIN


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """True when ``NO_COLOR`` is set (any value) or ``TERM=dumb``."""
    if os.environ.get("NO_COLOR") is not None:
        return True
    return os.environ.get("TERM") == "dumb"


def configure_logging(output: OutputManager) -> None:
    """Send ``meroclient`` log records to stderr through Rich.

    ``--verbose`` lowers the threshold to ``DEBUG``; otherwise only warnings
    and errors from the library are shown.
    """
    logger = logging.getLogger("meroclient")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    handler = RichHandler(
        console=output.stderr_console,
        show_time=False,
        show_path=False,
        markup=False,
    )
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if output.is_verbose else logging.WARNING)


# --- process-wide instance ---

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the global :class:`OutputManager`, creating a default one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    """Install *output* as the global :class:`OutputManager`."""
    global _output
    _output = output


def reset_output() -> None:
    """Reset the global :class:`OutputManager`.  Used by the test suite."""
    global _output
    _output = None
