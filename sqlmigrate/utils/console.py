"""
Rich console utilities for dual-mode CLI output.

Provides terminal output for humans and structured JSON for scripts.
All output functions adapt to the global output_mode setting.

Human Mode (--format text):
    - Rich spinners and colored tables
    - ANSI colors and Unicode symbols

Agent Mode (--format json):
    - A single JSON object on stdout, written by output_mode.flush_json()
    - No ANSI codes or spinners

Quiet Mode (--quiet):
    - Tab-separated values, no decorations

Examples:
    >>> from sqlmigrate.utils.console import output_mode, spinner, success
    >>> with spinner("Reading migrations..."):
    ...     plan = migrator.plan(5)
    >>> success("Database is at version 5")
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from rich import box
from rich.console import Console
from rich.table import Table

from sqlmigrate.utils.time import parse_timestamp

if TYPE_CHECKING:
    from sqlmigrate.migrator import Action, StatusReport

# Longest statement excerpt shown in plan tables
STATEMENT_PREVIEW_CHARS = 60


class OutputMode:
    """
    Output mode configuration for dual-mode CLI.

    Attributes:
        format: Output format - "text" (human) or "json" (agent)
        quiet: If True, suppress non-essential output
        _json_buffer: Internal buffer for JSON output in agent mode
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        """
        Initialize output mode.

        Raises:
            ValueError: If format_type is not "text" or "json"
        """
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """Add key-value pair to the JSON buffer (flushed by flush_json)."""
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """
        Output buffered JSON to stdout and clear buffer.

        Only outputs in agent mode. In human mode, this is a no-op.
        """
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()

    def reset(self, format_type: str = "text", quiet: bool = False) -> None:
        """Switch format and drop anything buffered by a previous command."""
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")
        self.format = format_type
        self.quiet = quiet
        self._json_buffer.clear()


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

# Global Rich console instances for human mode
console = Console()  # stdout
console_err = Console(stderr=True)  # stderr


@contextmanager
def spinner(message: str):
    """
    Show a spinner while the block runs (human mode only).

    Examples:
        >>> with spinner("Applying migrations..."):
        ...     migrator.migrate(5)
    """
    if output_mode.is_human() and not output_mode.quiet:
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


def success(message: str) -> None:
    """
    Print a success message.

    Human mode: Green checkmark with message
    Agent mode: Buffer to JSON
    Quiet mode: Silent
    """
    if output_mode.is_human():
        if not output_mode.quiet:
            console.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """
    Print an error message.

    Human mode: Red X with message to stderr (also in quiet mode)
    Agent mode: Buffer to JSON
    """
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    """
    Print a warning message.

    Human mode: Yellow warning symbol with message
    Agent mode: Appended to the "warnings" list in JSON
    """
    if output_mode.is_human():
        if not output_mode.quiet:
            console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        warnings = output_mode._json_buffer.setdefault("warnings", [])
        warnings.append(message)


def info(message: str) -> None:
    """
    Print an info message.

    Human mode: Blue info symbol with message
    Agent/Quiet mode: Silent
    """
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def _preview(statement: str) -> str:
    first_line = statement.strip().splitlines()[0] if statement.strip() else ""
    if len(first_line) > STATEMENT_PREVIEW_CHARS:
        return first_line[: STATEMENT_PREVIEW_CHARS - 3] + "..."
    if len(statement.strip().splitlines()) > 1:
        return first_line + " ..."
    return first_line


def print_plan_table(actions: list[Action], title: str = "Migration plan") -> None:
    """
    Print planned or applied actions.

    Human mode: Rich table (version, direction, statement preview)
    Quiet mode: One "version<TAB>direction" line per action
    Agent mode: No output (callers add actions to the JSON buffer)
    """
    if output_mode.is_agent():
        return

    if output_mode.quiet:
        for action in actions:
            print(f"{action.version}\t{action.direction.value}")
        return

    table = Table(title=title, box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("Version", justify="right", style="cyan")
    table.add_column("Direction")
    table.add_column("Statement", style="dim")

    for action in actions:
        arrow = (
            "[green]↑ forward[/green]"
            if action.direction.value == "forward"
            else "[yellow]↓ backward[/yellow]"
        )
        table.add_row(str(action.version), arrow, _preview(action.statement))

    console.print(table)


def _format_applied_at(applied_at: str | None) -> str:
    if not applied_at:
        return ""
    try:
        return parse_timestamp(applied_at).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        # Rows written by other tools are shown as stored
        return applied_at


def print_status_table(report: StatusReport) -> None:
    """
    Print every known version with its applied state.

    Human mode: Rich table plus current/latest summary
    Quiet mode: "version<TAB>applied|pending|unknown<TAB>applied_at" lines
    Agent mode: No output
    """
    if output_mode.is_agent():
        return

    if output_mode.quiet:
        for row in report.migrations:
            state = "unknown" if row.name is None else ("applied" if row.applied else "pending")
            print(f"{row.version}\t{state}\t{row.applied_at or ''}")
        return

    table = Table(title="Migrations", box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("Version", justify="right", style="cyan")
    table.add_column("Name")
    table.add_column("State")
    table.add_column("Applied at (UTC)", style="dim")

    for row in report.migrations:
        if row.name is None:
            state = "[red]applied, not in catalog[/red]"
        elif row.applied:
            state = "[green]✓ applied[/green]"
        else:
            state = "[yellow]pending[/yellow]"
        table.add_row(
            str(row.version), row.name or "-", state, _format_applied_at(row.applied_at)
        )

    console.print(table)
    console.print(
        f"Current version: [bold]{report.current_version}[/bold]  "
        f"Latest available: [bold]{report.latest_version}[/bold]"
    )
