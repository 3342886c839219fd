"""
Warden CLI - Rich Output Helpers

Small helpers so every command prints tables, verdicts and messages the
same way. Anything user-supplied (paths, SQL, command output) is escaped
before it reaches Rich markup.

Functions:
    print_table     - Print a formatted table
    print_status    - Print checks with pass/fail indicators
    print_json      - Print formatted JSON
    print_error     - Print error message
    print_success   - Print success message
    print_warning   - Print warning message
    print_info      - Print info message
    print_key_value - Print aligned key/value pairs
"""

from __future__ import annotations

import json
from typing import Any, Optional

from rich.console import Console
from rich.json import JSON
from rich.markup import escape
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

STATUS_PASS = "[green]PASS[/green]"
STATUS_FAIL = "[red]DENY[/red]"


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[str]],
    styles: Optional[list[str]] = None,
    show_header: bool = True,
) -> None:
    """
    Print a rich table.

    Args:
        title: Table title
        columns: Column headers
        rows: Table rows (list of lists), escaped before rendering
        styles: Optional column styles
        show_header: Whether to show column headers
    """
    table = Table(title=title, show_header=show_header)

    for i, col in enumerate(columns):
        style = styles[i] if styles and i < len(styles) else None
        table.add_column(col, style=style)

    for row in rows:
        padded_row = [escape(str(cell)) for cell in row] + [""] * (len(columns) - len(row))
        table.add_row(*padded_row[:len(columns)])

    console.print(table)


def print_status(
    checks: list[tuple[str, bool, str]],
    title: Optional[str] = None,
) -> None:
    """
    Print checks with pass/fail indicators.

    Args:
        checks: List of (name, passed, message) tuples
        title: Optional title for the status list
    """
    if title:
        console.print(f"[bold]{escape(title)}[/bold]")

    for name, passed, message in checks:
        icon = STATUS_PASS if passed else STATUS_FAIL
        status_color = "green" if passed else "red"
        console.print(
            f"  {icon} [cyan]{escape(name)}[/cyan]: "
            f"[{status_color}]{escape(message)}[/{status_color}]"
        )


def print_json(data: dict | list, indent: int = 2, highlight: bool = True) -> None:
    """Print *data* as JSON, highlighted unless told otherwise."""
    json_str = json.dumps(data, indent=indent, default=str)
    if highlight:
        console.print(JSON(json_str))
    else:
        console.print(json_str, markup=False, highlight=False)


def print_error(
    message: str,
    details: Optional[str] = None,
    hint: Optional[str] = None,
) -> None:
    """
    Print error message to stderr.

    Args:
        message: Error message
        details: Optional detailed error information
        hint: Optional hint for resolving the error
    """
    err_console.print(f"[bold red]Error:[/bold red] {escape(message)}")

    if details:
        err_console.print(f"[dim]{escape(details)}[/dim]")

    if hint:
        err_console.print(f"[yellow]Hint:[/yellow] {escape(hint)}")


def print_success(message: str, details: Optional[str] = None) -> None:
    console.print(f"[bold green]Success:[/bold green] {escape(message)}")
    if details:
        console.print(f"[dim]{escape(details)}[/dim]")


def print_warning(message: str, details: Optional[str] = None) -> None:
    console.print(f"[bold yellow]Warning:[/bold yellow] {escape(message)}")
    if details:
        console.print(f"[dim]{escape(details)}[/dim]")


def print_info(message: str, details: Optional[str] = None) -> None:
    console.print(f"[bold blue]Info:[/bold blue] {escape(message)}")
    if details:
        console.print(f"[dim]{escape(details)}[/dim]")


def print_key_value(
    items: list[tuple[str, Any]],
    title: Optional[str] = None,
    key_style: str = "cyan",
) -> None:
    """
    Print aligned key/value pairs.

    Args:
        items: (key, value) tuples
        title: Optional heading
        key_style: Rich style for the keys
    """
    if title:
        console.print(f"[bold]{escape(title)}[/bold]")

    width = max((len(key) for key, _ in items), default=0)
    for key, value in items:
        console.print(f"  [{key_style}]{escape(key.ljust(width))}[/{key_style}] : {escape(str(value))}")
