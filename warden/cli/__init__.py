"""
Warden - Command Line Interface

Operator tooling for the access-control sandbox: ask a gate for its
verdict without involving the chat assistant, run an allowlisted command
by hand, and inspect the plugin directory. Built with Typer for the
command surface and Rich for output.

Usage:
    $ warden --help
    $ warden check-path /var/log/nginx/access.log --allow /var/log
    $ warden check-command docker ps -a
    $ warden run df -h
    $ warden check-sql lift "SELECT * FROM plugin_lift_sets"
    $ warden plugins list --dir plugins.local

Sub-command Groups:
    plugins - Plugin discovery and validation

Gate commands exit 0 when the request is allowed and 1 when it is
denied, so they can be scripted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import typer

from warden import __version__
from warden.cli.output import (
    console,
    print_error,
    print_info,
    print_key_value,
    print_status,
    print_success,
    print_warning,
)
from warden.config import settings
from warden.context import load_context_from_directory
from warden.plugins.database import (
    TablePrefix,
    extract_table_names,
    split_statements,
    validate_plugin_sql,
)
from warden.security.commands import CommandGate, allowed_commands
from warden.security.errors import SandboxError
from warden.security.paths import PathGate, PathPolicy

# Exit code of ``warden run`` when the gate refuses the command.
EXIT_DENIED = 126
# Exit code of ``warden run`` when the command hits its timeout.
EXIT_TIMEOUT = 124

# Everything after PROGRAM belongs to PROGRAM, including its flags.
PASSTHROUGH = {
    "ignore_unknown_options": True,
    "allow_extra_args": True,
    "allow_interspersed_args": False,
}

app = typer.Typer(
    name="warden",
    help="Warden - access-control sandbox for a chat-driven ops assistant",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
)

plugins_app = typer.Typer(
    name="plugins",
    help="Plugin discovery and validation commands",
    no_args_is_help=True,
)

app.add_typer(plugins_app, name="plugins")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Warden version {__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    """Set verbose mode."""
    if value:
        logging.basicConfig(level=logging.DEBUG)


def _path_gate(allow: Optional[List[str]]) -> PathGate:
    dirs = allow if allow else settings.ALLOWED_DIRS
    return PathGate(PathPolicy.from_dirs(dirs))


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        help="Enable verbose output.",
    ),
) -> None:
    """
    Warden - access-control sandbox for a chat-driven ops assistant.

    Every command the assistant runs, every file it reads and every SQL
    statement a plugin issues passes through one of Warden's gates.
    """
    logging.basicConfig(level=settings.LOG_LEVEL)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Warden version {__version__}")


@app.command("check-path")
def check_path(
    path: str = typer.Argument(..., help="Path to check."),
    allow: Optional[List[str]] = typer.Option(
        None,
        "--allow",
        "-a",
        help="Allowed directory (repeatable). Defaults to WARDEN_ALLOWED_DIRS.",
    ),
) -> None:
    """
    Ask the Path Gate whether PATH may be read.

    Prints the resolved real path on success.
    """
    gate = _path_gate(allow)
    result = gate.check_path(path)
    if result.valid:
        print_success(f"Allowed: {result.real_path}")
        return

    print_error(
        result.error or "Access denied",
        details=f"reason: {result.reason.value}" if result.reason else None,
        hint=None if gate.allowed_prefixes else "No allowed directories are configured.",
    )
    raise typer.Exit(1)


@app.command("check-command", context_settings=PASSTHROUGH)
def check_command(
    program: str = typer.Argument(..., help="Program name from the allowlist."),
    args: Optional[List[str]] = typer.Argument(None, help="Arguments passed to PROGRAM."),
    allow: Optional[List[str]] = typer.Option(
        None,
        "--allow",
        "-a",
        help="Allowed directory for file arguments (repeatable, before PROGRAM).",
    ),
) -> None:
    """
    Ask the Command Gate whether PROGRAM ARGS... may run.

    Nothing is executed. Options for Warden go before PROGRAM; everything
    after it is passed through.
    """
    gate = CommandGate(path_gate=_path_gate(allow))
    try:
        argv = gate.check(program, args or [])
    except SandboxError as e:
        print_error(e.message, details=f"reason: {e.reason.value}")
        if not gate.is_command_allowed(program):
            print_info("Allowed commands", ", ".join(allowed_commands()))
        raise typer.Exit(1)

    rule = gate.policy[program]
    print_success(f"Allowed: {' '.join([rule.path, *argv])}")


@app.command("run", context_settings=PASSTHROUGH)
def run(
    program: str = typer.Argument(..., help="Program name from the allowlist."),
    args: Optional[List[str]] = typer.Argument(None, help="Arguments passed to PROGRAM."),
    allow: Optional[List[str]] = typer.Option(
        None,
        "--allow",
        "-a",
        help="Allowed directory for file arguments (repeatable, before PROGRAM).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Timeout in seconds. Defaults to WARDEN_COMMAND_TIMEOUT.",
    ),
) -> None:
    """
    Run an allowlisted command through the Command Gate.

    Exits with the command's own exit code, 126 when the gate refuses it
    and 124 when it times out.
    """
    gate = CommandGate(
        path_gate=_path_gate(allow),
        timeout=timeout if timeout is not None else settings.COMMAND_TIMEOUT,
        max_output_bytes=settings.COMMAND_MAX_OUTPUT_BYTES,
    )
    try:
        result = asyncio.run(gate.execute(program, args or []))
    except SandboxError as e:
        print_error(e.message, details=f"reason: {e.reason.value}")
        raise typer.Exit(EXIT_DENIED)

    if result.stdout:
        typer.echo(result.stdout, nl=False)
    if result.stderr:
        typer.echo(result.stderr, nl=False, err=True)
    if result.truncated:
        print_warning("Output was truncated")
    if result.timed_out:
        raise typer.Exit(EXIT_TIMEOUT)
    if result.exit_code != 0:
        raise typer.Exit(result.exit_code)


@app.command("check-sql")
def check_sql(
    plugin: str = typer.Argument(..., help="Plugin name the SQL would run as."),
    sql: str = typer.Argument(..., help="SQL text (one or more statements)."),
) -> None:
    """
    Ask the Data Isolation Gate whether PLUGIN may run SQL.

    Nothing is executed and no database is opened.
    """
    try:
        prefix = TablePrefix.for_plugin(plugin)
        checks = []
        for statement in split_statements(sql):
            validate_plugin_sql(statement, prefix)
            tables = sorted(extract_table_names(statement))
            checks.append((statement, True, ", ".join(tables) or "no tables"))
    except SandboxError as e:
        print_error(e.message, details=f"reason: {e.reason.value}")
        raise typer.Exit(1)

    print_status(checks, title=f"Plugin {plugin} (prefix {prefix.value})")
    print_success(f"All statements stay within {prefix.value}*")


@app.command()
def context(
    directory: Optional[str] = typer.Argument(
        None, help="Context directory. Defaults to WARDEN_CONTEXT_DIR."
    ),
    show: bool = typer.Option(
        False,
        "--show",
        "-s",
        help="Print the combined prompt section.",
    ),
) -> None:
    """
    Load a context directory the way the assistant would.

    Reports which files were picked up.
    """
    directory = directory or settings.CONTEXT_DIR
    if not directory:
        print_error("No context directory given", hint="Pass DIR or set WARDEN_CONTEXT_DIR.")
        raise typer.Exit(1)

    try:
        loaded = load_context_from_directory(directory)
    except SandboxError as e:
        print_error(e.message, details=f"reason: {e.reason.value}")
        raise typer.Exit(1)

    print_key_value(
        [
            ("Directory", loaded.directory),
            ("CLAUDE.md", "yes" if loaded.claude_md is not None else "no"),
            ("Context files", ", ".join(loaded.context_files) or "none"),
            ("Characters", len(loaded.combined)),
        ],
        title="Context",
    )
    if loaded.empty:
        print_warning("No context found")
    elif show:
        console.print()
        console.print(loaded.combined, markup=False, highlight=False)


def _register_subcommands() -> None:
    """Register all subcommand modules."""
    from warden.cli import plugins  # noqa: F401


_register_subcommands()

__all__ = [
    "app",
    "plugins_app",
    "console",
]
