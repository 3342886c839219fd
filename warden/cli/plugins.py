"""
Warden CLI - Plugin Commands

Commands for inspecting the plugin directory: load every plugin the way
the assistant does at startup and report the outcome, or validate a
single plugin file without running its hooks.

Usage:
    $ warden plugins list
    $ warden plugins list --dir plugins.local --format json
    $ warden plugins validate plugins.local/lift.py
"""

from __future__ import annotations

import asyncio
import importlib.util
import sys
from pathlib import Path
from typing import Optional

import typer

from warden.cli import plugins_app
from warden.cli.output import (
    console,
    print_error,
    print_json,
    print_success,
    print_table,
    print_warning,
)
from warden.config import settings
from warden.db import create_db_engine
from warden.plugins.database import SharedDatabase
from warden.plugins.loader import LoadReport, PluginLoader
from warden.plugins.sdk import tool_warnings, validate_plugin_export
from warden.security.commands import CommandGate
from warden.security.paths import PathGate, PathPolicy


async def _load_and_unload(loader: PluginLoader) -> tuple[LoadReport, list[dict]]:
    report = await loader.load_all()
    plugins = [p.to_dict() for p in loader.registry.all()]
    await loader.unload_all()
    return report, plugins


@plugins_app.command("list")
def list_plugins(
    plugins_dir: Optional[Path] = typer.Option(
        None,
        "--dir",
        "-d",
        help="Plugin directory. Defaults to WARDEN_PLUGINS_DIR.",
    ),
    database_url: Optional[str] = typer.Option(
        None,
        "--database",
        help="Database URL plugins initialise against. Defaults to WARDEN_DATABASE_URL.",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format: table, json.",
    ),
) -> None:
    """
    Load every plugin and show which ones made it.

    Each plugin's init hook runs under the configured timeout and its
    destroy hook runs before the command exits. Exits 1 if any plugin was
    rejected.
    """
    directory = plugins_dir or Path(settings.PLUGINS_DIR)
    path_gate = PathGate(PathPolicy.from_dirs(settings.ALLOWED_DIRS))
    database = SharedDatabase(create_db_engine(database_url or settings.DATABASE_URL))
    loader = PluginLoader(
        directory,
        database,
        commands=CommandGate(
            path_gate=path_gate,
            timeout=settings.COMMAND_TIMEOUT,
            max_output_bytes=settings.COMMAND_MAX_OUTPUT_BYTES,
        ),
        paths=path_gate,
        init_timeout=settings.PLUGIN_INIT_TIMEOUT,
        destroy_timeout=settings.PLUGIN_DESTROY_TIMEOUT,
    )
    try:
        report, plugins = asyncio.run(_load_and_unload(loader))
    finally:
        database.close()

    if format == "json":
        print_json({
            "directory": str(directory),
            "loaded": plugins,
            "rejected": [
                {
                    "source": r.source,
                    "name": r.name,
                    "reason": r.reason.value,
                    "message": r.message,
                    "errors": list(r.errors),
                }
                for r in report.rejected
            ],
        })
    else:
        if plugins:
            print_table(
                f"Plugins in {directory}",
                ["Name", "Version", "Prefix", "Tools"],
                [
                    [p["name"], p["version"], p["prefix"], ", ".join(p["tools"]) or "-"]
                    for p in plugins
                ],
                styles=["cyan", None, "dim", None],
            )
        for rejected in report.rejected:
            print_warning(
                f"Rejected {rejected.name} ({rejected.reason.value}): {rejected.message}",
                details="\n".join(rejected.errors) or None,
            )
        console.print()
        console.print(
            f"[dim]Total: {len(report.loaded)} loaded, {len(report.rejected)} rejected[/dim]"
        )

    if not report.ok:
        raise typer.Exit(1)


@plugins_app.command("validate")
def validate_plugin(
    file: Path = typer.Argument(..., help="Plugin module to validate."),
) -> None:
    """
    Import FILE and check its plugin export without running any hooks.
    """
    if not file.is_file():
        print_error(f"Not a file: {file}")
        raise typer.Exit(1)

    module_name = f"warden_validate_{file.stem}"
    try:
        spec = importlib.util.spec_from_file_location(module_name, file)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot create a module spec for {file}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)
    except (Exception, SystemExit) as e:
        print_error(f"Failed to import {file.name}: {e!r}")
        raise typer.Exit(1)
    finally:
        sys.modules.pop(module_name, None)

    export = getattr(module, "plugin", None)
    if export is None:
        print_error(f"{file.name} has no 'plugin' export")
        raise typer.Exit(1)

    errors = validate_plugin_export(export)
    if errors:
        print_error(f"{file.name} failed validation", details="\n".join(errors))
        raise typer.Exit(1)

    for warning in tool_warnings(export):
        print_warning(warning)
    print_success(f"{file.name} is a valid plugin")
