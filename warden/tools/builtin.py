"""Built-in tools: ``run_command`` and ``read_file``.

Both tools are thin adapters over the gates. They never raise for a
policy decision; the LLM receives the refusal as text so it can adjust.
"""

from __future__ import annotations

import logging
import os
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from warden.security.commands import allowed_commands
from warden.security.errors import SandboxError
from warden.security.paths import check_content
from warden.security.scrub import scrub_sensitive_data
from warden.tools.base import ToolConfig, ToolDefinition, ToolSpec

logger = logging.getLogger(__name__)

DEFAULT_MAX_LINES = 200
MAX_LINES_CAP = 500


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------

class RunCommandInput(BaseModel):
    """Arguments of ``run_command``."""

    command: str = Field(..., min_length=1, description="Program name from the allowlist")
    args: list[str] = Field(default_factory=list, description="Argument vector")


class ReadFileInput(BaseModel):
    """Arguments of ``read_file``."""

    path: str = Field(..., min_length=1, description="Absolute path to the file")
    max_lines: int | None = Field(default=None, ge=1, description="Lines to return (max 500)")


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "input"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


# ---------------------------------------------------------------------------
# run_command
# ---------------------------------------------------------------------------

async def run_command(input: dict[str, Any], config: ToolConfig) -> str:
    try:
        params = RunCommandInput.model_validate(input)
    except ValidationError as e:
        return f"Error: invalid input ({_validation_message(e)})"

    try:
        result = await config.command_gate.execute(params.command, params.args)
    except SandboxError as e:
        return f"Security error: {e.message}"

    if result.timed_out:
        return f"Error: {result.stderr}"

    stdout = scrub_sensitive_data(result.stdout)
    note = "\n\n... [output truncated]" if result.truncated else ""
    if result.exit_code != 0:
        return (
            f"Command exited with code {result.exit_code}\n\n"
            f"STDOUT:\n{stdout}\n\n"
            f"STDERR:\n{scrub_sensitive_data(result.stderr)}{note}"
        )
    return (stdout or "(no output)") + note


RUN_COMMAND = ToolDefinition(
    spec=ToolSpec(
        name="run_command",
        description=(
            "Execute a read-only command for system diagnostics. "
            f"Available commands: {', '.join(allowed_commands())}. "
            "docker is limited to ps, inspect, logs, network, images, version, info; "
            "systemctl to status, show, list-units, list-unit-files, is-active, "
            "is-enabled, cat; journalctl is read-only. File commands (cat, ls, head, "
            "tail, grep) take absolute paths inside the allowed directories."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": 'The command to run (e.g. "ps", "systemctl", "journalctl")',
                },
                "args": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": (
                        'Command arguments as an array (e.g. ["aux"] for ps aux, '
                        '["-u", "nginx", "-n", "50"] for journalctl)'
                    ),
                },
            },
            "required": ["command"],
        },
    ),
    execute=run_command,
)


# ---------------------------------------------------------------------------
# read_file
# ---------------------------------------------------------------------------

def read_file(input: dict[str, Any], config: ToolConfig) -> str:
    try:
        params = ReadFileInput.model_validate(input)
    except ValidationError as e:
        return f"Error: invalid input ({_validation_message(e)})"

    if not config.allowed_dirs:
        return "Error: No allowed directories configured. Set WARDEN_ALLOWED_DIRS."

    checked = config.path_gate.check_path(params.path)
    if not checked.valid:
        if checked.error and checked.error.startswith("Access denied. File must be"):
            return f"Error: {checked.error}:\n" + "\n".join(config.path_gate.allowed_prefixes)
        return f"Error: {checked.error}"
    real_path = checked.real_path

    if not os.path.exists(real_path):
        return f"Error: File not found: {params.path}"
    if not os.path.isfile(real_path):
        return f"Error: Path is not a file: {params.path}"

    size_kb = os.path.getsize(real_path) / 1024
    if size_kb > config.max_file_size_kb:
        return (
            f"Error: File too large ({size_kb:.1f}KB). "
            f"Maximum allowed: {config.max_file_size_kb}KB"
        )

    try:
        content_check = check_content(real_path)
        if not content_check.valid:
            return f"Error: {content_check.error}"
        with open(real_path, "rb") as f:
            data = f.read()
    except OSError as e:
        logger.warning(f"read_file failed for {real_path}: {e}")
        return f"Error reading file: {e}"

    if b"\x00" in data:
        return "Error: File contains binary data and cannot be read as text."

    max_lines = min(params.max_lines or DEFAULT_MAX_LINES, MAX_LINES_CAP)
    lines = data.decode("utf-8", errors="replace").split("\n")
    scrubbed = scrub_sensitive_data("\n".join(lines[:max_lines]))
    if len(lines) > max_lines:
        return f"{scrubbed}\n\n... [truncated, showing {max_lines} of {len(lines)} lines]"
    return scrubbed


READ_FILE = ToolDefinition(
    spec=ToolSpec(
        name="read_file",
        description=(
            "Read a text file from allowed directories (ansible configs, "
            "docker-compose files, etc.). Only text files are supported. Sensitive "
            "data like passwords and tokens are automatically redacted."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Absolute path to the file"},
                "max_lines": {
                    "type": "number",
                    "description": "Maximum number of lines to read (default: 200, max: 500)",
                },
            },
            "required": ["path"],
        },
    ),
    execute=read_file,
)

BUILTIN_TOOLS: tuple[ToolDefinition, ...] = (RUN_COMMAND, READ_FILE)
