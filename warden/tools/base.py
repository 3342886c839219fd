"""Tool definition types shared by built-in and plugin tools.

A tool is an LLM-callable function described by a ``ToolSpec`` (name,
description, JSON-schema input) and executed by an ``execute(input, config)``
callable that returns text, either directly or as an awaitable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Awaitable, Callable, Union

from warden.security.commands import CommandGate
from warden.security.paths import PathGate, PathPolicy

BUILTIN_TOOL_NAMES: frozenset[str] = frozenset({
    "get_container_status",
    "get_container_logs",
    "get_system_resources",
    "get_disk_usage",
    "get_network_info",
    "run_command",
    "read_file",
})

ToolExecute = Callable[[dict[str, Any], "ToolConfig"], Union[str, Awaitable[str]]]


@dataclass(frozen=True)
class ToolSpec:
    """LLM-facing description of a tool."""

    name: str
    description: str
    input_schema: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass(frozen=True)
class ToolDefinition:
    """A tool specification plus its handler."""

    spec: ToolSpec
    execute: ToolExecute

    @property
    def name(self) -> str:
        return self.spec.name


@dataclass
class ToolConfig:
    """Configuration passed to every tool execution.

    Attributes:
        allowed_dirs: Directories readable through the Path Gate.
        max_file_size_kb: Size cap for ``read_file``.
        max_log_lines: Default line count for log-tailing tools.
        command_timeout: Default timeout for the Command Gate.
        max_output_bytes: Per-stream output cap for the Command Gate.
    """

    allowed_dirs: list[str] = field(default_factory=list)
    max_file_size_kb: int = 100
    max_log_lines: int = 50
    command_timeout: float = 30.0
    max_output_bytes: int = 1024 * 1024

    @cached_property
    def path_gate(self) -> PathGate:
        return PathGate(PathPolicy.from_dirs(self.allowed_dirs))

    @cached_property
    def command_gate(self) -> CommandGate:
        return CommandGate(
            path_gate=self.path_gate,
            timeout=self.command_timeout,
            max_output_bytes=self.max_output_bytes,
        )

    @classmethod
    def from_settings(cls, settings: Any) -> ToolConfig:
        return cls(
            allowed_dirs=list(settings.ALLOWED_DIRS),
            max_file_size_kb=settings.MAX_FILE_SIZE_KB,
            max_log_lines=settings.MAX_LOG_LINES,
            command_timeout=settings.COMMAND_TIMEOUT,
            max_output_bytes=settings.COMMAND_MAX_OUTPUT_BYTES,
        )


@dataclass(frozen=True)
class ToolResult:
    """Result of one tool call, keyed by the LLM's tool-use id."""

    tool_use_id: str
    content: str
    is_error: bool = False
