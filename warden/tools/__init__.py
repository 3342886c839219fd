"""LLM tools: built-in ``run_command``/``read_file`` and plugin tools."""

from warden.tools.base import (
    BUILTIN_TOOL_NAMES,
    ToolConfig,
    ToolDefinition,
    ToolResult,
    ToolSpec,
)
from warden.tools.builtin import (
    BUILTIN_TOOLS,
    READ_FILE,
    RUN_COMMAND,
    ReadFileInput,
    RunCommandInput,
    read_file,
    run_command,
)
from warden.tools.catalog import ToolCatalog, namespace_tool_name

__all__ = [
    "BUILTIN_TOOL_NAMES",
    "BUILTIN_TOOLS",
    "READ_FILE",
    "RUN_COMMAND",
    "ReadFileInput",
    "RunCommandInput",
    "ToolCatalog",
    "ToolConfig",
    "ToolDefinition",
    "ToolResult",
    "ToolSpec",
    "namespace_tool_name",
    "read_file",
    "run_command",
]
