"""The tool list the LLM sees, and the single entry point that runs tools.

Built-in tools keep their names; plugin tools are exposed as
``<plugin>:<tool>`` so they can never shadow a built-in. Every tool
output is scrubbed before it is returned.
"""

from __future__ import annotations

import inspect
import json
import logging
from typing import TYPE_CHECKING, Any, Iterable

from warden.security.scrub import scrub_sensitive_data
from warden.tools.base import ToolConfig, ToolDefinition, ToolResult, ToolSpec
from warden.tools.builtin import BUILTIN_TOOLS

if TYPE_CHECKING:
    from warden.plugins.registry import TaggedTool

logger = logging.getLogger(__name__)


def namespace_tool_name(tool_name: str, plugin_name: str) -> str:
    return f"{plugin_name}:{tool_name}"


class ToolCatalog:
    """Name-indexed view over built-in and plugin tools.

    Args:
        config: Configuration passed to every tool call.
        plugin_tools: Tagged tools from the plugin loader.
        disabled_tools: Names (plain or namespaced) hidden from the LLM
            and refused on execution.
    """

    def __init__(
        self,
        config: ToolConfig,
        plugin_tools: Iterable[TaggedTool] = (),
        disabled_tools: Iterable[str] = (),
    ):
        self._config = config
        self._disabled = frozenset(disabled_tools)
        self._tools: dict[str, ToolDefinition] = {}
        self.refresh(plugin_tools)

    def refresh(self, plugin_tools: Iterable[TaggedTool]) -> None:
        """Rebuild the name map, e.g. after plugins were (re)loaded."""
        tools: dict[str, ToolDefinition] = {tool.spec.name: tool for tool in BUILTIN_TOOLS}
        for tagged in plugin_tools:
            name = namespace_tool_name(tagged.definition.spec.name, tagged.plugin_name)
            spec = tagged.definition.spec
            tools[name] = ToolDefinition(
                spec=ToolSpec(name=name, description=spec.description, input_schema=spec.input_schema),
                execute=tagged.definition.execute,
            )
        # Swap in one assignment so readers never see a half-built map.
        self._tools = tools

    def names(self) -> list[str]:
        return list(self._tools)

    def specs(self) -> list[dict[str, Any]]:
        """Specifications of every enabled tool, in API shape."""
        return [
            tool.spec.to_dict()
            for name, tool in self._tools.items()
            if name not in self._disabled
        ]

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    async def execute(self, tool_use_id: str, name: str, input: dict[str, Any]) -> ToolResult:
        """Run tool *name* and return its scrubbed output.

        Unknown or disabled tools and handler exceptions become error
        results rather than exceptions.
        """
        tool = self._tools.get(name)
        if tool is None or name in self._disabled:
            logger.warning(f"Unknown tool requested: {name}")
            return ToolResult(tool_use_id, f'Error: Unknown tool "{name}"', is_error=True)

        logger.debug(f"Executing tool {name} with input {json.dumps(input, default=str)[:500]}")
        try:
            output = tool.execute(dict(input), self._config)
            if inspect.isawaitable(output):
                output = await output
        except Exception as e:
            logger.error(f"Tool execution failed: {name}: {e}")
            return ToolResult(tool_use_id, f"Error executing {name}: {e}", is_error=True)

        scrubbed = scrub_sensitive_data(str(output))
        logger.debug(f"Tool {name} complete ({len(scrubbed)} chars)")
        return ToolResult(tool_use_id, scrubbed)
