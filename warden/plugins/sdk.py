"""
Plugin SDK for Warden.

A plugin is a Python module in the plugin directory that exposes a
module-level ``plugin`` object. That object may be a dict or any object
with attributes; either way it is parsed into a ``PluginRecord`` and
validated in full before any of its code runs.

Plugin shape:
    name (str):          unique identifier, letters/digits/underscores
    version (str):       version string, e.g. "1.2.0"
    description (str):   optional help text
    tools (list):        optional tool definitions, each
                         ``{"spec": {...}, "execute": callable}``
    init (callable):     optional ``init(ctx)`` hook, sync or async
    destroy (callable):  optional ``destroy(ctx)`` hook, sync or async
    help (list):         optional ``{"command", "description", "group"}``
    min_host_version:    optional minimum Warden version

Example - a minimal plugin module (``plugins.local/lift.py``):
    async def init(ctx):
        ctx.db.exec(
            "CREATE TABLE IF NOT EXISTS plugin_lift_sets "
            "(id INTEGER PRIMARY KEY, kg REAL NOT NULL)"
        )

    def one_rep_max(input, config):
        w, reps = float(input["weight"]), int(input["reps"])
        return f"{w * (1 + reps / 30):.1f} kg"

    plugin = {
        "name": "lift",
        "version": "1.0.0",
        "init": init,
        "tools": [{
            "spec": {
                "name": "one_rep_max",
                "description": "Estimate a one-rep max with the Epley formula",
                "input_schema": {
                    "type": "object",
                    "properties": {
                        "weight": {"type": "number"},
                        "reps": {"type": "integer"},
                    },
                },
            },
            "execute": one_rep_max,
        }],
    }

Tools are exposed to the LLM as ``<plugin>:<tool>``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping

from packaging import version as pkg_version

from warden.tools.base import BUILTIN_TOOL_NAMES, ToolDefinition, ToolSpec

if TYPE_CHECKING:
    from warden.plugins.database import PluginDatabase
    from warden.security.commands import CommandGate
    from warden.security.paths import PathGate

TOOL_NAME_RE = re.compile(r"^[a-z][a-z0-9_]{2,49}$")
PLUGIN_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")

_MISSING = object()


@dataclass(frozen=True)
class PluginHelpEntry:
    """A help line contributed by a plugin."""

    command: str
    description: str
    group: str | None = None


@dataclass(frozen=True)
class PluginRecord:
    """Typed, validated view of a plugin module's ``plugin`` export.

    Attributes:
        name: Unique plugin identifier.
        version: Plugin version string.
        description: Optional human-readable description.
        tools: Tool definitions, in declaration order.
        init: Optional init hook.
        destroy: Optional destroy hook.
        help: Help entries for the operator CLI and chat help.
        min_host_version: Oldest Warden version the plugin supports.
    """

    name: str
    version: str
    description: str | None = None
    tools: tuple[ToolDefinition, ...] = ()
    init: Callable[..., Any] | None = None
    destroy: Callable[..., Any] | None = None
    help: tuple[PluginHelpEntry, ...] = ()
    min_host_version: str | None = None

    @property
    def label(self) -> str:
        return f"{self.name}@{self.version}"

    def is_compatible(self, host_version: str) -> bool:
        """Check ``min_host_version`` against *host_version*.

        Unparseable versions are treated as compatible.
        """
        if not self.min_host_version:
            return True
        try:
            return pkg_version.parse(host_version) >= pkg_version.parse(self.min_host_version)
        except pkg_version.InvalidVersion:
            return True


@dataclass
class PluginContext:
    """Resources handed to ``init`` and ``destroy`` hooks.

    Attributes:
        db: Database handle scoped to ``plugin_<name>_`` tables.
        name: The plugin's name.
        version: The plugin's version.
        commands: Shared Command Gate.
        paths: Shared Path Gate.
        logger: Logger named ``warden.plugins.<name>``.
    """

    db: PluginDatabase
    name: str
    version: str
    commands: CommandGate | None = None
    paths: PathGate | None = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("warden.plugins"))


@dataclass
class ToolValidationResult:
    """Errors make a tool (and its plugin) invalid; warnings do not."""

    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def extend(self, other: ToolValidationResult, prefix: str = "") -> None:
        self.errors.extend(f"{prefix}{e}" for e in other.errors)
        self.warnings.extend(f"{prefix}{w}" for w in other.warnings)
        self.valid = not self.errors


# ---------------------------------------------------------------------------
# Field access (dict or attribute object)
# ---------------------------------------------------------------------------

def _get(obj: Any, key: str, default: Any = _MISSING) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _is_record_like(obj: Any) -> bool:
    return obj is not None and not isinstance(obj, (str, bytes, int, float, bool, list, tuple))


# ---------------------------------------------------------------------------
# Tool validation
# ---------------------------------------------------------------------------

def is_builtin_tool_name(name: str) -> bool:
    return name in BUILTIN_TOOL_NAMES


def validate_tool_name(name: Any) -> ToolValidationResult:
    result = ToolValidationResult()
    if not isinstance(name, str):
        result.errors.append("Tool name must be a string")
    elif not name:
        result.errors.append("Tool name cannot be empty")
    else:
        if len(name) < 3:
            result.errors.append("Tool name must be at least 3 characters")
        if len(name) > 50:
            result.errors.append("Tool name must be at most 50 characters")
        if not TOOL_NAME_RE.match(name):
            result.errors.append(
                "Tool name must be lowercase, start with a letter, and contain "
                "only letters, numbers, and underscores"
            )
        if is_builtin_tool_name(name):
            result.errors.append(f'Tool name "{name}" conflicts with built-in tool')
    result.valid = not result.errors
    return result


def validate_tool_spec(spec: Any) -> ToolValidationResult:
    result = ToolValidationResult()
    if not _is_record_like(spec):
        result.errors.append("Tool spec must be an object")
        result.valid = False
        return result

    result.extend(validate_tool_name(_get(spec, "name", None)))

    description = _get(spec, "description", None)
    if not isinstance(description, str):
        result.errors.append("Tool spec must have a description string")
    elif not description:
        result.errors.append("Tool description cannot be empty")
    elif len(description) < 10:
        result.warnings.append("Tool description is very short, consider adding more detail")

    schema = _get(spec, "input_schema", None)
    if not isinstance(schema, Mapping):
        result.errors.append("Tool spec must have an input_schema object")
    else:
        if schema.get("type") != "object":
            result.errors.append('Tool input_schema.type must be "object"')
        if not isinstance(schema.get("properties"), Mapping):
            result.errors.append("Tool input_schema must have a properties object")

    result.valid = not result.errors
    return result


def validate_tool_definition(tool: Any) -> ToolValidationResult:
    result = ToolValidationResult()
    if not _is_record_like(tool):
        result.errors.append("Tool definition must be an object")
        result.valid = False
        return result
    result.extend(validate_tool_spec(_get(tool, "spec", None)))
    if not callable(_get(tool, "execute", None)):
        result.errors.append("Tool definition must have an execute function")
    result.valid = not result.errors
    return result


def validate_plugin_tools(tools: Any, plugin_name: str) -> ToolValidationResult:
    """Validate every tool of a plugin, including duplicate names.

    Errors are prefixed with the tool's index (``Tool 2: ...``).
    """
    result = ToolValidationResult()
    if not isinstance(tools, (list, tuple)):
        result.errors.append("Plugin tools must be a list")
        result.valid = False
        return result

    seen: set[str] = set()
    for i, tool in enumerate(tools):
        result.extend(validate_tool_definition(tool), prefix=f"Tool {i}: ")
        spec = _get(tool, "spec", None) if _is_record_like(tool) else None
        name = _get(spec, "name", None) if _is_record_like(spec) else None
        if isinstance(name, str):
            if name in seen:
                result.errors.append(f'Duplicate tool name "{name}" in plugin "{plugin_name}"')
            seen.add(name)

    result.valid = not result.errors
    return result


# ---------------------------------------------------------------------------
# Record validation and parsing
# ---------------------------------------------------------------------------

def validate_plugin_export(export: Any) -> list[str]:
    """Check the shape of a ``plugin`` export.

    Returns:
        A list of errors; empty when the export is well-formed.
    """
    if not _is_record_like(export):
        return ["Plugin export must be a dict or an object"]

    errors: list[str] = []
    name = _get(export, "name", None)
    if not isinstance(name, str) or not name.strip():
        errors.append("Plugin name must be a non-empty string")
    elif not PLUGIN_NAME_RE.match(name):
        errors.append(
            f'Plugin name "{name}" must start with a letter and contain only '
            "letters, numbers, and underscores"
        )

    plugin_version = _get(export, "version", None)
    if not isinstance(plugin_version, str) or not plugin_version.strip():
        errors.append("Plugin version must be a non-empty string")

    description = _get(export, "description", None)
    if description is not None and not isinstance(description, str):
        errors.append("Plugin description must be a string")

    for hook in ("init", "destroy"):
        fn = _get(export, hook, None)
        if fn is not None and not callable(fn):
            errors.append(f"Plugin {hook} must be callable")

    tools = _get(export, "tools", None)
    if tools is not None:
        tool_result = validate_plugin_tools(tools, name if isinstance(name, str) else "?")
        errors.extend(tool_result.errors)

    help_entries = _get(export, "help", None)
    if help_entries is not None:
        if not isinstance(help_entries, (list, tuple)):
            errors.append("Plugin help must be a list")
        else:
            for i, entry in enumerate(help_entries):
                command = _get(entry, "command", None) if _is_record_like(entry) else None
                text = _get(entry, "description", None) if _is_record_like(entry) else None
                if not isinstance(command, str) or not isinstance(text, str):
                    errors.append(f"Help entry {i}: command and description must be strings")

    min_host = _get(export, "min_host_version", None)
    if min_host is not None and not isinstance(min_host, str):
        errors.append("Plugin min_host_version must be a string")

    return errors


def tool_warnings(export: Any) -> list[str]:
    """Non-fatal tool findings, for logging after a successful parse."""
    tools = _get(export, "tools", None) or []
    name = _get(export, "name", "?")
    return validate_plugin_tools(tools, name).warnings


def parse_plugin(export: Any) -> PluginRecord:
    """Build a ``PluginRecord`` from an export that passed validation.

    Raises:
        ValueError: If the export is malformed.
    """
    errors = validate_plugin_export(export)
    if errors:
        raise ValueError("; ".join(errors))

    tools = tuple(
        ToolDefinition(
            spec=ToolSpec(
                name=_get(_get(t, "spec"), "name"),
                description=_get(_get(t, "spec"), "description"),
                input_schema=dict(_get(_get(t, "spec"), "input_schema")),
            ),
            execute=_get(t, "execute"),
        )
        for t in (_get(export, "tools", None) or ())
    )
    help_entries = tuple(
        PluginHelpEntry(
            command=_get(h, "command"),
            description=_get(h, "description"),
            group=_get(h, "group", None),
        )
        for h in (_get(export, "help", None) or ())
    )
    return PluginRecord(
        name=_get(export, "name").strip(),
        version=_get(export, "version").strip(),
        description=_get(export, "description", None),
        tools=tools,
        init=_get(export, "init", None),
        destroy=_get(export, "destroy", None),
        help=help_entries,
        min_host_version=_get(export, "min_host_version", None),
    )
