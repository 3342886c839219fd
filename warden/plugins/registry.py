"""
Loaded-plugin registry for Warden.

Holds every plugin that finished ``init`` successfully, together with its
database handle and its tools. Registration is all-or-nothing: a plugin
whose name, table prefix or any tool name collides with a registered
plugin is refused whole, and nothing of it becomes visible. Prefixes
collide when one starts with the other (``plugin_lift_`` and
``plugin_lift_x_``), since the SQL scan matches tables by prefix.

Example:
    registry = PluginRegistry()
    registry.register(loaded)
    for tool in registry.tools():
        print(tool.namespaced_name)      # "lift:one_rep_max"
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterator

from warden.plugins.database import PluginDatabase, TablePrefix
from warden.plugins.sdk import PluginContext, PluginHelpEntry, PluginRecord
from warden.tools.base import ToolDefinition

logger = logging.getLogger(__name__)


class PluginState(str, Enum):
    """Lifecycle states of a plugin module."""

    DISCOVERED = "discovered"
    VALIDATED = "validated"
    INITIALIZING = "initializing"
    LOADED = "loaded"
    DESTROYED = "destroyed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class TaggedTool:
    """A plugin tool tagged with its owning plugin.

    Attributes:
        plugin_name: Owning plugin.
        definition: The tool as the plugin declared it.
    """

    plugin_name: str
    definition: ToolDefinition

    @property
    def name(self) -> str:
        return self.definition.spec.name

    @property
    def namespaced_name(self) -> str:
        return f"{self.plugin_name}:{self.definition.spec.name}"


@dataclass
class LoadedPlugin:
    """A plugin that completed ``init``.

    Attributes:
        record: The validated plugin record.
        db: The plugin's scoped database handle.
        context: The context its hooks received.
        tools: Its tools, tagged with the plugin name.
        source: File the plugin was imported from.
        loaded_at: When init completed.
        state: LOADED while registered, DESTROYED after unload.
    """

    record: PluginRecord
    db: PluginDatabase
    context: PluginContext
    tools: tuple[TaggedTool, ...] = ()
    source: str | None = None
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: PluginState = PluginState.LOADED

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def prefix(self) -> str:
        return self.db.prefix

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.record.name,
            "version": self.record.version,
            "description": self.record.description,
            "prefix": self.prefix,
            "tools": [t.namespaced_name for t in self.tools],
            "source": self.source,
            "loaded_at": self.loaded_at.isoformat(),
            "state": self.state.value,
        }


@dataclass
class PluginEvent:
    """A registry change, delivered to listeners."""

    event_type: str
    plugin_name: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: dict[str, Any] = field(default_factory=dict)


EventListener = Callable[[PluginEvent], None]


class RegistrationError(Exception):
    """A plugin could not be registered without breaking uniqueness."""


class PluginRegistry:
    """Registry of loaded plugins, keyed by plugin name.

    Tool names are unique across all registered plugins, compared on the
    plain tool name (before namespacing).
    """

    def __init__(self) -> None:
        self._plugins: dict[str, LoadedPlugin] = {}
        self._tool_owners: dict[str, str] = {}
        self._event_listeners: list[EventListener] = []

    def check_conflicts(self, record: PluginRecord) -> list[str]:
        """Return the reasons *record* could not be registered, if any."""
        conflicts: list[str] = []
        if record.name in self._plugins:
            conflicts.append(f'Plugin "{record.name}" is already loaded')
        prefix = TablePrefix.for_plugin(record.name).value
        for other in self._plugins.values():
            if other.name != record.name and (
                prefix.startswith(other.prefix) or other.prefix.startswith(prefix)
            ):
                conflicts.append(
                    f'Table prefix "{prefix}" overlaps "{other.prefix}" of plugin "{other.name}"'
                )
        for tool in record.tools:
            owner = self._tool_owners.get(tool.spec.name)
            if owner is not None:
                conflicts.append(
                    f'Tool "{tool.spec.name}" is already provided by plugin "{owner}"'
                )
        return conflicts

    def register(self, plugin: LoadedPlugin) -> None:
        """Add *plugin* and all its tools, or nothing.

        Raises:
            RegistrationError: The plugin name or a tool name is taken.
        """
        conflicts = self.check_conflicts(plugin.record)
        if conflicts:
            raise RegistrationError("; ".join(conflicts))

        self._plugins[plugin.name] = plugin
        for tool in plugin.tools:
            self._tool_owners[tool.name] = plugin.name

        self._emit_event(PluginEvent(
            event_type="plugin_registered",
            plugin_name=plugin.name,
            details={"tools": [t.namespaced_name for t in plugin.tools]},
        ))
        logger.info(f"Registered plugin: {plugin.record.label} ({len(plugin.tools)} tools)")

    def unregister(self, name: str) -> LoadedPlugin | None:
        plugin = self._plugins.pop(name, None)
        if plugin is None:
            return None
        for tool in plugin.tools:
            self._tool_owners.pop(tool.name, None)
        self._emit_event(PluginEvent(event_type="plugin_unregistered", plugin_name=name))
        logger.info(f"Unregistered plugin: {name}")
        return plugin

    def get(self, name: str) -> LoadedPlugin | None:
        return self._plugins.get(name)

    def all(self) -> list[LoadedPlugin]:
        """Loaded plugins in load order."""
        return list(self._plugins.values())

    def tools(self) -> list[TaggedTool]:
        return [tool for plugin in self._plugins.values() for tool in plugin.tools]

    def help_entries(self) -> dict[str, list[PluginHelpEntry]]:
        return {
            name: list(plugin.record.help)
            for name, plugin in self._plugins.items()
            if plugin.record.help
        }

    def clear(self) -> None:
        for name in list(self._plugins):
            self.unregister(name)

    def add_listener(self, listener: EventListener) -> None:
        self._event_listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._event_listeners:
            self._event_listeners.remove(listener)

    def _emit_event(self, event: PluginEvent) -> None:
        for listener in self._event_listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener error: {e}")

    def __len__(self) -> int:
        return len(self._plugins)

    def __contains__(self, name: object) -> bool:
        return name in self._plugins

    def __iter__(self) -> Iterator[LoadedPlugin]:
        return iter(list(self._plugins.values()))
