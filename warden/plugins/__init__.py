"""
Plugin system for Warden.

Plugins are Python modules dropped into the plugin directory. Each exports
a ``plugin`` object (dict or attribute object) describing its name,
version, tools and optional ``init``/``destroy`` hooks.

Components:
    - sdk: PluginRecord, PluginContext and static validation
    - database: per-plugin SQL namespace over the shared database
    - registry: the set of successfully loaded plugins
    - loader: discovery, time-bounded init/destroy, atomic registration

Example:
    from warden.plugins import PluginLoader, SharedDatabase

    loader = PluginLoader("plugins.local", SharedDatabase(engine))
    report = await loader.load_all()
    print(loader.loaded_plugins())      # ["lift@1.0.0"]
"""

from warden.plugins.database import (
    PluginDatabase,
    PluginStatement,
    RunResult,
    SharedDatabase,
    TablePrefix,
    extract_table_names,
    validate_plugin_sql,
)
from warden.plugins.loader import (
    LoadReport,
    PluginLoader,
    RejectedPlugin,
)
from warden.plugins.registry import (
    LoadedPlugin,
    PluginEvent,
    PluginRegistry,
    PluginState,
    RegistrationError,
    TaggedTool,
)
from warden.plugins.sdk import (
    PluginContext,
    PluginHelpEntry,
    PluginRecord,
    ToolValidationResult,
    parse_plugin,
    validate_plugin_export,
    validate_plugin_tools,
    validate_tool_definition,
    validate_tool_name,
    validate_tool_spec,
)

__all__ = [
    # Database
    "PluginDatabase",
    "PluginStatement",
    "RunResult",
    "SharedDatabase",
    "TablePrefix",
    "extract_table_names",
    "validate_plugin_sql",
    # Loader
    "LoadReport",
    "PluginLoader",
    "RejectedPlugin",
    # Registry
    "LoadedPlugin",
    "PluginEvent",
    "PluginRegistry",
    "PluginState",
    "RegistrationError",
    "TaggedTool",
    # SDK
    "PluginContext",
    "PluginHelpEntry",
    "PluginRecord",
    "ToolValidationResult",
    "parse_plugin",
    "validate_plugin_export",
    "validate_plugin_tools",
    "validate_tool_definition",
    "validate_tool_name",
    "validate_tool_spec",
]
