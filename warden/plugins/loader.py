"""
Plugin lifecycle manager for Warden.

Discovers plugin modules in a single flat directory, validates each one
statically, runs its ``init`` hook under a timeout and registers it
atomically. A plugin that fails at any step is rejected on its own;
loading continues with the next file.

Lifecycle:
    DISCOVERED -> VALIDATED -> INITIALIZING -> LOADED -> DESTROYED
    (any step before LOADED may end in REJECTED)

Hooks may be plain functions or coroutine functions. Plain functions run
in the default executor so a blocking hook cannot stall the event loop.
Timeouts decide a plugin's fate but do not cancel its hook: the hook is
shielded and left to finish in the background, and any error it raises
later is logged.

Example:
    loader = PluginLoader(
        plugins_dir="plugins.local",
        database=SharedDatabase(create_db_engine(settings.DATABASE_URL)),
    )
    report = await loader.load_all()
    tools = loader.tools()
    ...
    await loader.unload_all()
"""

from __future__ import annotations

import asyncio
import functools
import importlib.util
import inspect
import logging
import sys
import traceback
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator

from warden import __version__
from warden.plugins.database import SharedDatabase
from warden.plugins.registry import (
    LoadedPlugin,
    PluginRegistry,
    PluginState,
    RegistrationError,
    TaggedTool,
)
from warden.plugins.sdk import (
    PluginContext,
    PluginHelpEntry,
    PluginRecord,
    parse_plugin,
    tool_warnings,
    validate_plugin_export,
)
from warden.security.commands import CommandGate
from warden.security.errors import FailureReason, LifecycleFailure
from warden.security.paths import PathGate

logger = logging.getLogger(__name__)

DEFAULT_INIT_TIMEOUT = 10.0
DEFAULT_DESTROY_TIMEOUT = 5.0
MODULE_PREFIX = "warden_plugin_"


@dataclass(frozen=True)
class RejectedPlugin:
    """A plugin file that did not make it into the registry."""

    source: str
    name: str
    reason: FailureReason
    message: str
    errors: tuple[str, ...] = ()


@dataclass
class LoadReport:
    """Outcome of ``PluginLoader.load_all``.

    Attributes:
        loaded: ``name@version`` labels of plugins loaded in this pass.
        rejected: Plugins that failed, with the reason.
    """

    loaded: list[str] = field(default_factory=list)
    rejected: list[RejectedPlugin] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.rejected


def _log_detached_failure(label: str, task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning(f"{label} failed after its timeout: {exc}")


class PluginLoader:
    """Loads, tracks and tears down plugins.

    Args:
        plugins_dir: Directory scanned for ``*.py`` plugin modules.
        database: Shared database the per-plugin handles are cut from.
        commands: Command Gate handed to plugins through their context.
        paths: Path Gate handed to plugins through their context.
        registry: Registry to populate; a fresh one by default.
        init_timeout: Seconds ``init`` may take.
        destroy_timeout: Seconds ``destroy`` may take.
        host_version: Version checked against ``min_host_version``.
    """

    def __init__(
        self,
        plugins_dir: str | Path,
        database: SharedDatabase,
        commands: CommandGate | None = None,
        paths: PathGate | None = None,
        registry: PluginRegistry | None = None,
        init_timeout: float = DEFAULT_INIT_TIMEOUT,
        destroy_timeout: float = DEFAULT_DESTROY_TIMEOUT,
        host_version: str = __version__,
    ):
        self._plugins_dir = Path(plugins_dir)
        self._database = database
        self._commands = commands
        self._paths = paths
        self._registry = registry if registry is not None else PluginRegistry()
        self._init_timeout = init_timeout
        self._destroy_timeout = destroy_timeout
        self._host_version = host_version
        self._states: dict[str, PluginState] = {}
        self._modules: dict[str, str] = {}

    @property
    def plugins_dir(self) -> Path:
        return self._plugins_dir

    @property
    def registry(self) -> PluginRegistry:
        return self._registry

    def states(self) -> dict[str, PluginState]:
        """Last known state per plugin source file."""
        return dict(self._states)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover(self) -> Iterator[Path]:
        """Yield plugin module files, sorted by name.

        Files starting with ``_`` are skipped. A missing directory yields
        nothing. Each call rescans the directory.
        """
        if not self._plugins_dir.is_dir():
            logger.debug(f"Plugin directory does not exist: {self._plugins_dir}")
            return
        for path in sorted(self._plugins_dir.glob("*.py")):
            if path.name.startswith("_") or not path.is_file():
                continue
            self._states[str(path)] = PluginState.DISCOVERED
            yield path

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_all(self) -> LoadReport:
        """Load every discovered plugin, one at a time."""
        report = LoadReport()
        for path in self.discover():
            try:
                loaded = await self.load(path)
            except LifecycleFailure as e:
                report.rejected.append(RejectedPlugin(
                    source=str(path),
                    name=e.plugin_name,
                    reason=e.reason,
                    message=e.message,
                    errors=tuple(e.errors),
                ))
                continue
            report.loaded.append(loaded.record.label)

        logger.info(
            f"Plugin loading complete: {len(report.loaded)} loaded, "
            f"{len(report.rejected)} rejected"
        )
        return report

    async def load(self, path: str | Path) -> LoadedPlugin:
        """Import, validate, initialize and register one plugin file.

        Raises:
            LifecycleFailure: The plugin was rejected; nothing of it is
                registered.
        """
        path = Path(path)
        source = str(path)
        module_name = f"{MODULE_PREFIX}{path.stem}"
        try:
            return await self._load(path, module_name)
        except LifecycleFailure as e:
            self._states[source] = PluginState.REJECTED
            sys.modules.pop(module_name, None)
            logger.error(f"Plugin rejected ({e.reason.value}) from {path.name}: {e.message}")
            for error in e.errors:
                logger.error(f"  {error}")
            raise

    async def _load(self, path: Path, module_name: str) -> LoadedPlugin:
        source = str(path)
        export = self._import(path, module_name)

        errors = validate_plugin_export(export)
        if errors:
            name = export.get("name") if isinstance(export, dict) else getattr(export, "name", None)
            raise LifecycleFailure(
                name if isinstance(name, str) and name else path.stem,
                f"Plugin from {path.name} failed validation",
                FailureReason.INVALID_PLUGIN,
                errors,
            )
        for warning in tool_warnings(export):
            logger.warning(f"Plugin tool warning ({path.name}): {warning}")

        record = parse_plugin(export)
        self._states[source] = PluginState.VALIDATED

        if not record.is_compatible(self._host_version):
            raise LifecycleFailure(
                record.name,
                f"Plugin {record.label} requires host version >= {record.min_host_version}",
                FailureReason.INVALID_PLUGIN,
            )

        conflicts = self._registry.check_conflicts(record)
        if conflicts:
            raise LifecycleFailure(
                record.name,
                f"Plugin {record.label} conflicts with a loaded plugin",
                FailureReason.DUPLICATE,
                conflicts,
            )

        db = self._database.for_plugin(record.name)
        context = PluginContext(
            db=db,
            name=record.name,
            version=record.version,
            commands=self._commands,
            paths=self._paths,
            logger=logging.getLogger(f"warden.plugins.{record.name}"),
        )

        self._states[source] = PluginState.INITIALIZING
        try:
            if record.init is not None:
                await self._run_hook(
                    record.init, context, self._init_timeout, f"Plugin {record.name!r} init()"
                )
            loaded = LoadedPlugin(
                record=record,
                db=db,
                context=context,
                tools=tuple(TaggedTool(record.name, tool) for tool in record.tools),
                source=source,
            )
            self._registry.register(loaded)
        except asyncio.TimeoutError:
            self._database.release(record.name)
            raise LifecycleFailure(
                record.name,
                f"Plugin {record.name!r} init() timed out after {self._init_timeout}s",
                FailureReason.TIMEOUT,
            ) from None
        except RegistrationError as e:
            self._database.release(record.name)
            raise LifecycleFailure(record.name, str(e), FailureReason.DUPLICATE) from e
        except asyncio.CancelledError:
            self._database.release(record.name)
            raise
        except BaseException as e:
            self._database.release(record.name)
            logger.debug(traceback.format_exc())
            raise LifecycleFailure(
                record.name,
                f"Plugin {record.name!r} init() failed: {e}",
                FailureReason.INIT_FAILED,
            ) from e

        self._states[source] = PluginState.LOADED
        self._modules[record.name] = module_name
        logger.info(
            f"Plugin loaded: {record.label} "
            f"(tools: {len(loaded.tools)}, prefix: {db.prefix})"
        )
        return loaded

    def _import(self, path: Path, module_name: str) -> Any:
        try:
            spec = importlib.util.spec_from_file_location(module_name, path)
            if spec is None or spec.loader is None:
                raise ImportError(f"Cannot create a module spec for {path}")
            module = importlib.util.module_from_spec(spec)
            sys.modules[module_name] = module
            spec.loader.exec_module(module)
        except asyncio.CancelledError:
            raise
        except BaseException as e:
            logger.debug(traceback.format_exc())
            raise LifecycleFailure(
                path.stem,
                f"Failed to import plugin {path.name}: {e}",
                FailureReason.IMPORT_FAILED,
            ) from e

        export = getattr(module, "plugin", None)
        if export is None:
            raise LifecycleFailure(
                path.stem,
                f"Plugin module {path.name} has no 'plugin' export",
                FailureReason.INVALID_PLUGIN,
            )
        return export

    async def _run_hook(
        self,
        hook: Callable[..., Any],
        context: PluginContext,
        timeout: float,
        label: str,
    ) -> None:
        loop = asyncio.get_running_loop()

        async def invoke() -> Any:
            try:
                if inspect.iscoroutinefunction(hook):
                    return await hook(context)
                result = await loop.run_in_executor(None, hook, context)
                if inspect.isawaitable(result):
                    return await result
                return result
            except (SystemExit, KeyboardInterrupt) as e:
                # A task re-raises these through the event loop itself.
                raise RuntimeError(f"raised {type(e).__name__}({e})") from e

        task = asyncio.ensure_future(invoke())
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            task.add_done_callback(functools.partial(_log_detached_failure, label))
            raise

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def tools(self) -> list[TaggedTool]:
        """Tools of every loaded plugin, tagged with their owner."""
        return self._registry.tools()

    def help_entries(self) -> dict[str, list[PluginHelpEntry]]:
        return self._registry.help_entries()

    def get(self, name: str) -> PluginRecord | None:
        plugin = self._registry.get(name)
        return plugin.record if plugin is not None else None

    def loaded_plugins(self) -> list[str]:
        """``name@version`` of every loaded plugin, in load order."""
        return [p.record.label for p in self._registry.all()]

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def unload(self, name: str) -> bool:
        """Run ``destroy`` for *name* and drop it from the registry.

        Destroy failures and timeouts are logged, never raised.

        Returns:
            False if no plugin by that name was loaded.
        """
        plugin = self._registry.get(name)
        if plugin is None:
            return False

        destroy = plugin.record.destroy
        if destroy is not None:
            label = f"Plugin {name!r} destroy()"
            try:
                await self._run_hook(destroy, plugin.context, self._destroy_timeout, label)
                logger.debug(f"Plugin destroyed: {name}")
            except asyncio.TimeoutError:
                logger.error(f"{label} timed out after {self._destroy_timeout}s")
            except Exception as e:
                logger.error(f"{label} failed: {e}")

        self._registry.unregister(name)
        self._database.release(name)
        sys.modules.pop(self._modules.pop(name, ""), None)
        plugin.state = PluginState.DESTROYED
        if plugin.source is not None:
            self._states[plugin.source] = PluginState.DESTROYED
        return True

    async def unload_all(self) -> None:
        """Destroy every loaded plugin and clear the registry."""
        names = [p.name for p in self._registry.all()]
        logger.debug(f"Unloading {len(names)} plugins")
        for name in names:
            await self.unload(name)
        self._registry.clear()

    async def reload(self) -> LoadReport:
        """Unload everything, then rescan and load again."""
        await self.unload_all()
        return await self.load_all()

    def __repr__(self) -> str:
        return f"<PluginLoader dir={str(self._plugins_dir)!r} loaded={len(self._registry)}>"
