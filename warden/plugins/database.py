"""Per-plugin scoped access to the shared database.

Every plugin gets a ``PluginDatabase`` handle bound to the table prefix
``plugin_<name>_``. Each SQL text passed to the handle is scanned for
table references before it reaches SQLite; a reference to a host table,
to another plugin's table or to any unprefixed table raises
``IsolationViolation``.

The scan is heuristic (regular expressions, not a SQL parser). Plugins run
with full process privileges, so this guards against accidental
cross-contamination between plugins and the host, not against a hostile
plugin.

Example:
    shared = SharedDatabase(create_db_engine("sqlite:///./data/warden.db"))
    db = shared.for_plugin("lift")
    db.exec("CREATE TABLE IF NOT EXISTS plugin_lift_sets (id INTEGER PRIMARY KEY, kg REAL)")
    db.prepare("INSERT INTO plugin_lift_sets (kg) VALUES (?)").run((102.5,))
    db.prepare("SELECT * FROM conversations")   # raises IsolationViolation
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, NoReturn, Optional, Sequence, TypeVar, Union

from sqlalchemy import Connection, Engine

from warden.db import CORE_TABLES
from warden.security.errors import FailureReason, IsolationViolation

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("warden.audit")

T = TypeVar("T")
Params = Optional[Union[Sequence[Any], Mapping[str, Any]]]

PLUGIN_NAME_RE = re.compile(r"^[a-z][a-z0-9_]*$", re.IGNORECASE)
PLUGIN_TABLE_PREFIX = "plugin_"

_IDENT = r"(?:\"([^\"]+)\"|`([^`]+)`|\[([^\]]+)\]|([a-z_][a-z0-9_]*))"
_OR_CLAUSE = r"(?:or\s+(?:replace|ignore|abort|rollback|fail)\s+)?"

_TABLE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        rf"\bcreate\s+(?:temp\s+|temporary\s+)?table\s+(?:if\s+not\s+exists\s+)?{_IDENT}",
        rf"\bdrop\s+table\s+(?:if\s+exists\s+)?{_IDENT}",
        rf"\balter\s+table\s+{_IDENT}",
        rf"\binsert\s+{_OR_CLAUSE}into\s+{_IDENT}",
        rf"\breplace\s+into\s+{_IDENT}",
        rf"\bupdate\s+{_OR_CLAUSE}{_IDENT}",
        rf"\bdelete\s+from\s+{_IDENT}",
        rf"\bfrom\s+{_IDENT}",
        rf"\bjoin\s+{_IDENT}",
        rf"\bon\s+{_IDENT}\s*\(",
        rf"\brename\s+to\s+{_IDENT}",
        rf"\breferences\s+{_IDENT}",
    )
)

# Words the patterns can capture that are not table names
# (``ON CONFLICT(...)``, ``UPDATE ... SET``).
_NOT_TABLES = frozenset({
    "conflict", "select", "where", "set", "values", "cascade",
    "restrict", "no", "on", "of",
})

# String literals and comments, blanked in a single left-to-right scan.
_NOISE_RE = re.compile(r"'(?:[^']|'')*'|--[^\n]*|/\*.*?\*/", re.DOTALL)
_PRAGMA_RE = re.compile(r"^\s*pragma\s", re.IGNORECASE)
_TX_CONTROL_RE = re.compile(
    r"^\s*(begin|commit|end|rollback|savepoint|release)\b", re.IGNORECASE
)


@dataclass(frozen=True)
class TablePrefix:
    """A validated table prefix. Only ``for_plugin`` builds one."""

    plugin_name: str
    value: str

    @classmethod
    def for_plugin(cls, plugin_name: str) -> TablePrefix:
        if not PLUGIN_NAME_RE.match(plugin_name or ""):
            raise IsolationViolation(
                f'Invalid plugin name "{plugin_name}" for database access. '
                "Plugin names must start with a letter and contain only letters, "
                "numbers, and underscores.",
                FailureReason.INVALID_PLUGIN_NAME,
                plugin_name=plugin_name,
            )
        return cls(plugin_name=plugin_name, value=f"{PLUGIN_TABLE_PREFIX}{plugin_name.lower()}_")

    def __str__(self) -> str:
        return self.value


def _strip_noise(sql: str) -> str:
    return _NOISE_RE.sub(lambda m: "''" if m.group(0).startswith("'") else " ", sql)


def extract_table_names(sql: str) -> set[str]:
    """Return the lower-cased table names *sql* appears to reference."""
    cleaned = _strip_noise(sql)
    found: set[str] = set()
    for pattern in _TABLE_PATTERNS:
        for match in pattern.finditer(cleaned):
            name = next(g for g in match.groups() if g is not None).lower()
            if name not in _NOT_TABLES:
                found.add(name)
    return found


def split_statements(sql: str) -> List[str]:
    """Split a script into complete SQLite statements."""
    statements: List[str] = []
    buf = ""
    for piece in sql.split(";"):
        buf = f"{buf};{piece}" if buf else piece
        if sqlite3.complete_statement(buf + ";"):
            if buf.strip():
                statements.append(buf.strip())
            buf = ""
    if buf.strip():
        statements.append(buf.strip())
    return statements


def _deny(message: str, reason: FailureReason, prefix: TablePrefix, table: str) -> NoReturn:
    audit_logger.warning(f"SQL denied ({reason.value}) for plugin {prefix.plugin_name}: {table}")
    raise IsolationViolation(message, reason, plugin_name=prefix.plugin_name, table=table)


def validate_plugin_sql(sql: str, prefix: TablePrefix) -> None:
    """Check that *sql* only references tables under *prefix*.

    ``PRAGMA`` statements and ``sqlite_*`` tables are always allowed.

    Raises:
        IsolationViolation: naming the first offending table.
    """
    if _PRAGMA_RE.match(_strip_noise(sql)):
        return

    name, value = prefix.plugin_name, prefix.value
    for table in sorted(extract_table_names(sql)):
        if table.startswith("sqlite_"):
            continue
        if table in CORE_TABLES:
            _deny(
                f'Plugin "{name}" attempted to access core table "{table}". '
                f'Plugins can only access tables prefixed with "{value}".',
                FailureReason.CORE_TABLE,
                prefix,
                table,
            )
        if table.startswith(PLUGIN_TABLE_PREFIX) and not table.startswith(value):
            _deny(
                f'Plugin "{name}" attempted to access another plugin\'s table "{table}". '
                f'Plugins can only access their own tables prefixed with "{value}".',
                FailureReason.FOREIGN_TABLE,
                prefix,
                table,
            )
        if not table.startswith(value):
            _deny(
                f'Plugin "{name}" attempted to access table "{table}". '
                f'Plugins must prefix all tables with "{value}".',
                FailureReason.UNPREFIXED_TABLE,
                prefix,
                table,
            )


@dataclass(frozen=True)
class RunResult:
    """Outcome of a data-modifying statement."""

    changes: int
    last_row_id: Optional[int]


class PluginStatement:
    """A validated statement bound to one plugin handle.

    Parameters follow SQLite's driver: a sequence for ``?`` placeholders
    or a mapping for ``:name`` placeholders.
    """

    def __init__(self, db: PluginDatabase, sql: str):
        self._db = db
        self.sql = sql

    def run(self, params: Params = None) -> RunResult:
        return self._db._shared.execute(self.sql, params)

    def all(self, params: Params = None) -> List[Dict[str, Any]]:
        return self._db._shared.execute(self.sql, params, fetch=True)

    def first(self, params: Params = None) -> Optional[Dict[str, Any]]:
        rows = self.all(params)
        return rows[0] if rows else None

    def __repr__(self) -> str:
        return f"<PluginStatement plugin={self._db.plugin_name!r} sql={self.sql!r}>"


class PluginDatabase:
    """Scoped database accessor for one plugin.

    Attributes:
        plugin_name: Name of the owning plugin.
        prefix: Required table prefix (``plugin_<name>_``).
    """

    def __init__(self, shared: SharedDatabase, prefix: TablePrefix):
        self._shared = shared
        self._prefix = prefix

    @property
    def plugin_name(self) -> str:
        return self._prefix.plugin_name

    @property
    def prefix(self) -> str:
        return self._prefix.value

    def exec(self, sql: str) -> None:
        """Run one or more statements without parameters (schema setup).

        Raises:
            IsolationViolation: A statement references a table outside the
                plugin's namespace.
            ValueError: The script contains explicit transaction control.
        """
        statements = split_statements(sql)
        for statement in statements:
            if _TX_CONTROL_RE.match(statement):
                raise ValueError(
                    "Transaction control statements are not allowed; use transaction()"
                )
            self.validate_sql(statement)
        for statement in statements:
            self._shared.execute(statement)

    def prepare(self, sql: str) -> PluginStatement:
        """Validate *sql* and return a reusable statement."""
        if _TX_CONTROL_RE.match(sql):
            raise ValueError(
                "Transaction control statements are not allowed; use transaction()"
            )
        self.validate_sql(sql)
        return PluginStatement(self, sql)

    def transaction(self, fn: Callable[[], T]) -> T:
        """Run *fn* atomically; roll back if it raises. Nested calls join."""
        return self._shared.transaction(fn)

    def validate_sql(self, sql: str) -> None:
        """Raise ``IsolationViolation`` if *sql* leaves the plugin namespace."""
        validate_plugin_sql(sql, self._prefix)

    def __repr__(self) -> str:
        return f"<PluginDatabase plugin={self.plugin_name!r} prefix={self.prefix!r}>"


class SharedDatabase:
    """The single connection shared by all plugin handles.

    Holds one SQLAlchemy ``Connection`` and caches one ``PluginDatabase``
    per plugin name. Statements outside ``transaction()`` are committed
    immediately.
    """

    def __init__(self, engine: Engine):
        self._engine = engine
        self._conn: Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0
        self._handles: Dict[str, PluginDatabase] = {}

    def _connection(self) -> Connection:
        if self._conn is None:
            self._conn = self._engine.connect()
        return self._conn

    def for_plugin(self, plugin_name: str) -> PluginDatabase:
        """Get (or create) the cached handle for *plugin_name*."""
        with self._lock:
            cached = self._handles.get(plugin_name)
            if cached is not None:
                return cached
            handle = PluginDatabase(self, TablePrefix.for_plugin(plugin_name))
            self._handles[plugin_name] = handle
            logger.debug(f"Plugin database handle created: {plugin_name} ({handle.prefix})")
            return handle

    def release(self, plugin_name: str) -> None:
        """Drop the cached handle (after a failed init or an unload)."""
        with self._lock:
            self._handles.pop(plugin_name, None)

    def handles(self) -> List[str]:
        with self._lock:
            return sorted(self._handles)

    def execute(self, sql: str, params: Params = None, fetch: bool = False) -> Any:
        with self._lock:
            conn = self._connection()
            try:
                result = conn.exec_driver_sql(sql, self._coerce(params))
                if fetch:
                    rows: Any = [dict(row._mapping) for row in result] if result.returns_rows else []
                else:
                    rows = RunResult(changes=result.rowcount, last_row_id=result.lastrowid)
            except Exception:
                if self._depth == 0:
                    conn.rollback()
                raise
            if self._depth == 0:
                conn.commit()
            return rows

    def transaction(self, fn: Callable[[], T]) -> T:
        with self._lock:
            if self._depth > 0:
                return fn()
            conn = self._connection()
            self._depth += 1
            try:
                result = fn()
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()
                return result
            finally:
                self._depth -= 1

    def close(self) -> None:
        """Close the connection and forget every handle."""
        with self._lock:
            self._handles.clear()
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            self._engine.dispose()
            logger.debug("Shared plugin database closed")

    @staticmethod
    def _coerce(params: Params) -> Any:
        if params is None:
            return None
        if isinstance(params, Mapping):
            return dict(params)
        if isinstance(params, (str, bytes)):
            return (params,)
        return tuple(params)
