"""Tests for warden.plugins.database - the Data Isolation Gate.

Tests cover:
- Table-name extraction (quoting, comments, literals)
- Prefix, core-table and foreign-table checks
- Statement execution through the shared connection
- Transactions, handle caching and release
"""

from __future__ import annotations

import threading

import pytest
from sqlalchemy.exc import IntegrityError

from warden.db import CORE_TABLES, create_db_engine, init_core_tables
from warden.plugins.database import (
    PluginDatabase,
    SharedDatabase,
    TablePrefix,
    extract_table_names,
    split_statements,
    validate_plugin_sql,
)
from warden.security.errors import FailureReason, IsolationViolation


# ===========================================================================
# Fixtures
# ===========================================================================


@pytest.fixture
def shared(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'data' / 'warden.db'}")
    init_core_tables(engine)
    db = SharedDatabase(engine)
    yield db
    db.close()


@pytest.fixture
def lift(shared) -> PluginDatabase:
    db = shared.for_plugin("lift")
    db.exec("CREATE TABLE IF NOT EXISTS plugin_lift_sets (id INTEGER PRIMARY KEY, exercise TEXT, kg REAL)")
    return db


# ===========================================================================
# Prefixes
# ===========================================================================


class TestTablePrefix:
    """Validated prefix construction."""

    def test_prefix_lower_cased(self):
        prefix = TablePrefix.for_plugin("Lift")
        assert prefix.value == "plugin_lift_"
        assert prefix.plugin_name == "Lift"
        assert str(prefix) == "plugin_lift_"

    @pytest.mark.parametrize("name", ["", "1lift", "lift-tracker", "lift tracker", "_lift", "lift;drop"])
    def test_invalid_names(self, name):
        with pytest.raises(IsolationViolation) as exc:
            TablePrefix.for_plugin(name)
        assert exc.value.reason == FailureReason.INVALID_PLUGIN_NAME


# ===========================================================================
# Extraction
# ===========================================================================


class TestExtractTableNames:
    """Heuristic identifier extraction."""

    @pytest.mark.parametrize(
        "sql,expected",
        [
            ("SELECT * FROM plugin_lift_sets", {"plugin_lift_sets"}),
            ('SELECT * FROM "Plugin_Lift_Sets"', {"plugin_lift_sets"}),
            ("SELECT * FROM `t1` JOIN [t2] ON t1.id = t2.id", {"t1", "t2"}),
            ("INSERT OR REPLACE INTO a (x) VALUES (1)", {"a"}),
            ("UPDATE OR IGNORE b SET x = 1", {"b"}),
            ("DELETE FROM c WHERE id = 1", {"c"}),
            ("CREATE TEMP TABLE IF NOT EXISTS d (x)", {"d"}),
            ("DROP TABLE IF EXISTS e", {"e"}),
            ("ALTER TABLE f RENAME TO g", {"f", "g"}),
            ("CREATE INDEX idx ON h(x)", {"h"}),
            ("CREATE TABLE i (x REFERENCES j(id))", {"i", "j"}),
            ("INSERT INTO k (x) VALUES (1) ON CONFLICT(x) DO UPDATE SET x = 2", {"k"}),
        ],
    )
    def test_extraction(self, sql, expected):
        assert extract_table_names(sql) == expected

    def test_string_literals_ignored(self):
        sql = "SELECT * FROM plugin_lift_sets WHERE note = 'copied from conversations'"
        assert extract_table_names(sql) == {"plugin_lift_sets"}

    def test_comments_ignored(self):
        sql = "SELECT 1 FROM plugin_lift_sets -- join conversations\n/* from tool_calls */"
        assert extract_table_names(sql) == {"plugin_lift_sets"}

    def test_split_statements_respects_literals(self):
        sql = "INSERT INTO a VALUES ('x;y'); DELETE FROM a;"
        assert split_statements(sql) == ["INSERT INTO a VALUES ('x;y')", "DELETE FROM a"]


# ===========================================================================
# Validation
# ===========================================================================


class TestValidation:
    """Namespace enforcement on every SQL text."""

    def test_own_table_allowed(self, lift):
        statement = lift.prepare("SELECT * FROM plugin_lift_sets")
        assert statement.sql == "SELECT * FROM plugin_lift_sets"

    def test_core_table_denied(self, lift):
        with pytest.raises(IsolationViolation, match='core table "conversations"') as exc:
            lift.prepare("SELECT * FROM conversations")
        assert exc.value.reason == FailureReason.CORE_TABLE
        assert exc.value.table == "conversations"
        assert exc.value.plugin_name == "lift"

    def test_foreign_plugin_table_denied(self, lift):
        with pytest.raises(IsolationViolation, match="plugin_other_data") as exc:
            lift.prepare("SELECT * FROM plugin_other_data")
        assert exc.value.reason == FailureReason.FOREIGN_TABLE

    def test_similar_prefix_is_foreign(self, lift):
        with pytest.raises(IsolationViolation) as exc:
            lift.prepare("SELECT * FROM plugin_lifting_data")
        assert exc.value.reason == FailureReason.FOREIGN_TABLE

    def test_unprefixed_table_denied(self, lift):
        with pytest.raises(IsolationViolation, match="must prefix") as exc:
            lift.prepare("CREATE TABLE sets (id INTEGER)")
        assert exc.value.reason == FailureReason.UNPREFIXED_TABLE

    def test_join_into_core_table_denied(self, lift):
        with pytest.raises(IsolationViolation, match="tool_calls"):
            lift.prepare("SELECT * FROM plugin_lift_sets s JOIN tool_calls t ON s.id = t.id")

    def test_subquery_into_core_table_denied(self, lift):
        with pytest.raises(IsolationViolation):
            lift.prepare(
                "INSERT INTO plugin_lift_sets (exercise) SELECT context_alias FROM channel_context"
            )

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT '--' AS x, * FROM conversations",
            "SELECT '/*' AS x, * FROM conversations WHERE '*/' = ''",
        ],
    )
    def test_comment_marker_inside_literal_denied(self, lift, sql):
        assert "conversations" in extract_table_names(sql)
        with pytest.raises(IsolationViolation) as exc:
            lift.prepare(sql)
        assert exc.value.reason == FailureReason.CORE_TABLE

    def test_quote_inside_comment_ignored(self, lift):
        sql = "SELECT * FROM plugin_lift_sets /* don't */ WHERE note = 'x'"
        assert extract_table_names(sql) == {"plugin_lift_sets"}
        assert lift.prepare(sql).sql == sql

    def test_quoted_core_table_denied(self, lift):
        with pytest.raises(IsolationViolation):
            lift.prepare('DELETE FROM "Conversations"')

    def test_sqlite_tables_allowed(self, lift):
        lift.prepare("SELECT name FROM sqlite_master WHERE name LIKE 'plugin_lift_%'")

    def test_pragma_allowed(self, lift):
        lift.prepare("PRAGMA table_info(plugin_lift_sets)")

    def test_exec_validates_every_statement_before_running(self, lift):
        script = """
            CREATE TABLE plugin_lift_notes (id INTEGER PRIMARY KEY, body TEXT);
            DROP TABLE conversations;
        """
        with pytest.raises(IsolationViolation):
            lift.exec(script)
        assert lift.prepare(
            "SELECT name FROM sqlite_master WHERE name = 'plugin_lift_notes'"
        ).first() is None

    def test_transaction_control_rejected(self, lift):
        with pytest.raises(ValueError, match="transaction"):
            lift.exec("BEGIN; DELETE FROM plugin_lift_sets; COMMIT")
        with pytest.raises(ValueError):
            lift.prepare("ROLLBACK")

    def test_validate_without_handle(self):
        prefix = TablePrefix.for_plugin("lift")
        validate_plugin_sql("SELECT * FROM plugin_lift_sets", prefix)
        with pytest.raises(IsolationViolation):
            validate_plugin_sql("SELECT * FROM conversations", prefix)

    def test_core_tables_are_the_declared_models(self):
        assert CORE_TABLES == {"conversations", "tool_calls", "channel_context"}


# ===========================================================================
# Execution
# ===========================================================================


class TestStatements:
    """run/all/first against a real SQLite file."""

    def test_run_all_first(self, lift):
        insert = lift.prepare("INSERT INTO plugin_lift_sets (exercise, kg) VALUES (?, ?)")
        first = insert.run(("squat", 100.0))
        insert.run(("bench", 80.0))
        assert first.changes == 1
        assert first.last_row_id == 1

        rows = lift.prepare("SELECT exercise, kg FROM plugin_lift_sets ORDER BY id").all()
        assert rows == [{"exercise": "squat", "kg": 100.0}, {"exercise": "bench", "kg": 80.0}]

        best = lift.prepare(
            "SELECT exercise FROM plugin_lift_sets WHERE kg > :kg ORDER BY kg DESC"
        ).first({"kg": 90})
        assert best == {"exercise": "squat"}

    def test_first_returns_none_when_empty(self, lift):
        assert lift.prepare("SELECT * FROM plugin_lift_sets").first() is None

    def test_statements_are_committed(self, shared, lift, tmp_path):
        lift.prepare("INSERT INTO plugin_lift_sets (exercise) VALUES ('row')").run()
        shared.close()

        engine = create_db_engine(f"sqlite:///{tmp_path / 'data' / 'warden.db'}")
        reopened = SharedDatabase(engine)
        try:
            rows = reopened.for_plugin("lift").prepare("SELECT exercise FROM plugin_lift_sets").all()
        finally:
            reopened.close()
        assert rows == [{"exercise": "row"}]

    def test_transaction_commits(self, lift):
        def work():
            stmt = lift.prepare("INSERT INTO plugin_lift_sets (exercise) VALUES (?)")
            stmt.run(("a",))
            stmt.run(("b",))
            return "done"

        assert lift.transaction(work) == "done"
        assert len(lift.prepare("SELECT * FROM plugin_lift_sets").all()) == 2

    def test_transaction_rolls_back_on_error(self, lift):
        def work():
            lift.prepare("INSERT INTO plugin_lift_sets (exercise) VALUES ('a')").run()
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            lift.transaction(work)
        assert lift.prepare("SELECT * FROM plugin_lift_sets").all() == []

    def test_nested_transaction_joins_outer(self, lift):
        def inner():
            lift.prepare("INSERT INTO plugin_lift_sets (exercise) VALUES ('inner')").run()

        def outer():
            lift.transaction(inner)
            raise RuntimeError("outer fails")

        with pytest.raises(RuntimeError):
            lift.transaction(outer)
        assert lift.prepare("SELECT * FROM plugin_lift_sets").all() == []

    def test_failed_statement_does_not_poison_connection(self, lift):
        with pytest.raises(IntegrityError):
            lift.prepare("INSERT INTO plugin_lift_sets (id) VALUES (1), (1)").run()
        lift.prepare("INSERT INTO plugin_lift_sets (exercise) VALUES ('ok')").run()
        assert len(lift.prepare("SELECT * FROM plugin_lift_sets").all()) == 1

    def test_sync_access_from_worker_thread(self, lift):
        errors = []

        def worker():
            try:
                lift.prepare("INSERT INTO plugin_lift_sets (exercise) VALUES ('thread')").run()
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        t = threading.Thread(target=worker)
        t.start()
        t.join()
        assert errors == []
        assert lift.prepare("SELECT exercise FROM plugin_lift_sets").all() == [{"exercise": "thread"}]


# ===========================================================================
# Handles
# ===========================================================================


class TestSharedDatabase:
    """Handle cache."""

    def test_handle_cached_per_plugin(self, shared):
        assert shared.for_plugin("lift") is shared.for_plugin("lift")
        assert shared.for_plugin("lift") is not shared.for_plugin("cardio")
        assert shared.handles() == ["cardio", "lift"]

    def test_release_evicts(self, shared):
        first = shared.for_plugin("lift")
        shared.release("lift")
        assert shared.handles() == []
        assert shared.for_plugin("lift") is not first

    def test_invalid_name_gets_no_handle(self, shared):
        with pytest.raises(IsolationViolation):
            shared.for_plugin("bad-name")
        assert shared.handles() == []

    def test_handle_repr_hides_connection(self, lift):
        assert repr(lift) == "<PluginDatabase plugin='lift' prefix='plugin_lift_'>"
