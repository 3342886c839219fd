"""
Tests for the Warden CLI.

Uses typer.testing.CliRunner to drive each command. Commands that would
spawn processes run against a patched ``create_subprocess_exec``; plugin
commands run against plugin files written into a temporary directory.
"""

from __future__ import annotations

import asyncio
import textwrap
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from warden import __version__
from warden.cli import app
from warden.security.commands import CommandResult


SPAWN = "warden.security.commands.asyncio.create_subprocess_exec"

GOOD_PLUGIN = '''
def init(ctx):
    ctx.db.exec("CREATE TABLE IF NOT EXISTS plugin_first_items (id INTEGER PRIMARY KEY)")

plugin = {
    "name": "first",
    "version": "1.0.0",
    "init": init,
    "tools": [{
        "spec": {
            "name": "list_items",
            "description": "List stored items for the user",
            "input_schema": {"type": "object", "properties": {}},
        },
        "execute": lambda input, config: "none",
    }],
}
'''

BAD_PLUGIN = '''
plugin = {
    "name": "second",
    "version": "1.0.0",
    "tools": [{
        "spec": {
            "name": "ab",
            "description": "Name is too short",
            "input_schema": {"type": "object", "properties": {}},
        },
        "execute": lambda input, config: "never",
    }],
}
'''


def _spawn(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> AsyncMock:
    """Patch target for create_subprocess_exec; builds the process inside the loop."""

    def make(*args, **kwargs):
        proc = MagicMock()
        out = asyncio.StreamReader()
        out.feed_data(stdout)
        out.feed_eof()
        err = asyncio.StreamReader()
        err.feed_data(stderr)
        err.feed_eof()
        proc.stdout = out
        proc.stderr = err
        proc.returncode = returncode
        proc.wait = AsyncMock(return_value=returncode)
        return proc

    return AsyncMock(side_effect=make)


# ===========================================================================
# Fixtures
# ===========================================================================


@pytest.fixture
def runner() -> CliRunner:
    """Create a CliRunner with a wide terminal so paths are not wrapped."""
    return CliRunner(env={"COLUMNS": "250"})


@pytest.fixture
def allowed(tmp_path):
    directory = tmp_path / "allowed"
    directory.mkdir()
    (directory / "app.conf").write_text("listen 80\n")
    return directory


@pytest.fixture
def plugins_dir(tmp_path):
    directory = tmp_path / "plugins"
    directory.mkdir()
    return directory


def write_plugin(directory, stem, source):
    path = directory / f"{stem}.py"
    path.write_text(textwrap.dedent(source))
    return path


# ===========================================================================
# Main app
# ===========================================================================


class TestMainApp:
    """Tests for the main CLI application."""

    def test_help_works(self, runner):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "check-path" in result.output
        assert "plugins" in result.output

    def test_version_flag(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"Warden version {__version__}" in result.output

    def test_version_command(self, runner):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_no_args_shows_help(self, runner):
        result = runner.invoke(app, [])
        assert "Usage" in result.output

    def test_unknown_command_shows_error(self, runner):
        result = runner.invoke(app, ["nonexistent-command"])
        assert result.exit_code != 0

    def test_verbose_flag_accepted(self, runner):
        result = runner.invoke(app, ["--verbose", "version"])
        assert result.exit_code == 0


# ===========================================================================
# check-path
# ===========================================================================


class TestCheckPath:
    """Path Gate verdicts."""

    def test_allowed(self, runner, allowed):
        result = runner.invoke(app, ["check-path", str(allowed / "app.conf"), "--allow", str(allowed)])
        assert result.exit_code == 0
        assert "Allowed:" in result.output
        assert "app.conf" in result.output

    def test_outside(self, runner, allowed, tmp_path):
        result = runner.invoke(app, ["check-path", str(tmp_path / "other.txt"), "-a", str(allowed)])
        assert result.exit_code == 1
        assert "outside_allowed_dirs" in result.output

    def test_traversal(self, runner, allowed):
        result = runner.invoke(app, ["check-path", f"{allowed}/../../etc/passwd", "-a", str(allowed)])
        assert result.exit_code == 1

    def test_sensitive(self, runner, allowed):
        result = runner.invoke(app, ["check-path", str(allowed / ".env"), "-a", str(allowed)])
        assert result.exit_code == 1
        assert "sensitive_path" in result.output


# ===========================================================================
# check-command
# ===========================================================================


class TestCheckCommand:
    """Command Gate verdicts; nothing is executed."""

    def test_allowed_with_passthrough_flags(self, runner):
        with patch(SPAWN) as spawn:
            result = runner.invoke(app, ["check-command", "docker", "ps", "-a"])
        assert result.exit_code == 0
        assert "Allowed: /usr/bin/docker ps -a" in result.output
        spawn.assert_not_called()

    def test_unknown_program_lists_allowlist(self, runner):
        result = runner.invoke(app, ["check-command", "rm", "-rf", "/"])
        assert result.exit_code == 1
        assert "not_allowlisted" in result.output
        assert "journalctl" in result.output

    def test_disallowed_subcommand(self, runner):
        result = runner.invoke(app, ["check-command", "docker", "rm", "web"])
        assert result.exit_code == 1
        assert "subcommand_not_allowed" in result.output

    def test_file_argument_checked(self, runner, allowed):
        ok = runner.invoke(app, ["check-command", "-a", str(allowed), "cat", str(allowed / "app.conf")])
        assert ok.exit_code == 0
        denied = runner.invoke(app, ["check-command", "-a", str(allowed), "cat", "/etc/passwd"])
        assert denied.exit_code == 1


# ===========================================================================
# run
# ===========================================================================


class TestRun:
    """Executing through the Command Gate."""

    def test_stdout_echoed(self, runner):
        with patch(SPAWN, _spawn(stdout=b"Filesystem  Size\n/dev/sda1  40G\n")) as spawn:
            result = runner.invoke(app, ["run", "df", "-h"])
        assert result.exit_code == 0
        assert "/dev/sda1  40G" in result.output
        assert spawn.await_args.args[:2] == ("/usr/bin/df", "-h")

    def test_denied_exit_code(self, runner):
        with patch(SPAWN) as spawn:
            result = runner.invoke(app, ["run", "bash", "-c", "id"])
        assert result.exit_code == 126
        spawn.assert_not_called()

    def test_command_exit_code_propagated(self, runner):
        with patch(SPAWN, _spawn(stderr=b"inactive\n", returncode=3)):
            result = runner.invoke(app, ["run", "systemctl", "is-active", "nginx"])
        assert result.exit_code == 3

    def test_timeout_exit_code(self, runner):
        timed_out = CommandResult(
            stdout="",
            stderr="Command timed out after 1.0s",
            exit_code=-1,
            timed_out=True,
        )
        with patch("warden.cli.CommandGate.execute", AsyncMock(return_value=timed_out)):
            result = runner.invoke(app, ["run", "--timeout", "1", "uptime"])
        assert result.exit_code == 124


# ===========================================================================
# check-sql
# ===========================================================================


class TestCheckSql:
    """Data Isolation Gate verdicts."""

    def test_own_tables(self, runner):
        sql = "CREATE TABLE plugin_lift_sets (id INTEGER); SELECT * FROM plugin_lift_sets"
        result = runner.invoke(app, ["check-sql", "lift", sql])
        assert result.exit_code == 0
        assert "All statements stay within plugin_lift_*" in result.output

    def test_core_table(self, runner):
        result = runner.invoke(app, ["check-sql", "lift", "SELECT * FROM conversations"])
        assert result.exit_code == 1
        assert "core_table" in result.output

    def test_foreign_table(self, runner):
        result = runner.invoke(app, ["check-sql", "lift", "DELETE FROM plugin_cardio_runs"])
        assert result.exit_code == 1
        assert "foreign_table" in result.output

    def test_invalid_plugin_name(self, runner):
        result = runner.invoke(app, ["check-sql", "bad-name", "SELECT 1"])
        assert result.exit_code == 1


# ===========================================================================
# context
# ===========================================================================


class TestContext:
    """Context directory inspection."""

    def test_reports_files(self, runner, tmp_path):
        (tmp_path / "CLAUDE.md").write_text("Servers: web1")
        result = runner.invoke(app, ["context", str(tmp_path), "--show"])
        assert result.exit_code == 0
        assert "yes" in result.output
        assert "Servers: web1" in result.output

    def test_empty_directory_warns(self, runner, tmp_path):
        result = runner.invoke(app, ["context", str(tmp_path)])
        assert result.exit_code == 0
        assert "No context found" in result.output

    def test_unreadable_claude_md_warns(self, runner, tmp_path):
        (tmp_path / "CLAUDE.md").write_bytes(b"\xff\xfe caf\xe9")
        result = runner.invoke(app, ["context", str(tmp_path)])
        assert result.exit_code == 0
        assert "No context found" in result.output

    def test_system_directory_rejected(self, runner):
        result = runner.invoke(app, ["context", "/etc"])
        assert result.exit_code == 1


# ===========================================================================
# plugins
# ===========================================================================


class TestPluginsCommands:
    """plugins list / plugins validate."""

    def test_list_loaded_and_rejected(self, runner, plugins_dir, tmp_path):
        write_plugin(plugins_dir, "a_first", GOOD_PLUGIN)
        write_plugin(plugins_dir, "b_second", BAD_PLUGIN)
        result = runner.invoke(app, [
            "plugins", "list",
            "--dir", str(plugins_dir),
            "--database", f"sqlite:///{tmp_path / 'w.db'}",
        ])
        assert result.exit_code == 1
        assert "first:list_items" in result.output
        assert "Rejected second" in result.output
        assert "Total: 1 loaded, 1 rejected" in result.output

    def test_list_json(self, runner, plugins_dir, tmp_path):
        write_plugin(plugins_dir, "a_first", GOOD_PLUGIN)
        result = runner.invoke(app, [
            "plugins", "list",
            "--dir", str(plugins_dir),
            "--database", f"sqlite:///{tmp_path / 'w.db'}",
            "--format", "json",
        ])
        assert result.exit_code == 0
        assert '"prefix": "plugin_first_"' in result.output
        assert '"rejected": []' in result.output

    def test_list_empty_directory(self, runner, plugins_dir, tmp_path):
        result = runner.invoke(app, [
            "plugins", "list",
            "--dir", str(plugins_dir),
            "--database", f"sqlite:///{tmp_path / 'w.db'}",
        ])
        assert result.exit_code == 0
        assert "Total: 0 loaded, 0 rejected" in result.output

    def test_validate_good(self, runner, plugins_dir):
        path = write_plugin(plugins_dir, "first", GOOD_PLUGIN)
        result = runner.invoke(app, ["plugins", "validate", str(path)])
        assert result.exit_code == 0
        assert "first.py is a valid plugin" in result.output

    def test_validate_bad(self, runner, plugins_dir):
        path = write_plugin(plugins_dir, "second", BAD_PLUGIN)
        result = runner.invoke(app, ["plugins", "validate", str(path)])
        assert result.exit_code == 1
        assert "at least 3 characters" in result.output

    def test_validate_missing_file(self, runner, tmp_path):
        result = runner.invoke(app, ["plugins", "validate", str(tmp_path / "absent.py")])
        assert result.exit_code == 1
