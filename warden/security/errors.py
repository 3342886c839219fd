"""Typed failure taxonomy shared by every gate.

Each failure carries a ``reason`` so callers (and tests) can assert on the
kind of rejection instead of matching message text:

    PolicyViolation     -- command not allowlisted, forbidden characters,
                           disallowed subcommand or flag
    AccessDenied        -- path outside allowed directories, sensitive
                           pattern, symlink escape, unsafe file content
    IsolationViolation  -- plugin SQL referencing a core or foreign table
    LifecycleFailure    -- plugin validation error, init failure or timeout

A process that runs and exits non-zero is *not* a failure here; the command
gate returns it as a normal ``CommandResult``.
"""

from __future__ import annotations

from enum import Enum


class FailureReason(str, Enum):
    """Machine-readable reason attached to every sandbox failure."""

    # Command gate
    NOT_ALLOWLISTED = "not_allowlisted"
    FORBIDDEN_CHARACTERS = "forbidden_characters"
    MISSING_SUBCOMMAND = "missing_subcommand"
    SUBCOMMAND_NOT_ALLOWED = "subcommand_not_allowed"
    FLAG_NOT_ALLOWED = "flag_not_allowed"
    MISSING_PATH = "missing_path"

    # Path gate
    OUTSIDE_ALLOWED_DIRS = "outside_allowed_dirs"
    UNSAFE_PATH = "unsafe_path"
    SENSITIVE_PATH = "sensitive_path"
    PARENT_REFERENCE = "parent_reference"
    RELATIVE_PATH = "relative_path"
    UNSAFE_CONTENT = "unsafe_content"

    # Data isolation gate
    CORE_TABLE = "core_table"
    FOREIGN_TABLE = "foreign_table"
    UNPREFIXED_TABLE = "unprefixed_table"
    INVALID_PLUGIN_NAME = "invalid_plugin_name"

    # Plugin lifecycle
    INVALID_PLUGIN = "invalid_plugin"
    IMPORT_FAILED = "import_failed"
    DUPLICATE = "duplicate"
    INIT_FAILED = "init_failed"
    TIMEOUT = "timeout"


class SandboxError(Exception):
    """Base class for every gate rejection.

    Attributes:
        reason: The machine-readable failure kind.
        message: Human-readable description, safe to show to the user.
    """

    def __init__(self, message: str, reason: FailureReason):
        self.message = message
        self.reason = reason
        super().__init__(message)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} reason={self.reason.value} message={self.message!r}>"


class PolicyViolation(SandboxError):
    """A command request failed the command policy."""


class AccessDenied(SandboxError):
    """A path failed the path policy.

    Attributes:
        path: The path as it was requested.
    """

    def __init__(self, message: str, reason: FailureReason, path: str | None = None):
        super().__init__(message, reason)
        self.path = path


class IsolationViolation(SandboxError):
    """Plugin SQL referenced a table outside the plugin's namespace.

    Attributes:
        plugin_name: The plugin that issued the statement.
        table: The offending table name.
    """

    def __init__(
        self,
        message: str,
        reason: FailureReason,
        plugin_name: str | None = None,
        table: str | None = None,
    ):
        super().__init__(message, reason)
        self.plugin_name = plugin_name
        self.table = table


class LifecycleFailure(SandboxError):
    """A plugin could not be loaded.

    Attributes:
        plugin_name: Name of the plugin, or the module file if no name
            could be read.
        errors: Individual validation errors, if any.
    """

    def __init__(
        self,
        plugin_name: str,
        message: str,
        reason: FailureReason,
        errors: list[str] | None = None,
    ):
        super().__init__(message, reason)
        self.plugin_name = plugin_name
        self.errors = list(errors or [])
