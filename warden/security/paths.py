"""File-access gate.

Decides whether a path may be read before anything opens it. A path is
readable only when:

- neither its logical (lexically normalized) form nor its real
  (symlink-resolved) form matches a sensitive pattern,
- its real form is not under an unsafe prefix,
- its real form equals or is nested under an allowed prefix.

Both forms are screened for sensitive patterns because a traversal can be
disguised by a symlink in either direction.

Example:
    from warden.security.paths import PathGate, PathPolicy

    gate = PathGate(PathPolicy(allowed_prefixes=("/opt", "/var/log")))
    gate.check_path("/opt/app/../../etc/passwd").valid   # False
    gate.check_path("/opt/app/config.yaml").real_path    # "/opt/app/config.yaml"
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Iterable

from warden.security.errors import AccessDenied, FailureReason

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("warden.audit")


# Never readable, even when nested under an allowed prefix.
DEFAULT_UNSAFE_PREFIXES: tuple[str, ...] = (
    "/proc",
    "/sys",
    "/dev",
    "/boot",
    "/root",
)

# Matched case-insensitively against both the logical and the real path.
DEFAULT_SENSITIVE_PATTERNS: tuple[str, ...] = (
    r"/\.ssh(/|$)",
    r"id_rsa",
    r"id_dsa",
    r"id_ecdsa",
    r"id_ed25519",
    r"\.pem$",
    r"\.key$",
    r"\.p12$",
    r"\.pfx$",
    r"\.keystore$",
    r"/\.env(\.(?!example$)[^/]*)?$",
    r"/\.netrc$",
    r"/\.pgpass$",
    r"/\.aws(/|$)",
    r"/\.gnupg(/|$)",
    r"/\.docker/config\.json$",
    r"/\.kube/config$",
    r"/\.git-credentials$",
    r"^/etc/shadow",
    r"^/etc/gshadow",
    r"^/etc/sudoers",
    r"credentials",
    r"secrets?(/|\.|$)",
)

# Directories that may never serve as a context directory.
CONTEXT_UNSAFE_PREFIXES: tuple[str, ...] = (
    "/etc",
    "/var",
    "/usr",
    "/bin",
    "/sbin",
    "/lib",
    "/sys",
    "/proc",
    "/dev",
    "/root",
)

SAFE_TEXT_EXTENSIONS: frozenset[str] = frozenset({
    ".txt", ".md", ".rst", ".json", ".yaml", ".yml", ".toml", ".ini",
    ".cfg", ".conf", ".log",
    ".sh", ".bash", ".zsh", ".fish",
    ".ts", ".js", ".py", ".rb", ".go", ".rs", ".java", ".c", ".cpp", ".h",
    ".html", ".css", ".xml", ".svg", ".csv",
    ".example",
    ".gitignore", ".dockerignore", ".editorconfig",
    ".service", ".timer", ".socket",
})

BINARY_PROBE_BYTES = 8192


def _is_under(path: str, prefix: str) -> bool:
    """Component-wise prefix test: /home/user does not contain /home/username."""
    if prefix == os.sep:
        return path.startswith(os.sep)
    return path == prefix or path.startswith(prefix + os.sep)


def normalize_path(path: str) -> str:
    """Return the logical path: absolute, ``~`` expanded, ``.``/``..`` resolved.

    Does not touch the filesystem.
    """
    return os.path.normpath(os.path.abspath(os.path.expanduser(path)))


def resolve_real_path(logical: str) -> str:
    """Resolve symlinks; fall back to the logical path for missing targets.

    Existing ancestors of a missing target are still resolved, so a
    not-yet-created file inside a symlinked directory is judged by where
    it would really land.
    """
    try:
        return os.path.realpath(logical, strict=True)
    except OSError:
        return os.path.realpath(logical)


@dataclass(frozen=True)
class PathCheck:
    """Outcome of a path check.

    Attributes:
        valid: Whether the path may be read.
        real_path: The resolved path to open (only when valid).
        error: Why the path was denied (only when not valid).
        reason: Machine-readable denial kind (only when not valid).
    """

    valid: bool
    real_path: str | None = None
    error: str | None = None
    reason: FailureReason | None = None


@dataclass(frozen=True)
class ContentCheck:
    """Outcome of a content check."""

    valid: bool
    error: str | None = None


@dataclass(frozen=True)
class PathPolicy:
    """Static path policy.

    Attributes:
        allowed_prefixes: Directories under which reads are permitted.
        unsafe_prefixes: Directories always denied; veto allowed prefixes.
        sensitive_patterns: Regexes denied anywhere (case-insensitive).
    """

    allowed_prefixes: tuple[str, ...] = ()
    unsafe_prefixes: tuple[str, ...] = DEFAULT_UNSAFE_PREFIXES
    sensitive_patterns: tuple[str, ...] = DEFAULT_SENSITIVE_PATTERNS
    _compiled: tuple[re.Pattern[str], ...] = field(
        default=(), init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        # Prefixes are resolved once so a symlinked allowed directory
        # compares equal to the real paths beneath it.
        object.__setattr__(
            self,
            "allowed_prefixes",
            tuple(resolve_real_path(normalize_path(p)) for p in self.allowed_prefixes if p),
        )
        object.__setattr__(
            self,
            "unsafe_prefixes",
            tuple(normalize_path(p) for p in self.unsafe_prefixes if p),
        )
        object.__setattr__(
            self,
            "_compiled",
            tuple(re.compile(p, re.IGNORECASE) for p in self.sensitive_patterns),
        )

    @classmethod
    def from_dirs(cls, allowed_dirs: Iterable[str]) -> PathPolicy:
        """Build the default policy around a list of allowed directories."""
        return cls(allowed_prefixes=tuple(allowed_dirs))

    def sensitive_match(self, path: str) -> str | None:
        """Return the pattern that *path* matches, if any."""
        for pattern in self._compiled:
            if pattern.search(path):
                return pattern.pattern
        return None

    def unsafe_match(self, path: str) -> str | None:
        for prefix in self.unsafe_prefixes:
            if _is_under(path, prefix):
                return prefix
        return None

    def allowed_match(self, path: str) -> str | None:
        for prefix in self.allowed_prefixes:
            if _is_under(path, prefix):
                return prefix
        return None


class PathGate:
    """Validates file paths against a ``PathPolicy``.

    Checks are synchronous; the only filesystem access is symlink
    resolution. The gate holds no mutable state.
    """

    def __init__(self, policy: PathPolicy | None = None):
        self._policy = policy or PathPolicy()

    @property
    def policy(self) -> PathPolicy:
        return self._policy

    @property
    def allowed_prefixes(self) -> tuple[str, ...]:
        return self._policy.allowed_prefixes

    def check_path(self, path: str) -> PathCheck:
        """Decide whether *path* may be read.

        Args:
            path: Absolute or relative path as requested by the caller.

        Returns:
            PathCheck with ``real_path`` set when the path is readable.
        """
        if not path or "\x00" in path:
            return self._deny(path, "Invalid path", FailureReason.OUTSIDE_ALLOWED_DIRS)

        logical = normalize_path(path)
        real = resolve_real_path(logical)

        for candidate in (logical, real):
            if self._policy.sensitive_match(candidate):
                return self._deny(
                    path,
                    f"Access to sensitive path denied: {path}",
                    FailureReason.SENSITIVE_PATH,
                )

        unsafe = self._policy.unsafe_match(real)
        if unsafe is not None:
            return self._deny(
                path,
                f"Access denied: path is under protected system directory {unsafe}",
                FailureReason.UNSAFE_PATH,
            )

        if self._policy.allowed_match(real) is None:
            if real != logical and self._policy.allowed_match(logical) is not None:
                error = "Symlink target is outside allowed directories"
            else:
                error = "Access denied. File must be in one of the allowed directories"
            return self._deny(path, error, FailureReason.OUTSIDE_ALLOWED_DIRS)

        return PathCheck(valid=True, real_path=real)

    def require(self, path: str) -> str:
        """Like ``check_path`` but raise ``AccessDenied`` on denial.

        Returns:
            The real path to open.
        """
        result = self.check_path(path)
        if not result.valid:
            raise AccessDenied(result.error or "Access denied", result.reason or FailureReason.OUTSIDE_ALLOWED_DIRS, path)
        return result.real_path  # type: ignore[return-value]

    def is_allowed(self, path: str) -> bool:
        return self.check_path(path).valid

    def _deny(self, path: str, error: str, reason: FailureReason) -> PathCheck:
        audit_logger.warning(f"Path denied ({reason.value}): {path!r}")
        return PathCheck(valid=False, error=error, reason=reason)


def is_safe_extension(path: str) -> bool:
    """Check the file extension against the text-file allowlist.

    Extension-less files (Dockerfile, Makefile, LICENSE, ...) are allowed.
    """
    name = os.path.basename(path).lower()
    if name.endswith(".env.example"):
        return True
    _, ext = os.path.splitext(name)
    if ext == "":
        # Includes dotfiles such as .gitignore.
        return True
    return ext in SAFE_TEXT_EXTENSIONS


def check_content(path: str, probe_bytes: int = BINARY_PROBE_BYTES) -> ContentCheck:
    """Reject binary files and files with non-text extensions.

    Args:
        path: Path to an already policy-checked file.
        probe_bytes: How many leading bytes to scan for a null byte.
    """
    if not is_safe_extension(path):
        return ContentCheck(
            valid=False,
            error="Cannot read binary or unsupported file type. Only text files are supported.",
        )
    with open(path, "rb") as f:
        head = f.read(probe_bytes)
    if b"\x00" in head:
        return ContentCheck(
            valid=False,
            error="File contains binary data and cannot be read as text.",
        )
    return ContentCheck(valid=True)


def validate_context_dir(context_dir: str) -> str:
    """Validate a directory used as an LLM context source.

    Stricter than ``PathGate``: ``..`` segments are refused outright and a
    fixed set of OS directories is blocked.

    Returns:
        The resolved real path of the directory.

    Raises:
        AccessDenied: If the directory is not acceptable.
    """
    parts = context_dir.replace("\\", "/").split("/")
    if ".." in parts:
        raise AccessDenied(
            'Context directory path cannot contain ".." (parent directory references)',
            FailureReason.PARENT_REFERENCE,
            context_dir,
        )

    real = resolve_real_path(normalize_path(context_dir))
    for prefix in CONTEXT_UNSAFE_PREFIXES:
        if _is_under(real, prefix):
            raise AccessDenied(
                f"Context directory cannot be under system path: {prefix}",
                FailureReason.UNSAFE_PATH,
                context_dir,
            )
    return real
