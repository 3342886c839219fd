"""Infrastructure context for the LLM system prompt.

A context directory (typically an infrastructure repo) may hold a
``CLAUDE.md`` and a ``.claude/context/`` folder of notes. Both are read
once, combined into one prompt section and cached per alias.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field

from warden.security.paths import PathPolicy, validate_context_dir

logger = logging.getLogger(__name__)

CONTEXT_FILE_NAME = "CLAUDE.md"
CONTEXT_SUBDIR = os.path.join(".claude", "context")
CONTEXT_EXTENSIONS = frozenset({".md", ".txt", ".yaml", ".yml", ".json", ""})
DEFAULT_ALIAS = "__default__"


@dataclass(frozen=True)
class LoadedContext:
    """Context read from one directory.

    Attributes:
        directory: Resolved context directory.
        claude_md: Contents of ``CLAUDE.md``, if present.
        context_files: ``.claude/context/`` file name -> contents.
        combined: Prompt section built from all of the above; empty when
            nothing was found.
    """

    directory: str
    claude_md: str | None = None
    context_files: dict[str, str] = field(default_factory=dict)
    combined: str = ""

    @property
    def empty(self) -> bool:
        return not self.combined


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def build_combined_context(
    claude_md: str | None,
    context_files: dict[str, str],
    directory: str,
) -> str:
    if not claude_md and not context_files:
        return ""

    parts = [f"## Infrastructure Context\n\nContext loaded from: `{directory}`"]
    if claude_md:
        parts.append(f"### From CLAUDE.md\n\n{claude_md}")
    if context_files:
        parts.append("### Additional Context Files")
        for name, content in context_files.items():
            parts.append(f"#### {name}\n\n{content}")
    return "\n\n".join(parts)


def load_context_from_directory(context_dir: str) -> LoadedContext:
    """Read ``CLAUDE.md`` and ``.claude/context/*`` from *context_dir*.

    Raises:
        AccessDenied: If *context_dir* fails ``validate_context_dir``.
    """
    directory = validate_context_dir(context_dir)
    sensitive = PathPolicy()

    claude_md: str | None = None
    claude_md_path = os.path.join(directory, CONTEXT_FILE_NAME)
    try:
        claude_md = _read_text(claude_md_path)
        logger.debug(f"Loaded {CONTEXT_FILE_NAME} from {directory}")
    except FileNotFoundError:
        logger.debug(f"No {CONTEXT_FILE_NAME} in {directory}")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to read {CONTEXT_FILE_NAME} in {directory}: {e}")

    context_files: dict[str, str] = {}
    subdir = os.path.join(directory, CONTEXT_SUBDIR)
    if os.path.isdir(subdir):
        with os.scandir(subdir) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            if not entry.is_file(follow_symlinks=False):
                continue
            if os.path.splitext(entry.name)[1].lower() not in CONTEXT_EXTENSIONS:
                continue
            if sensitive.sensitive_match(entry.path):
                logger.warning(f"Skipping sensitive context file: {entry.name}")
                continue
            try:
                context_files[entry.name] = _read_text(entry.path)
                logger.debug(f"Loaded context file: {entry.name}")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Failed to read context file {entry.name}: {e}")
    else:
        logger.debug(f"No {CONTEXT_SUBDIR} directory in {directory}")

    return LoadedContext(
        directory=directory,
        claude_md=claude_md,
        context_files=context_files,
        combined=build_combined_context(claude_md, context_files, directory),
    )


class ContextCache:
    """Loaded contexts keyed by alias; each directory is read once."""

    def __init__(self) -> None:
        self._cache: dict[str, LoadedContext] = {}
        self._lock = threading.Lock()

    def get(self, context_dir: str | None, alias: str = DEFAULT_ALIAS) -> LoadedContext | None:
        if not context_dir:
            return None
        with self._lock:
            cached = self._cache.get(alias)
            if cached is None:
                cached = load_context_from_directory(context_dir)
                self._cache[alias] = cached
            return cached

    def invalidate(self, alias: str | None = None) -> None:
        with self._lock:
            if alias is None:
                self._cache.clear()
            else:
                self._cache.pop(alias, None)

    def aliases(self) -> list[str]:
        with self._lock:
            return sorted(self._cache)
