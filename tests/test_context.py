"""Tests for warden.context."""

from __future__ import annotations

import os

import pytest

from warden.context import (
    ContextCache,
    build_combined_context,
    load_context_from_directory,
)
from warden.security.errors import AccessDenied


@pytest.fixture
def infra(tmp_path):
    """An infrastructure repo with a CLAUDE.md and a few context notes."""
    repo = tmp_path / "infra"
    notes = repo / ".claude" / "context"
    notes.mkdir(parents=True)
    (repo / "CLAUDE.md").write_text("Servers: web1, web2")
    (notes / "b_network.md").write_text("VLAN 10 is management")
    (notes / "a_hosts.yaml").write_text("web1: 10.0.0.1")
    (notes / "diagram.png").write_bytes(b"\x89PNG")
    (notes / ".env").write_text("TOKEN=x")
    (notes / "nested").mkdir()
    return repo


class TestLoadContext:
    """Reading one context directory."""

    def test_loads_claude_md_and_notes(self, infra):
        ctx = load_context_from_directory(str(infra))
        assert ctx.directory == os.path.realpath(infra)
        assert ctx.claude_md == "Servers: web1, web2"
        assert list(ctx.context_files) == ["a_hosts.yaml", "b_network.md"]
        assert not ctx.empty

    def test_combined_layout(self, infra):
        combined = load_context_from_directory(str(infra)).combined
        assert combined.startswith("## Infrastructure Context")
        assert "### From CLAUDE.md\n\nServers: web1, web2" in combined
        assert combined.index("#### a_hosts.yaml") < combined.index("#### b_network.md")

    def test_sensitive_and_binary_files_skipped(self, infra):
        ctx = load_context_from_directory(str(infra))
        assert ".env" not in ctx.context_files
        assert "diagram.png" not in ctx.context_files

    def test_empty_directory(self, tmp_path):
        ctx = load_context_from_directory(str(tmp_path))
        assert ctx.empty
        assert ctx.claude_md is None
        assert ctx.context_files == {}

    def test_undecodable_claude_md_skipped(self, infra):
        (infra / "CLAUDE.md").write_bytes(b"\xff\xfe caf\xe9")
        ctx = load_context_from_directory(str(infra))
        assert ctx.claude_md is None
        assert list(ctx.context_files) == ["a_hosts.yaml", "b_network.md"]

    def test_claude_md_directory_skipped(self, tmp_path):
        (tmp_path / "CLAUDE.md").mkdir()
        ctx = load_context_from_directory(str(tmp_path))
        assert ctx.claude_md is None
        assert ctx.empty

    def test_system_directory_rejected(self):
        with pytest.raises(AccessDenied):
            load_context_from_directory("/etc")

    def test_build_combined_without_content(self):
        assert build_combined_context(None, {}, "/srv/infra") == ""


class TestContextCache:
    """Per-alias caching."""

    def test_directory_read_once(self, infra):
        cache = ContextCache()
        first = cache.get(str(infra))
        (infra / "CLAUDE.md").write_text("changed")
        assert cache.get(str(infra)) is first

    def test_invalidate(self, infra):
        cache = ContextCache()
        cache.get(str(infra))
        (infra / "CLAUDE.md").write_text("changed")
        cache.invalidate()
        assert cache.get(str(infra)).claude_md == "changed"

    def test_aliases(self, infra, tmp_path):
        cache = ContextCache()
        cache.get(str(infra), alias="prod")
        cache.get(str(tmp_path), alias="lab")
        assert cache.aliases() == ["lab", "prod"]
        cache.invalidate("lab")
        assert cache.aliases() == ["prod"]

    def test_no_directory(self):
        assert ContextCache().get("") is None
