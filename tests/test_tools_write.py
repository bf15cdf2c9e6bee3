"""Tests for write tools."""

from dataclasses import replace
from datetime import date
from pathlib import Path

import pytest
from fastmcp import FastMCP

from devlog_mcp.config import Config
from devlog_mcp.errors import AmbiguousAnchorError, ReadOnlyError
from devlog_mcp.indexer import AutoIndexer, DocumentStore, create_storage
from devlog_mcp.indexer.parser import parse_document
from devlog_mcp.tools_write import check_write_permission, register_tools_write

TODAY = date(2026, 1, 10)


def make_config(root: Path, read_only: bool = False) -> Config:
    return Config(
        root=root,
        backend="json",
        auto_rebuild=True,
        max_rebuild_seconds=2.0,
        sync_interval=0.0,
        port=8080,
        read_only=read_only,
        author="tester",
    )


def extract_tools(mcp: FastMCP) -> dict:
    return {tool.fn.__name__: tool.fn for tool in mcp._tool_manager._tools.values()}


@pytest.fixture
def root_and_tools(doc_root: Path):
    """Register the write tools over the sample tree."""
    config = make_config(doc_root)
    indexer = AutoIndexer(create_storage(doc_root, config.backend))
    store = DocumentStore(doc_root, indexer, clock=lambda: TODAY, author=config.author)

    mcp = FastMCP()
    register_tools_write(mcp, config, store)

    yield doc_root, extract_tools(mcp)

    indexer.close()


def header_of(path: Path) -> dict:
    return parse_document(path.read_text(encoding="utf-8")).header


class TestCreate:
    def test_create_session(self, root_and_tools):
        root, tools = root_and_tools
        result = tools["create_session"](topics=["tdd"], title="Indexing")

        assert result["created"] is True
        assert result["path"] == "sessions/2026-01-10-session.md"
        assert result["metadata"]["topics"] == ["tdd"]
        assert (root / result["path"]).exists()

    def test_create_session_twice(self, root_and_tools):
        _, tools = root_and_tools
        tools["create_session"](topics=["tdd"])
        result = tools["create_session"](topics=["other"])

        assert result["created"] is False
        assert result["message"] == "Session already exists: sessions/2026-01-10-session.md"

    def test_create_plan(self, root_and_tools):
        root, tools = root_and_tools
        result = tools["create_plan"](title="Release 1.0", status="active", topics=["release"])

        header = header_of(root / result["path"])
        assert result["path"] == "plans/release-10.md"
        assert header["status"] == "active"
        assert header["started"] == "2026-01-10"
        assert header["author"] == "tester"

    def test_create_pattern_with_content(self, root_and_tools):
        root, tools = root_and_tools
        result = tools["create_pattern"](
            title="Retry IO", triggers=["timeout"], content="# Retry IO\n\nBack off.\n"
        )
        assert (root / result["path"]).read_text(encoding="utf-8").endswith("Back off.\n")


class TestUpdate:
    def test_update_session(self, root_and_tools):
        root, tools = root_and_tools
        result = tools["update_session"](
            "2026-01-05", add_topics=["yaml"], add_files=["src/walker.py"], status="complete"
        )

        header = header_of(root / "sessions" / "2026-01-05-session.md")
        assert result["updated"] is True
        assert header["topics"] == ["tdd", "parser", "yaml"]
        assert header["files"] == ["src/parser.py", "src/walker.py"]
        assert header["status"] == "complete"

    def test_update_session_remove_topic(self, root_and_tools):
        root, tools = root_and_tools
        tools["update_session"]("2026-01-05", remove_topics=["parser"])
        assert header_of(root / "sessions" / "2026-01-05-session.md")["topics"] == ["tdd"]

    def test_update_plan_with_progress(self, root_and_tools):
        root, tools = root_and_tools
        result = tools["update_plan"]("auth-rewrite", progress="refresh tokens done")

        text = (root / "plans" / "auth-rewrite.md").read_text(encoding="utf-8")
        assert result["updated"] is True
        assert "- 2026-01-10: refresh tokens done\n" in text
        assert "appended to '## Progress'" in result["changes"]

    def test_update_plan_complete(self, root_and_tools):
        root, tools = root_and_tools
        tools["update_plan"]("search-v2", status="complete")
        header = header_of(root / "plans" / "search-v2.md")
        assert header["completed"] == "2026-01-10"
        assert header["updated"] == "2026-01-10"


class TestInsertSection:
    def test_insert_before(self, root_and_tools):
        root, tools = root_and_tools
        tools["insert_section"]("plan", "auth-rewrite", "Goal", "Replace sessions", before="Progress")

        text = (root / "plans" / "auth-rewrite.md").read_text(encoding="utf-8")
        assert "## Goal\nReplace sessions\n\n## Progress\n" in text

    def test_ambiguous_anchor(self, root_and_tools):
        root, tools = root_and_tools
        path = root / "learned" / "yaml-quoting.md"
        path.write_text(
            "---\ntitle: Quote YAML dates\ntriggers: [yaml]\n---\n## Example\n\n## Example\n",
            encoding="utf-8",
        )
        with pytest.raises(AmbiguousAnchorError) as exc_info:
            tools["insert_section"]("pattern", "yaml-quoting", "New", "x", after="Example")
        assert exc_info.value.lines == [5, 7]


class TestReadOnlyMode:
    def test_check_write_permission(self, tmp_path):
        check_write_permission(make_config(tmp_path))
        with pytest.raises(ReadOnlyError, match="read-only"):
            check_write_permission(make_config(tmp_path, read_only=True))

    def test_every_write_tool_refuses(self, doc_root: Path):
        config = replace(make_config(doc_root), read_only=True)
        indexer = AutoIndexer(create_storage(doc_root, "json"))
        mcp = FastMCP()
        register_tools_write(mcp, config, DocumentStore(doc_root, indexer))
        tools = extract_tools(mcp)
        before = {p: p.read_bytes() for p in doc_root.rglob("*.md")}

        calls = [
            lambda: tools["create_session"](topics=["x"]),
            lambda: tools["create_plan"](title="X"),
            lambda: tools["create_pattern"](title="X"),
            lambda: tools["update_session"]("2026-01-05", status="complete"),
            lambda: tools["update_plan"]("auth-rewrite", status="paused"),
            lambda: tools["insert_section"]("plan", "auth-rewrite", "X", "y"),
        ]
        for call in calls:
            with pytest.raises(ReadOnlyError):
                call()

        assert {p: p.read_bytes() for p in doc_root.rglob("*.md")} == before
        indexer.close()
