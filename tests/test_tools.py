"""Tests for read tools."""

import pytest
from fastmcp import FastMCP

from devlog_mcp.errors import ValidationError
from devlog_mcp.indexer import AutoIndexer, QueryEngine, create_storage
from devlog_mcp.tools import register_tools


@pytest.fixture(params=["json", "embedded-db"])
def tools(request, doc_root):
    """Register the read tools over the sample tree and extract their functions."""
    indexer = AutoIndexer(create_storage(doc_root, request.param))
    mcp = FastMCP()
    register_tools(mcp, QueryEngine(indexer))

    extracted = {}
    for tool in mcp._tool_manager._tools.values():
        extracted[tool.fn.__name__] = tool.fn

    yield extracted

    indexer.close()


def test_all_read_tools_registered(tools):
    assert set(tools) == {
        "query_sessions",
        "query_plans",
        "query_patterns",
        "search_context",
        "rebuild_index",
    }


class TestQuerySessions:
    def test_no_filters(self, tools):
        result = tools["query_sessions"]()
        assert result["count"] == 3
        assert result["items"][0]["id"] == "2026-01-07-session"

    def test_filters_combined(self, tools):
        result = tools["query_sessions"](topic="parser", status="in-progress")
        assert [s["id"] for s in result["items"]] == ["2026-01-05-session"]

    def test_items_carry_no_body(self, tools):
        item = tools["query_sessions"](date="2026-01-05")["items"][0]
        assert "content" not in item
        assert "body" not in item

    def test_invalid_date(self, tools):
        with pytest.raises(ValidationError):
            tools["query_sessions"](date_before="05/01/2026")


class TestQueryPlans:
    def test_by_author(self, tools):
        result = tools["query_plans"](author="alice")
        assert [p["id"] for p in result["items"]] == ["auth-rewrite"]

    def test_invalid_status(self, tools):
        with pytest.raises(ValidationError, match="Invalid status"):
            tools["query_plans"](status="in-progress")


class TestQueryPatterns:
    def test_by_category(self, tools):
        result = tools["query_patterns"](category="parsing")
        assert result["items"][0]["triggers"] == ["yaml", "frontmatter"]

    def test_no_match(self, tools):
        assert tools["query_patterns"](keyword="docker") == {"count": 0, "items": []}


class TestSearchContext:
    def test_returns_line_hits(self, tools):
        result = tools["search_context"]("dead code")
        assert result["count"] == 1
        assert result["items"][0]["file"] == "sessions/2026-01-07-session.md"
        assert result["items"][0]["line"] == 4

    def test_scope(self, tools):
        result = tools["search_context"]("yaml", scope="patterns")
        assert result["scope"] == "pattern"
        assert {hit["kind"] for hit in result["items"]} == {"pattern"}


def test_rebuild_index(tools):
    stats = tools["rebuild_index"]()
    assert stats["indexed"] == 6
    assert stats["errors"] == []
