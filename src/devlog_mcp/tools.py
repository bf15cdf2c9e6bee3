"""MCP read tools for the devlog server.

This module defines the read tools exposed by the MCP server:
- query_sessions: Filter session logs by date, topic, plan or status
- query_plans: Filter plans by status, author, topic or update date
- query_patterns: Find learned patterns by keyword or category
- search_context: Substring search over document bodies
- rebuild_index: Force a full index rebuild

Every tool returns the query engine's dict unchanged.
"""

from fastmcp import FastMCP

from devlog_mcp.indexer import QueryEngine


def register_tools(mcp: FastMCP, engine: QueryEngine) -> None:
    """Register all read tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        engine: Query engine answering every read
    """

    @mcp.tool()
    def query_sessions(
        date: str | None = None,
        date_after: str | None = None,
        date_before: str | None = None,
        days: int | None = None,
        topic: str | None = None,
        plan: str | None = None,
        status: str | None = None,
    ) -> dict:
        """Query session logs, newest first.

        All given filters must match.

        Args:
            date: Exact session date (YYYY-MM-DD)
            date_after: Only sessions strictly after this date (YYYY-MM-DD)
            date_before: Only sessions strictly before this date (YYYY-MM-DD)
            days: Only sessions from the last N days
            topic: Substring of a topic or of the title (case-insensitive)
            plan: Linked plan id
            status: in-progress, complete or abandoned

        Returns:
            Dict with count and items (session metadata, no body)
        """
        return engine.query_sessions(
            date=date,
            date_after=date_after,
            date_before=date_before,
            days=days,
            topic=topic,
            plan=plan,
            status=status,
        )

    @mcp.tool()
    def query_plans(
        status: str | None = None,
        author: str | None = None,
        topic: str | None = None,
        updated_after: str | None = None,
        updated_before: str | None = None,
    ) -> dict:
        """Query plans, most recently updated first.

        Args:
            status: active, paused, planned, complete or cancelled
            author: Exact author name
            topic: Substring of a topic or of the title (case-insensitive)
            updated_after: Only plans updated strictly after this date (YYYY-MM-DD)
            updated_before: Only plans updated strictly before this date (YYYY-MM-DD)

        Returns:
            Dict with count and items (plan metadata, no body)
        """
        return engine.query_plans(
            status=status,
            author=author,
            topic=topic,
            updated_after=updated_after,
            updated_before=updated_before,
        )

    @mcp.tool()
    def query_patterns(keyword: str | None = None, category: str | None = None) -> dict:
        """Query learned patterns, newest first.

        Args:
            keyword: Substring of a trigger keyword or of the title
            category: Exact category

        Returns:
            Dict with count and items (pattern metadata, no body)
        """
        return engine.query_patterns(keyword=keyword, category=category)

    @mcp.tool()
    def search_context(query: str, scope: str = "all") -> dict:
        """Search document bodies for a substring (case-insensitive).

        No ranking: hits come grouped by kind (sessions, plans, patterns),
        then in each kind's query order, then by line.

        Args:
            query: Text to look for
            scope: "all", "sessions", "plans" or "patterns"

        Returns:
            Dict with query, scope, count and items. Each item is one matching
            line: kind, id, file, line (counted from the first body line) and
            context (the line text).
        """
        return engine.search(query, scope)

    @mcp.tool()
    def rebuild_index() -> dict:
        """Rebuild the index from the document files.

        Normally unnecessary: every query rebuilds a stale index first.

        Returns:
            Rebuild statistics: scanned, indexed, counts per kind, errors
            (path and message of each skipped document), built_at, duration
        """
        return engine.rebuild()
