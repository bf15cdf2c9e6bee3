"""Write tools for devlog-mcp - create and update session, plan and pattern documents."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from devlog_mcp.config import Config
from devlog_mcp.errors import ReadOnlyError
from devlog_mcp.indexer import DocumentKind, DocumentStore

if TYPE_CHECKING:
    from fastmcp import FastMCP

logger = logging.getLogger(__name__)


def check_write_permission(config: Config) -> None:
    """
    Check if write operations are allowed.

    Args:
        config: Config instance

    Raises:
        ReadOnlyError: If the server is in read-only mode
    """
    if config.read_only:
        logger.warning("Write operation rejected: server is in read-only mode")
        raise ReadOnlyError("Server is in read-only mode")


def register_tools_write(mcp: "FastMCP", config: Config, store: DocumentStore) -> None:
    """Register all write tools with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        config: Config instance (read-only flag)
        store: Document store performing the writes
    """

    @mcp.tool()
    def create_session(
        topics: list[str] | None = None,
        title: str | None = None,
        plan: str | None = None,
        date: str | None = None,
        status: str | None = None,
        files: list[str] | None = None,
    ) -> dict:
        """Create the session log for a day (today by default).

        An existing session for that day is never overwritten; the result
        then has created=false and an "already exists" message.

        Args:
            topics: Topic keywords
            title: Session title (default "Work Session")
            plan: Linked plan id
            date: Session date (YYYY-MM-DD)
            status: in-progress (default), complete or abandoned
            files: Files touched in the session

        Returns:
            Dict with created, path, message and metadata
        """
        check_write_permission(config)
        fields = {
            "date": date,
            "status": status,
            "topics": topics,
            "title": title,
            "plan": plan,
            "files": files,
        }
        return store.create(DocumentKind.SESSION, fields).to_dict()

    @mcp.tool()
    def create_plan(
        title: str,
        id: str | None = None,
        status: str | None = None,
        topics: list[str] | None = None,
        author: str | None = None,
    ) -> dict:
        """Create a plan document.

        Args:
            title: Plan title
            id: Plan id (default: derived from the title)
            status: planned (default), active, paused, complete or cancelled
            topics: Topic keywords
            author: Plan owner (default: the configured author)

        Returns:
            Dict with created, path, message and metadata
        """
        check_write_permission(config)
        fields = {"id": id, "title": title, "status": status, "topics": topics, "author": author}
        return store.create(DocumentKind.PLAN, fields).to_dict()

    @mcp.tool()
    def create_pattern(
        title: str,
        triggers: list[str] | None = None,
        category: str | None = None,
        content: str | None = None,
    ) -> dict:
        """Record a learned pattern.

        Args:
            title: Pattern title (the filename is derived from it)
            triggers: Keywords that should bring this pattern up
            category: Optional category
            content: Body text (default: a template to fill in)

        Returns:
            Dict with created, path, message and metadata
        """
        check_write_permission(config)
        fields = {"title": title, "triggers": triggers, "category": category}
        return store.create(DocumentKind.PATTERN, fields, body=content).to_dict()

    @mcp.tool()
    def update_session(
        session: str,
        add_topics: list[str] | None = None,
        remove_topics: list[str] | None = None,
        add_files: list[str] | None = None,
        status: str | None = None,
        title: str | None = None,
        plan: str | None = None,
    ) -> dict:
        """Update a session's metadata. The body is left untouched.

        Topics and files are only added when not already present.

        Args:
            session: Session id or date (e.g. "2026-01-05")
            add_topics: Topics to add
            remove_topics: Topics to remove
            add_files: Files to add
            status: New status (in-progress, complete or abandoned)
            title: New title
            plan: Linked plan id

        Returns:
            Dict with updated, path and the list of changes
        """
        check_write_permission(config)
        set_fields = {k: v for k, v in {"title": title, "plan": plan}.items() if v is not None}
        add = {k: v for k, v in {"topics": add_topics, "files": add_files}.items() if v}
        remove = {"topics": remove_topics} if remove_topics else None
        return store.update_metadata(
            DocumentKind.SESSION,
            session,
            set_fields=set_fields,
            add_to_lists=add,
            remove_from_lists=remove,
            status=status,
        ).to_dict()

    @mcp.tool()
    def update_plan(
        plan: str,
        status: str | None = None,
        add_topics: list[str] | None = None,
        title: str | None = None,
        progress: str | None = None,
    ) -> dict:
        """Update a plan's status or metadata, optionally logging progress.

        The plan's updated date is bumped; moving to active stamps started,
        moving to complete or cancelled stamps completed.

        Args:
            plan: Plan id
            status: New status
            add_topics: Topics to add
            title: New title
            progress: Note appended to the plan's "## Progress" section

        Returns:
            Dict with updated, path and the list of changes
        """
        check_write_permission(config)
        set_fields = {"title": title} if title is not None else None
        add = {"topics": add_topics} if add_topics else None
        result = store.update_metadata(
            DocumentKind.PLAN, plan, set_fields=set_fields, add_to_lists=add, status=status
        )
        if progress:
            entry = f"- {store.clock().isoformat()}: {progress}"
            note = store.append_to_section(DocumentKind.PLAN, plan, "## Progress", entry)
            result.updated = True
            result.changes.extend(note.changes)
        return result.to_dict()

    @mcp.tool()
    def insert_section(
        kind: str,
        id: str,
        heading: str,
        content: str,
        after: str | None = None,
        before: str | None = None,
    ) -> dict:
        """Insert a titled section into a document body.

        Anchors match heading lines exactly, with or without the leading '#'.
        An anchor matching several headings is rejected with every matching
        line number; nothing is written.

        Args:
            kind: session, plan or pattern
            id: Document id
            heading: New section heading ("## " is added when no '#' is given)
            content: Section content
            after: Insert after the section with this heading
            before: Insert right before this heading
                (with neither, the section is appended at the end)

        Returns:
            Dict with updated, path and the list of changes
        """
        check_write_permission(config)
        return store.insert_section(
            kind, id, heading, content, after=after, before=before
        ).to_dict()
