"""Main entry point for devlog-mcp: command line and MCP server."""

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from typing import Any

from fastmcp import FastMCP

from devlog_mcp.config import Config
from devlog_mcp.errors import AmbiguousAnchorError, DevlogError, ValidationError
from devlog_mcp.indexer import (
    AutoIndexer,
    DocumentKind,
    DocumentStore,
    IndexState,
    QueryEngine,
    create_storage,
)
from devlog_mcp.sync import SyncManager
from devlog_mcp.tools import register_tools
from devlog_mcp.tools_write import register_tools_write

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1


@dataclass
class Services:
    """The indexer stack built from one config."""

    indexer: AutoIndexer
    engine: QueryEngine
    store: DocumentStore

    def close(self) -> None:
        self.indexer.close()


def build_services(config: Config) -> Services:
    """Wire storage, auto-indexer, query engine and document store for a config."""
    storage = create_storage(config.root, config.backend)
    indexer = AutoIndexer(
        storage,
        config.root,
        enabled=config.auto_rebuild,
        max_rebuild_seconds=config.max_rebuild_seconds,
    )
    store = DocumentStore(config.root, indexer, author=config.author)
    return Services(indexer=indexer, engine=QueryEngine(indexer), store=store)


def create_server(config: Config, services: Services | None = None) -> FastMCP:
    """Create and configure the MCP server with all components.

    Args:
        config: Configuration instance with all settings.
        services: Indexer stack to serve (built from config when omitted).
    """
    mcp = FastMCP(
        name="devlogMCP",
        instructions=(
            "devlogMCP indexes development session logs, plans and learned patterns. "
            "Use the query tools to filter them by date, status, author or topic, "
            "search_context to find text inside documents, and the create/update "
            "tools to record work. Results always reflect the files on disk."
        ),
    )

    if services is None:
        services = build_services(config)

    logger.info("Using %s index at %s", config.backend, services.indexer.storage.index_path)
    if config.auto_rebuild:
        if services.indexer.ensure_fresh():
            logger.info("Index rebuilt on startup")
    elif services.indexer.check_state() is IndexState.MISSING:
        logger.warning("Auto-rebuild is disabled and no index exists; run rebuild-index")

    logger.info("Registering read tools...")
    register_tools(mcp, services.engine)

    logger.info("Registering write tools...")
    register_tools_write(mcp, config, services.store)

    logger.info("Server configured successfully")
    return mcp


def _csv(value: str) -> list[str]:
    """Argument type for comma-separated lists."""
    return [item.strip() for item in value.split(",") if item.strip()]


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="devlog-mcp",
        description="devlog-mcp - index and query development sessions, plans and patterns",
    )
    parser.add_argument("--root", help="Document root (default: $DEVLOG_ROOT or ./.aiknowsys)")
    parser.add_argument(
        "--backend",
        choices=["json", "embedded-db", "sqlite"],
        help="Index backend (default: $DEVLOG_BACKEND, config.json or json)",
    )
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("rebuild-index", help="Rebuild the index from the document files")

    p = sub.add_parser("query-sessions", help="Query session logs")
    p.add_argument("--date", help="Exact date (YYYY-MM-DD)")
    p.add_argument("--date-after", help="Strictly after this date")
    p.add_argument("--date-before", help="Strictly before this date")
    p.add_argument("--days", type=int, help="Only the last N days")
    p.add_argument("--topic", help="Topic or title substring")
    p.add_argument("--plan", help="Linked plan id")
    p.add_argument("--status", help="in-progress, complete or abandoned")

    p = sub.add_parser("query-plans", help="Query plans")
    p.add_argument("--status", help="active, paused, planned, complete or cancelled")
    p.add_argument("--author", help="Exact author")
    p.add_argument("--topic", help="Topic or title substring")
    p.add_argument("--updated-after", help="Updated strictly after this date")
    p.add_argument("--updated-before", help="Updated strictly before this date")

    p = sub.add_parser("query-patterns", help="Query learned patterns")
    p.add_argument("--keyword", help="Trigger or title substring")
    p.add_argument("--category", help="Exact category")

    p = sub.add_parser("search", help="Search document bodies")
    p.add_argument("query", help="Text to look for (case-insensitive)")
    p.add_argument("--scope", default="all", help="all, sessions, plans or patterns")

    p = sub.add_parser("create-session", help="Create a session log")
    p.add_argument("--topics", type=_csv, help="Comma-separated topics")
    p.add_argument("--title", help="Session title")
    p.add_argument("--plan", help="Linked plan id")
    p.add_argument("--date", help="Session date (default: today)")
    p.add_argument("--status", help="Initial status (default: in-progress)")
    p.add_argument("--files", type=_csv, help="Comma-separated touched files")

    p = sub.add_parser("create-plan", help="Create a plan")
    p.add_argument("--title", required=True, help="Plan title")
    p.add_argument("--id", help="Plan id (default: derived from the title)")
    p.add_argument("--status", help="Initial status (default: planned)")
    p.add_argument("--topics", type=_csv, help="Comma-separated topics")
    p.add_argument("--author", help="Plan owner")

    p = sub.add_parser("create-pattern", help="Record a learned pattern")
    p.add_argument("--title", required=True, help="Pattern title")
    p.add_argument("--triggers", type=_csv, help="Comma-separated trigger keywords")
    p.add_argument("--category", help="Pattern category")

    p = sub.add_parser("update-session", help="Update a session's metadata")
    p.add_argument("session", nargs="?", help="Session id or date (default: today)")
    p.add_argument("--add-topic", action="append", dest="add_topics", help="Add a topic")
    p.add_argument("--remove-topic", action="append", dest="remove_topics", help="Remove a topic")
    p.add_argument("--add-file", action="append", dest="add_files", help="Add a touched file")
    p.add_argument("--status", help="New status")
    p.add_argument("--title", help="New title")
    p.add_argument("--plan", help="Linked plan id")

    p = sub.add_parser("update-plan", help="Update a plan's status or metadata")
    p.add_argument("plan", help="Plan id")
    p.add_argument("--status", help="New status")
    p.add_argument("--add-topic", action="append", dest="add_topics", help="Add a topic")
    p.add_argument("--title", help="New title")
    p.add_argument("--progress", help="Note appended to the plan's Progress section")

    p = sub.add_parser("insert-section", help="Insert a titled section into a document")
    p.add_argument("kind", help="session, plan or pattern")
    p.add_argument("id", help="Document id")
    p.add_argument("--heading", required=True, help="New section heading")
    p.add_argument("--content", default="", help="Section content")
    anchor = p.add_mutually_exclusive_group()
    anchor.add_argument("--after", help="Insert after the section with this heading")
    anchor.add_argument("--before", help="Insert right before this heading")

    p = sub.add_parser("serve", help="Run the MCP server")
    p.add_argument(
        "--transport", choices=["stdio", "sse"], default="stdio", help="MCP transport"
    )
    p.add_argument("--host", default="127.0.0.1", help="Host for the sse transport")
    p.add_argument(
        "--read-only",
        action="store_true",
        help="Run in read-only mode (disable write tools)",
    )

    return parser


def run_command(args: argparse.Namespace, services: Services) -> dict[str, Any]:
    """Run one non-serve command and return its result dict."""
    engine = services.engine
    store = services.store
    command = args.command

    if command == "rebuild-index":
        return engine.rebuild()
    if command == "query-sessions":
        return engine.query_sessions(
            date=args.date,
            date_after=args.date_after,
            date_before=args.date_before,
            days=args.days,
            topic=args.topic,
            plan=args.plan,
            status=args.status,
        )
    if command == "query-plans":
        return engine.query_plans(
            status=args.status,
            author=args.author,
            topic=args.topic,
            updated_after=args.updated_after,
            updated_before=args.updated_before,
        )
    if command == "query-patterns":
        return engine.query_patterns(keyword=args.keyword, category=args.category)
    if command == "search":
        return engine.search(args.query, args.scope)

    if command == "create-session":
        fields = {
            "date": args.date,
            "status": args.status,
            "topics": args.topics,
            "title": args.title,
            "plan": args.plan,
            "files": args.files,
        }
        return store.create(DocumentKind.SESSION, fields).to_dict()
    if command == "create-plan":
        fields = {
            "id": args.id,
            "title": args.title,
            "status": args.status,
            "topics": args.topics,
            "author": args.author,
        }
        return store.create(DocumentKind.PLAN, fields).to_dict()
    if command == "create-pattern":
        fields = {"title": args.title, "triggers": args.triggers, "category": args.category}
        return store.create(DocumentKind.PATTERN, fields).to_dict()

    if command == "update-session":
        session = args.session or store.clock().isoformat()
        set_fields = {k: v for k, v in {"title": args.title, "plan": args.plan}.items() if v}
        add = {k: v for k, v in {"topics": args.add_topics, "files": args.add_files}.items() if v}
        remove = {"topics": args.remove_topics} if args.remove_topics else None
        return store.update_metadata(
            DocumentKind.SESSION,
            session,
            set_fields=set_fields,
            add_to_lists=add,
            remove_from_lists=remove,
            status=args.status,
        ).to_dict()
    if command == "update-plan":
        set_fields = {"title": args.title} if args.title else None
        add = {"topics": args.add_topics} if args.add_topics else None
        result = store.update_metadata(
            DocumentKind.PLAN, args.plan, set_fields=set_fields, add_to_lists=add, status=args.status
        )
        if args.progress:
            entry = f"- {store.clock().isoformat()}: {args.progress}"
            note = store.append_to_section(DocumentKind.PLAN, args.plan, "## Progress", entry)
            result.updated = True
            result.changes.extend(note.changes)
        return result.to_dict()
    if command == "insert-section":
        return store.insert_section(
            args.kind, args.id, args.heading, args.content, after=args.after, before=args.before
        ).to_dict()

    raise ValidationError(f"Unknown command: {command}", field="command")


def _format_record(item: dict[str, Any]) -> str:
    recency = item.get("date") or item.get("updated") or item.get("created") or "-"
    status = f"[{item['status']}] " if item.get("status") else ""
    tags = item.get("topics") or item.get("triggers") or []
    line = f"  {recency[:10]}  {status}{item['id']}"
    if item.get("title"):
        line += f" - {item['title']}"
    if tags:
        line += f" ({', '.join(tags)})"
    return line


def format_result(command: str, result: dict[str, Any]) -> str:
    """Human-readable rendering of a command result."""
    if command == "rebuild-index":
        counts = ", ".join(f"{kind}: {n}" for kind, n in result["counts"].items())
        lines = [
            f"Indexed {result['indexed']} of {result['scanned']} documents "
            f"({counts}) in {result['duration']:.2f}s"
        ]
        for error in result["errors"]:
            lines.append(f"  skipped {error['path']}: {error['error']}")
        return "\n".join(lines)

    if command.startswith("query-"):
        noun = command.removeprefix("query-")
        if not result["items"]:
            return f"No {noun} found"
        return "\n".join([f"Found {result['count']} {noun}:"] + [_format_record(i) for i in result["items"]])

    if command == "search":
        if not result["items"]:
            return f"No matches for '{result['query']}'"
        lines = [f"{result['count']} matches for '{result['query']}':"]
        lines.extend(f"  {hit['file']}:{hit['line']}: {hit['context']}" for hit in result["items"])
        return "\n".join(lines)

    if command.startswith("create-"):
        return result["message"]

    if not result["updated"]:
        return f"No changes to {result['path']}"
    return "\n".join([f"Updated {result['path']}"] + [f"  {c}" for c in result["changes"]])


def _error_payload(error: Exception) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": type(error).__name__, "message": str(error)}
    if isinstance(error, ValidationError) and error.field:
        payload["field"] = error.field
    if isinstance(error, AmbiguousAnchorError):
        payload["lines"] = error.lines
    return {"error": payload}


def serve(args: argparse.Namespace, config: Config) -> int:
    """Run the MCP server until interrupted."""
    if args.read_only:
        config.read_only = True

    logger.info("=" * 50)
    logger.info("devlogMCP starting...")
    logger.info("  DEVLOG_ROOT:    %s", config.root)
    logger.info("  BACKEND:        %s", config.backend)
    logger.info("  AUTO_REBUILD:   %s", config.auto_rebuild)
    logger.info("  SYNC_INTERVAL:  %s", config.sync_interval or "disabled")
    logger.info("  READ_ONLY:      %s", config.read_only)
    logger.info("=" * 50)

    services = build_services(config)
    sync_mgr: SyncManager | None = None
    try:
        mcp = create_server(config, services)
        if config.sync_interval > 0:
            sync_mgr = SyncManager(services.indexer, config.sync_interval)
            sync_mgr.start()

        if args.transport == "sse":
            logger.info("Starting MCP server on %s:%s...", args.host, config.port)
            mcp.run(transport="sse", host=args.host, port=config.port)
        else:
            mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    finally:
        if sync_mgr is not None:
            sync_mgr.stop()
        services.close()
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Main function - runs one command and returns the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging here to avoid side effects on import
    verbose = args.verbose or args.command == "serve"
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = Config.from_env(root_override=args.root, backend_override=args.backend)
        if args.command == "serve":
            return serve(args, config)

        services = build_services(config)
        try:
            result = run_command(args, services)
        finally:
            services.close()
    except (DevlogError, ValueError) as e:
        if args.json:
            print(json.dumps(_error_payload(e), indent=2))
        else:
            print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    if args.json:
        print(json.dumps(result, indent=2, ensure_ascii=False))
    else:
        print(format_result(args.command, result))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
