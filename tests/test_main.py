"""Tests for main module."""

import json
import logging
from pathlib import Path

import pytest

from devlog_mcp.config import Config
from devlog_mcp.main import build_services, create_server, format_result, main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("DEVLOG_ROOT", "DEVLOG_BACKEND", "DEVLOG_AUTO_REBUILD", "DEVLOG_READ_ONLY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DEVLOG_AUTHOR", "tester")


def run_cli(capsys, *argv: str) -> tuple[int, str, str]:
    code = main(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def test_create_server(doc_root, caplog):
    """Test create_server initializes all components."""
    config = Config.from_env(root_override=doc_root)

    with caplog.at_level(logging.INFO):
        mcp = create_server(config)

    assert mcp.name == "devlogMCP"
    log_messages = [record.message for record in caplog.records]
    assert any("Index rebuilt on startup" in msg for msg in log_messages)
    assert any("Registering read tools" in msg for msg in log_messages)
    assert any("Registering write tools" in msg for msg in log_messages)
    assert any("Server configured successfully" in msg for msg in log_messages)
    assert (doc_root / "context-index.json").exists()


def test_create_server_without_auto_rebuild_warns(doc_root, monkeypatch, caplog):
    monkeypatch.setenv("DEVLOG_AUTO_REBUILD", "false")
    config = Config.from_env(root_override=doc_root)

    with caplog.at_level(logging.INFO):
        create_server(config)

    assert "no index exists" in caplog.text
    assert not (doc_root / "context-index.json").exists()


def test_build_services_uses_backend(doc_root):
    config = Config.from_env(root_override=doc_root, backend_override="sqlite")
    services = build_services(config)
    try:
        assert services.indexer.storage.index_path == doc_root / "context-index.db"
        assert services.store.author == "tester"
    finally:
        services.close()


class TestCommands:
    def test_rebuild_index(self, doc_root, capsys):
        code, out, _ = run_cli(capsys, "--root", str(doc_root), "rebuild-index")
        assert code == 0
        assert out.startswith("Indexed 6 of 6 documents (session: 3, plan: 2, pattern: 1)")

    def test_query_sessions_json(self, doc_root, capsys):
        code, out, _ = run_cli(
            capsys, "--root", str(doc_root), "--json", "query-sessions", "--topic", "tdd"
        )
        assert code == 0
        result = json.loads(out)
        assert result["count"] == 1
        assert result["items"][0]["id"] == "2026-01-05-session"

    def test_query_plans_text(self, doc_root, capsys):
        code, out, _ = run_cli(capsys, "--root", str(doc_root), "query-plans", "--status", "active")
        assert code == 0
        assert out.splitlines()[0] == "Found 1 plans:"
        assert "auth-rewrite - Auth rewrite (auth, security)" in out

    def test_empty_query(self, doc_root, capsys):
        code, out, _ = run_cli(capsys, "--root", str(doc_root), "query-patterns", "--keyword", "docker")
        assert code == 0
        assert out.strip() == "No patterns found"

    def test_search(self, doc_root, capsys):
        code, out, _ = run_cli(
            capsys, "--root", str(doc_root), "--backend", "embedded-db", "search", "dead code"
        )
        assert code == 0
        assert "1 matches for 'dead code':" in out
        assert "sessions/2026-01-07-session.md:4: Removed dead code" in out

    def test_create_and_update_session(self, doc_root, capsys):
        code, out, _ = run_cli(
            capsys,
            "--root", str(doc_root),
            "create-session", "--date", "2026-01-09", "--topics", "tdd, cli",
        )
        assert code == 0
        assert out.strip() == "Created session: sessions/2026-01-09-session.md"

        code, out, _ = run_cli(
            capsys,
            "--root", str(doc_root),
            "update-session", "2026-01-09", "--add-topic", "refactor", "--add-topic", "tdd",
        )
        assert code == 0
        assert out.splitlines() == ["Updated sessions/2026-01-09-session.md", "  topics: +refactor"]

    def test_update_without_changes(self, doc_root, capsys):
        code, out, _ = run_cli(
            capsys, "--root", str(doc_root), "update-session", "2026-01-05", "--add-topic", "tdd"
        )
        assert code == 0
        assert out.strip() == "No changes to sessions/2026-01-05-session.md"

    def test_update_plan_progress(self, doc_root, capsys):
        code, _, _ = run_cli(
            capsys, "--root", str(doc_root), "update-plan", "search-v2", "--progress", "lexer done"
        )
        text = (doc_root / "plans" / "search-v2.md").read_text(encoding="utf-8")
        assert code == 0
        assert "## Progress\n- " in text
        assert text.rstrip().endswith(": lexer done")

    def test_insert_section(self, doc_root, capsys):
        code, out, _ = run_cli(
            capsys,
            "--root", str(doc_root),
            "insert-section", "session", "2026-01-07",
            "--heading", "Follow-up", "--content", "Check the parser", "--after", "Changes",
        )
        assert code == 0
        assert "inserted '## Follow-up' after 'Changes'" in out


class TestExitCodes:
    def test_validation_error_exits_1(self, doc_root, capsys):
        code, out, err = run_cli(
            capsys, "--root", str(doc_root), "update-session", "2026-01-05", "--status", "bogus"
        )
        assert code == 1
        assert out == ""
        assert err.startswith("Error: Invalid status: bogus")

    def test_error_as_json(self, doc_root, capsys):
        code, out, _ = run_cli(
            capsys, "--root", str(doc_root), "--json", "update-plan", "nope", "--status", "active"
        )
        assert code == 1
        assert json.loads(out) == {
            "error": {"type": "DocumentNotFoundError", "message": "No plan found for: nope"}
        }

    def test_ambiguous_anchor_json_lists_lines(self, doc_root, capsys):
        (doc_root / "plans" / "auth-rewrite.md").write_text(
            "---\nid: auth-rewrite\nstatus: active\nauthor: a\nupdated: 2026-01-06\n---\n"
            "## Notes\n\n## Notes\n",
            encoding="utf-8",
        )
        code, out, _ = run_cli(
            capsys,
            "--root", str(doc_root), "--json",
            "insert-section", "plan", "auth-rewrite", "--heading", "X", "--before", "Notes",
        )
        error = json.loads(out)["error"]
        assert code == 1
        assert error["type"] == "AmbiguousAnchorError"
        assert error["field"] == "anchor"
        assert error["lines"] == [7, 9]

    def test_missing_root_exits_1(self, tmp_path, capsys):
        code, _, err = run_cli(capsys, "--root", str(tmp_path / "missing"), "rebuild-index")
        assert code == 1
        assert "Document root is not a readable directory" in err

    def test_usage_error_exits_2(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["query-sessions", "--days", "many"])
        assert exc_info.value.code == 2

    def test_missing_command_exits_2(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 2


def test_format_rebuild_lists_skipped_documents():
    text = format_result(
        "rebuild-index",
        {
            "scanned": 2,
            "indexed": 1,
            "counts": {"session": 1, "plan": 0, "pattern": 0},
            "errors": [{"path": "plans/x.md", "error": "Unterminated metadata header"}],
            "duration": 0.01,
        },
    )
    assert text.splitlines() == [
        "Indexed 1 of 2 documents (session: 1, plan: 0, pattern: 0) in 0.01s",
        "  skipped plans/x.md: Unterminated metadata header",
    ]


def test_format_search_without_matches():
    assert format_result("search", {"query": "x", "items": [], "count": 0}) == "No matches for 'x'"
