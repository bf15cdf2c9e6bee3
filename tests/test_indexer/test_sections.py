"""Tests for heading-based section editing."""

import pytest

from devlog_mcp.errors import AmbiguousAnchorError, AnchorNotFoundError
from devlog_mcp.indexer.sections import (
    append_to_section,
    find_headings,
    format_heading,
    insert_section,
    locate_anchor,
)

BODY = "# Title\n\n## Goal\nShip it\n\n## Changes\nNone yet\n"


class TestFindHeadings:
    def test_finds_levels_and_text(self):
        headings = find_headings(BODY)
        assert [(h.index, h.level, h.text) for h in headings] == [
            (0, 1, "Title"),
            (2, 2, "Goal"),
            (5, 2, "Changes"),
        ]

    def test_skips_fenced_code(self):
        body = "## Real\n```\n## Fake\n```\n~~~\n# Also fake\n~~~\n"
        assert [h.text for h in find_headings(body)] == ["Real"]


class TestLocateAnchor:
    def test_bare_text_matches_any_level(self):
        assert locate_anchor(BODY, "Goal").index == 2

    def test_marked_anchor_must_match_whole_line(self):
        assert locate_anchor(BODY, "## Goal").index == 2
        with pytest.raises(AnchorNotFoundError):
            locate_anchor(BODY, "### Goal")

    def test_match_is_exact_not_substring(self):
        with pytest.raises(AnchorNotFoundError, match="Heading not found: Go"):
            locate_anchor(BODY, "Go")

    def test_ambiguous_lists_all_lines(self):
        body = "## Notes\na\n\n## Notes\nb\n"
        with pytest.raises(AmbiguousAnchorError) as exc_info:
            locate_anchor(body, "Notes")
        assert exc_info.value.lines == [1, 4]
        assert "lines: 1, 4" in str(exc_info.value)

    def test_line_offset_shifts_reported_lines(self):
        body = "## Notes\na\n\n## Notes\nb\n"
        with pytest.raises(AmbiguousAnchorError) as exc_info:
            locate_anchor(body, "Notes", line_offset=3)
        assert exc_info.value.lines == [4, 7]


class TestInsertSection:
    def test_after_middle_section(self):
        result = insert_section(BODY, "Notes", "Remember", after="Goal")
        assert result == (
            "# Title\n\n## Goal\nShip it\n\n## Notes\nRemember\n\n## Changes\nNone yet\n"
        )

    def test_after_last_section(self):
        result = insert_section(BODY, "Notes", "Remember", after="Changes")
        assert result == (
            "# Title\n\n## Goal\nShip it\n\n## Changes\nNone yet\n\n## Notes\nRemember\n"
        )

    def test_after_parent_section_skips_children(self):
        body = "## Plan\n### Step 1\nx\n## Done\n"
        result = insert_section(body, "## Risks", "none", after="Plan")
        assert result == "## Plan\n### Step 1\nx\n\n## Risks\nnone\n\n## Done\n"

    def test_before(self):
        result = insert_section(BODY, "Notes", "Remember", before="Changes")
        assert result == (
            "# Title\n\n## Goal\nShip it\n\n## Notes\nRemember\n\n## Changes\nNone yet\n"
        )

    def test_without_anchor_appends_at_end(self):
        result = insert_section(BODY, "Notes", "Remember")
        assert result == BODY + "\n## Notes\nRemember\n"

    def test_into_empty_body(self):
        assert insert_section("", "Notes", "x") == "## Notes\nx\n"

    def test_heading_with_markers_is_kept(self):
        result = insert_section(BODY, "### Deep", "x")
        assert result.endswith("### Deep\nx\n")

    def test_both_anchors_rejected(self):
        with pytest.raises(ValueError):
            insert_section(BODY, "Notes", "x", after="Goal", before="Changes")

    def test_ambiguous_after(self):
        body = "## Notes\na\n\n## Notes\nb\n"
        with pytest.raises(AmbiguousAnchorError):
            insert_section(body, "New", "x", after="Notes")


class TestAppendToSection:
    def test_appends_to_existing_section(self):
        body = "# Plan\n\n## Progress\n- a\n\n## Next\nx\n"
        result = append_to_section(body, "Progress", "- b")
        assert result == "# Plan\n\n## Progress\n- a\n- b\n\n## Next\nx\n"

    def test_appends_to_last_section(self):
        body = "# Plan\n\n## Progress\n- a\n"
        assert append_to_section(body, "## Progress", "- b") == "# Plan\n\n## Progress\n- a\n- b\n"

    def test_creates_missing_section(self):
        body = "# Plan\n"
        assert append_to_section(body, "Progress", "- a") == "# Plan\n\n## Progress\n- a\n"

    def test_ambiguous_section(self):
        body = "## Progress\n- a\n## Progress\n- b\n"
        with pytest.raises(AmbiguousAnchorError):
            append_to_section(body, "Progress", "- c")


def test_format_heading():
    assert format_heading("Notes") == "## Notes"
    assert format_heading("  # Top ") == "# Top"
