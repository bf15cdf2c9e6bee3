"""Shared fixtures: small document trees on disk."""

from pathlib import Path

import pytest

SESSION_JAN_05 = """---
date: 2026-01-05
status: in-progress
topics: [tdd, parser]
plan: auth-rewrite
files: [src/parser.py]
---
# Session: Parser work (Jan 5, 2026)

## Changes
Fixed the YAML parser
"""

SESSION_JAN_07 = """---
date: 2026-01-07
status: complete
topics: [refactor]
author: alice
---
# Session: Cleanup

## Changes
Removed dead code
Parser untouched
"""

SESSION_ARCHIVED = """---
date: 2025-12-01
status: COMPLETE
topics: [setup]
---
# Session: Project setup
"""

PLAN_AUTH = """---
id: auth-rewrite
title: Auth rewrite
status: active
author: alice
updated: 2026-01-06
topics: [auth, security]
---
# Auth rewrite

## Progress
- token storage moved
"""

PLAN_SEARCH = """---
id: search-v2
status: planned
author: bob
updated: 2026-01-02T10:00:00
---
# Search v2

Parser for the query language.
"""

PATTERN_YAML = """---
title: Quote YAML dates
triggers: [yaml, frontmatter]
category: parsing
created: 2026-01-03
---
# Quote YAML dates

Always quote date-like strings in YAML.
"""


def write_doc(root: Path, relative: str, text: str) -> Path:
    """Write a document below root, creating folders as needed."""
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def doc_root(tmp_path: Path) -> Path:
    """A document root with sessions, plans and one learned pattern."""
    root = tmp_path / ".aiknowsys"
    write_doc(root, "sessions/2026-01-05-session.md", SESSION_JAN_05)
    write_doc(root, "sessions/2026-01-07-session.md", SESSION_JAN_07)
    write_doc(root, "sessions/archive/2025-12-01-session.md", SESSION_ARCHIVED)
    write_doc(root, "plans/auth-rewrite.md", PLAN_AUTH)
    write_doc(root, "plans/search-v2.md", PLAN_SEARCH)
    write_doc(root, "learned/yaml-quoting.md", PATTERN_YAML)
    return root


@pytest.fixture
def empty_root(tmp_path: Path) -> Path:
    """A document root with empty kind folders."""
    root = tmp_path / ".aiknowsys"
    for folder in ("sessions", "plans", "learned"):
        (root / folder).mkdir(parents=True)
    return root
