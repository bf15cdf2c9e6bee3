"""File walker for discovering documents under the document root."""

import hashlib
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from devlog_mcp.indexer.models import KIND_ORDER, SCHEMAS, DocumentKind


@dataclass
class FileInfo:
    """Information about a discovered document file."""

    path: Path  # Absolute path
    relative_path: str  # Relative to the document root, always '/'-separated
    kind: DocumentKind
    filename: str
    mtime: float
    content_hash: str


def compute_hash(content: bytes) -> str:
    """Compute SHA-256 hash of content."""
    return hashlib.sha256(content).hexdigest()


def kind_dirs(root: Path, kinds: tuple[DocumentKind, ...] = KIND_ORDER) -> list[tuple[DocumentKind, Path]]:
    """Return (kind, directory) pairs for the given kinds."""
    return [(kind, root / SCHEMAS[kind].folder) for kind in kinds]


def _iter_markdown(folder: Path) -> Iterator[Path]:
    for file_path in sorted(folder.rglob("*.md")):
        if not file_path.is_file():
            continue
        # Skip hidden files and directories
        relative_parts = file_path.relative_to(folder).parts
        if any(part.startswith(".") for part in relative_parts):
            continue
        yield file_path


def walk_documents(root: Path, kinds: tuple[DocumentKind, ...] = KIND_ORDER) -> Iterator[FileInfo]:
    """
    Walk the document root and yield FileInfo for each document.

    Structure expected:
    <root>/
    ├── sessions/
    │   ├── 2026-01-05-session.md
    │   └── archive/2025-12-01-session.md
    ├── plans/
    │   └── auth-rewrite.md
    ├── learned/
    │   └── flaky-test-retries.md
    └── context-index.json   (never scanned)

    Missing kind directories are skipped. Errors reading a directory or a
    file propagate as OSError.
    """
    for kind, folder in kind_dirs(root, kinds):
        if not folder.is_dir():
            continue

        for file_path in _iter_markdown(folder):
            stat = file_path.stat()
            content = file_path.read_bytes()

            yield FileInfo(
                path=file_path,
                relative_path=file_path.relative_to(root).as_posix(),
                kind=kind,
                filename=file_path.name,
                mtime=stat.st_mtime,
                content_hash=compute_hash(content),
            )


def newest_mtime(root: Path, kinds: tuple[DocumentKind, ...] = KIND_ORDER) -> float:
    """
    Newest modification time among documents and their directories.

    Directory mtimes change when a file is added, renamed or deleted, so a
    removed document still makes the index stale. Returns 0.0 for an empty tree.
    """
    newest = 0.0
    for _, folder in kind_dirs(root, kinds):
        if not folder.is_dir():
            continue
        newest = max(newest, folder.stat().st_mtime)
        for path in folder.rglob("*"):
            relative_parts = path.relative_to(folder).parts
            if any(part.startswith(".") for part in relative_parts):
                continue
            try:
                if path.is_dir() or path.suffix == ".md":
                    newest = max(newest, path.stat().st_mtime)
            except FileNotFoundError:
                # Deleted between listing and stat
                continue
    return newest


def missing_kinds(root: Path, kinds: tuple[DocumentKind, ...] = KIND_ORDER) -> list[DocumentKind]:
    """Kinds whose folder does not exist (a removed folder leaves no mtime behind)."""
    return [kind for kind, folder in kind_dirs(root, kinds) if not folder.is_dir()]
