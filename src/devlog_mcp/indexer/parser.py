"""Parser for YAML metadata headers and per-kind record extraction."""

import re
from datetime import date, datetime
from pathlib import PurePosixPath
from typing import Any, NamedTuple

import yaml

from devlog_mcp.errors import DocumentParseError, DocumentSchemaError, ValidationError
from devlog_mcp.indexer.models import (
    SCHEMAS,
    DocumentKind,
    PatternRecord,
    PlanRecord,
    Record,
    SessionRecord,
    check_date,
    check_status,
    check_timestamp,
)

DELIMITER = "---"

# Keeps flow-style lists on one line
HEADER_WIDTH = 4096

TITLE_PATTERN = re.compile(r"^#\s+(.+?)\s*$", re.MULTILINE)
SESSION_TITLE_PATTERN = re.compile(r"^Session:\s+(.+?)(?:\s+\([^)]*\))?$")


class ParsedDocument(NamedTuple):
    """A document split into its metadata header and body."""

    header: dict[str, Any]
    body: str


class _HeaderDumper(yaml.SafeDumper):
    """SafeDumper that writes lists in single-line bracketed form."""

    pass


def _represent_list(dumper: yaml.SafeDumper, data: list) -> yaml.Node:
    return dumper.represent_sequence("tag:yaml.org,2002:seq", data, flow_style=True)


_HeaderDumper.add_representer(list, _represent_list)


def _opens_header(text: str) -> bool:
    first_line = text.split("\n", 1)[0]
    return first_line.rstrip("\r") == DELIMITER


def _split_header(raw_text: str, path: str | None) -> tuple[str | None, str]:
    """Split raw text into (header_text, body). header_text is None if absent."""
    if not _opens_header(raw_text):
        return None, raw_text

    lines = raw_text.splitlines(keepends=True)
    for i in range(1, len(lines)):
        if lines[i].rstrip("\r\n") == DELIMITER:
            return "".join(lines[1:i]), "".join(lines[i + 1 :])

    raise DocumentParseError("Unterminated metadata header (missing closing '---')", path)


def _normalize_scalar(key: str, value: Any, path: str | None) -> Any:
    # datetime is a subclass of date, check it first
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (dict, list, set)):
        raise DocumentParseError(f"Field '{key}' must be a scalar or a list of scalars", path)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _normalize_header(raw: dict, path: str | None) -> dict[str, Any]:
    header: dict[str, Any] = {}
    for key, value in raw.items():
        name = str(key)
        if isinstance(value, list):
            header[name] = [_normalize_scalar(name, item, path) for item in value]
        else:
            header[name] = _normalize_scalar(name, value, path)
    return header


def parse_document(raw_text: str, path: str | None = None) -> ParsedDocument:
    """
    Parse a document into its metadata header and body.

    A missing header yields an empty mapping. Once the opening delimiter is
    seen the header must be terminated and must be a valid YAML mapping.

    Args:
        raw_text: Full text of the document
        path: Optional path used in error messages

    Returns:
        ParsedDocument(header, body)

    Raises:
        DocumentParseError: If the header is unterminated or malformed
    """
    header_text, body = _split_header(raw_text, path)
    if header_text is None:
        return ParsedDocument({}, body)

    # Out-of-range dates such as 2026-02-30 surface as ValueError
    try:
        raw = yaml.safe_load(header_text)
    except (yaml.YAMLError, ValueError) as e:
        raise DocumentParseError(f"Invalid YAML in metadata header: {e}", path) from e

    if raw is None:
        return ParsedDocument({}, body)
    if not isinstance(raw, dict):
        raise DocumentParseError("Metadata header must be a mapping of fields", path)

    return ParsedDocument(_normalize_header(raw, path), body)


def serialize_document(header: dict[str, Any], body: str) -> str:
    """Serialize a header and body back into document text."""
    if not header:
        if _opens_header(body):
            # Empty header block keeps the body from being read as a header
            return f"{DELIMITER}\n{DELIMITER}\n{body}"
        return body

    header_text = yaml.dump(
        dict(header),
        Dumper=_HeaderDumper,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=HEADER_WIDTH,
    )
    return f"{DELIMITER}\n{header_text}{DELIMITER}\n{body}"


def strip_header(raw_text: str) -> str:
    """Remove the metadata header, returning only the body."""
    return parse_document(raw_text).body


def first_heading(body: str) -> str | None:
    """Return the text of the first level-1 heading in the body."""
    match = TITLE_PATTERN.search(body)
    return match.group(1) if match else None


def _session_title(body: str) -> str | None:
    heading = first_heading(body)
    if heading is None:
        return None
    match = SESSION_TITLE_PATTERN.match(heading)
    return match.group(1) if match else heading


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item) for item in value if item is not None]
    # Hand-edited headers sometimes carry a single scalar
    return [str(value)]


def document_stem(relative_path: str) -> str:
    """Identifier of a document inside its kind folder ("archive/2026-01-05-session")."""
    parts = PurePosixPath(relative_path).with_suffix("").parts
    return "/".join(parts[1:]) if len(parts) > 1 else parts[0]


def validate_header(kind: DocumentKind, header: dict[str, Any], path: str | None = None) -> None:
    """
    Check a header against its kind's schema.

    Raises:
        DocumentSchemaError: On missing required fields, bad dates or statuses
    """
    schema = SCHEMAS[kind]
    missing = [name for name in schema.required if header.get(name) is None]
    if missing:
        raise DocumentSchemaError(
            f"Missing required {kind.value} field(s): {', '.join(missing)}", path
        )

    try:
        for name in schema.date_fields:
            if header.get(name) is not None:
                check_date(header[name], name)
        for name in schema.timestamp_fields:
            if header.get(name) is not None:
                check_timestamp(header[name], name)
        if schema.statuses:
            check_status(kind, header["status"])
    except ValidationError as e:
        raise DocumentSchemaError(str(e), path) from e


def extract_record(
    kind: DocumentKind,
    header: dict[str, Any],
    body: str,
    relative_path: str,
) -> Record:
    """
    Build the typed index record for a parsed document.

    Args:
        kind: Document kind (decided by folder)
        header: Parsed metadata header
        body: Document body
        relative_path: Path relative to the document root

    Returns:
        SessionRecord, PlanRecord or PatternRecord

    Raises:
        DocumentSchemaError: If the header violates the kind's schema
    """
    validate_header(kind, header, relative_path)
    stem = document_stem(relative_path)

    if kind is DocumentKind.SESSION:
        return SessionRecord(
            id=stem,
            file=relative_path,
            date=str(header["date"]),
            status=str(header["status"]).lower(),
            topics=_text_list(header.get("topics")),
            title=_text(header.get("title")) or _session_title(body),
            plan=_text(header.get("plan")),
            files=_text_list(header.get("files")),
            author=_text(header.get("author")),
        )

    if kind is DocumentKind.PLAN:
        return PlanRecord(
            id=str(header["id"]),
            file=relative_path,
            status=str(header["status"]).lower(),
            author=str(header["author"]),
            updated=str(header["updated"]),
            title=_text(header.get("title")) or first_heading(body),
            topics=_text_list(header.get("topics")),
            created=_text(header.get("created")),
            started=_text(header.get("started")),
            completed=_text(header.get("completed")),
        )

    return PatternRecord(
        id=stem,
        file=relative_path,
        title=str(header["title"]),
        triggers=_text_list(header.get("triggers")),
        category=_text(header.get("category")),
        author=_text(header.get("author")),
        created=_text(header.get("created")),
    )
