"""Document mutations: write the file, then rebuild the index.

Every operation here writes the document directly (never through a storage
adapter) and finishes with a full rebuild, so the rebuild path stays the only
producer of index state.
"""

from __future__ import annotations

import copy
import getpass
import logging
import os
import re
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Any

from devlog_mcp.errors import DocumentNotFoundError, DocumentParseError, ValidationError
from devlog_mcp.indexer import sections
from devlog_mcp.indexer.models import (
    SCHEMAS,
    DocumentKind,
    check_date,
    check_status,
    check_timestamp,
)
from devlog_mcp.indexer.parser import parse_document, serialize_document
from devlog_mcp.indexer.storage import atomic_write_text
from devlog_mcp.indexer.walker import walk_documents

if TYPE_CHECKING:
    from devlog_mcp.indexer.auto_index import AutoIndexer

logger = logging.getLogger(__name__)

SESSION_TEMPLATE = """\
# Session: {title} ({date})

## Goal
[Describe what you're trying to accomplish this session]

## Changes
[Document changes as you make them]

## Notes for Next Session
[Important context to remember]
"""

PLAN_TEMPLATE = """\
# {title}

## Goal
[Describe the objective of this plan]

## Implementation Steps
[List the steps]

## Progress

## Testing & Validation
[How to verify the work is complete]
"""

PATTERN_TEMPLATE = """\
# {title}

## Trigger
{triggers}

## Solution
[Describe the reusable fix or approach]
"""

DEFAULT_SESSION_TITLE = "Work Session"

# Plan statuses that stamp a completion date
FINISHED_PLAN_STATUSES = ("complete", "cancelled")


def default_author() -> str:
    """Author from DEVLOG_AUTHOR, falling back to the login name."""
    author = os.environ.get("DEVLOG_AUTHOR", "").strip()
    if author:
        return author
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def slugify(text: str) -> str:
    """Turn a title into a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", str(text).lower())
    return re.sub(r"[-\s]+", "-", slug).strip("-")


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return [str(value)]


@dataclass
class CreateResult:
    """Outcome of a create call."""

    created: bool
    path: str
    message: str
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class UpdateResult:
    """Outcome of an update or section edit."""

    updated: bool
    path: str
    changes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DocumentStore:
    """
    Create and edit documents, keeping the index in step.

    Each call is one logical step from the caller's point of view: the
    document is written atomically, then the index is fully rebuilt. Input
    problems are rejected before anything is written.
    """

    def __init__(
        self,
        root: Path,
        indexer: AutoIndexer,
        clock: Callable[[], date] = date.today,
        author: str | None = None,
    ):
        """
        Args:
            root: Document root
            indexer: Auto-indexer whose rebuild runs after every write
            clock: Returns today's date (injectable for tests)
            author: Default author for new documents
        """
        self.root = Path(root)
        self.indexer = indexer
        self.clock = clock
        self.author = author

    def _today(self) -> str:
        return self.clock().isoformat()

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _folder(self, kind: DocumentKind) -> Path:
        return self.root / SCHEMAS[kind].folder

    def _safe_path(self, kind: DocumentKind, name: str) -> Path:
        """Resolve `<folder>/<name>.md`, refusing paths that escape the folder."""
        if not name or ".." in name or "\\" in name:
            raise ValidationError(f"Invalid {kind.value} identifier: {name!r}", field="id")

        folder = self._folder(kind).resolve()
        file_path = (folder / f"{name}.md").resolve()
        if not str(file_path).startswith(str(folder) + os.sep):
            raise ValidationError(f"Path outside {folder.name}/: {name}", field="id")
        return file_path

    # Create

    def _check_fields(
        self, kind: DocumentKind, header: dict[str, Any], allow_extra: bool = False
    ) -> None:
        """Validate a header about to be written."""
        schema = SCHEMAS[kind]
        unknown = [name for name in header if name not in schema.fields]
        if unknown and not allow_extra:
            raise ValidationError(
                f"Unknown {kind.value} field(s): {', '.join(unknown)}. "
                f"Valid fields: {', '.join(schema.fields)}",
                field=unknown[0],
            )
        missing = [name for name in schema.required if header.get(name) in (None, "")]
        if missing:
            raise ValidationError(
                f"Missing required {kind.value} field(s): {', '.join(missing)}",
                field=missing[0],
            )
        for name in schema.date_fields:
            if header.get(name) is not None:
                header[name] = check_date(header[name], name)
        for name in schema.timestamp_fields:
            if header.get(name) is not None:
                header[name] = check_timestamp(header[name], name)
        if schema.statuses:
            header["status"] = check_status(kind, header["status"])

    def _ordered(self, kind: DocumentKind, values: dict[str, Any]) -> dict[str, Any]:
        """Header in schema field order, dropping unset optional fields."""
        schema = SCHEMAS[kind]
        header: dict[str, Any] = {}
        for name in schema.fields:
            if name in schema.list_fields and name in schema.required:
                header[name] = _as_list(values.get(name))
            elif values.get(name) is not None:
                value = values[name]
                header[name] = _as_list(value) if name in schema.list_fields else value
        # Unknown keys are kept so validation can report them
        header.update({k: v for k, v in values.items() if k not in schema.fields})
        return header

    def _new_session(self, values: dict[str, Any]) -> tuple[str, dict[str, Any], str]:
        values.setdefault("date", self._today())
        values.setdefault("status", "in-progress")
        values.setdefault("topics", [])
        values.setdefault("author", self.author or default_author())
        header = self._ordered(DocumentKind.SESSION, values)
        self._check_fields(DocumentKind.SESSION, header)

        title = header.get("title") or DEFAULT_SESSION_TITLE
        body = SESSION_TEMPLATE.format(title=title, date=header["date"])
        return f"{header['date']}-session", header, body

    def _new_plan(self, values: dict[str, Any]) -> tuple[str, dict[str, Any], str]:
        if not values.get("id"):
            if not values.get("title"):
                raise ValidationError("A plan needs an id or a title", field="id")
            values["id"] = slugify(values["title"])
        today = self._today()
        values.setdefault("status", "planned")
        values.setdefault("author", self.author or default_author())
        values.setdefault("updated", today)
        values.setdefault("created", today)
        header = self._ordered(DocumentKind.PLAN, values)
        self._check_fields(DocumentKind.PLAN, header)
        self._stamp_plan_transition(header, header["status"])

        title = header.get("title") or header["id"]
        return str(header["id"]), header, PLAN_TEMPLATE.format(title=title)

    def _new_pattern(self, values: dict[str, Any]) -> tuple[str, dict[str, Any], str]:
        if not values.get("title"):
            raise ValidationError("A pattern needs a title", field="title")
        values.setdefault("triggers", [])
        values.setdefault("created", self._today())
        values.setdefault("author", self.author or default_author())
        header = self._ordered(DocumentKind.PATTERN, values)
        self._check_fields(DocumentKind.PATTERN, header)

        triggers = "\n".join(f"- {t}" for t in header["triggers"]) or "[When does this apply?]"
        body = PATTERN_TEMPLATE.format(title=header["title"], triggers=triggers)
        return slugify(header["title"]), header, body

    def create(
        self,
        kind: DocumentKind | str,
        fields: dict[str, Any] | None = None,
        body: str | None = None,
    ) -> CreateResult:
        """
        Create a document with a canonical filename.

        Sessions are named `<date>-session.md`, plans `<id>.md` and patterns
        `<title slug>.md`. An existing file is never overwritten: the call
        returns `created=False` instead.

        Args:
            kind: Document kind
            fields: Initial header values (unset fields get defaults)
            body: Document body (defaults to the kind's template)

        Raises:
            ValidationError: On unknown fields or invalid values
        """
        kind = DocumentKind.parse(kind)
        values = {k: v for k, v in (fields or {}).items() if v is not None}

        builders = {
            DocumentKind.SESSION: self._new_session,
            DocumentKind.PLAN: self._new_plan,
            DocumentKind.PATTERN: self._new_pattern,
        }
        name, header, template = builders[kind](values)
        if not name:
            raise ValidationError(f"Cannot derive a filename for this {kind.value}", field="title")

        file_path = self._safe_path(kind, name)
        relative = self._relative(file_path)
        if file_path.exists():
            logger.info("Not creating %s: already exists", relative)
            return CreateResult(
                created=False,
                path=relative,
                message=f"{kind.value.capitalize()} already exists: {relative}",
            )

        text = serialize_document(header, template if body is None else body)
        atomic_write_text(file_path, text)
        logger.info("Created %s: %s", kind.value, relative)

        self.indexer.rebuild()
        return CreateResult(
            created=True,
            path=relative,
            message=f"Created {kind.value}: {relative}",
            metadata=header,
        )

    # Locate and load

    def locate(self, kind: DocumentKind | str, identifier: str) -> Path:
        """
        Find the file of an existing document.

        Sessions accept their id or their date, plans their header id, and
        patterns their id or title.

        Raises:
            DocumentNotFoundError: If no document matches
        """
        kind = DocumentKind.parse(kind)
        identifier = str(identifier).strip()

        candidates = [identifier]
        if kind is DocumentKind.SESSION:
            candidates.append(f"{identifier}-session")
        elif kind is DocumentKind.PATTERN:
            candidates.append(slugify(identifier))

        for name in candidates:
            if not name:
                continue
            file_path = self._safe_path(kind, name)
            if file_path.is_file():
                return file_path

        if kind is DocumentKind.PLAN:
            # Plan ids live in the header; the filename may differ
            for file_info in walk_documents(self.root, (DocumentKind.PLAN,)):
                try:
                    header = parse_document(file_info.path.read_text(encoding="utf-8")).header
                except (DocumentParseError, UnicodeDecodeError):
                    continue
                if str(header.get("id")) == identifier:
                    return file_info.path

        raise DocumentNotFoundError(kind.value, identifier)

    def _load(
        self, kind: DocumentKind, identifier: str
    ):
        """Read a target document, returning its text with LF endings and the file's own line ending."""
        """Read a target document. Text is returned with "\n" line endings plus the file's own ending."""
        file_path = self.locate(kind, identifier)
        with open(file_path, encoding="utf-8", newline="") as f:
            raw_text = f.read()
        newline = "\r\n" if "\r\n" in raw_text else "\n"
        raw_text = raw_text.replace("\r\n", "\n")
        # A broken target document is fatal here, unlike during a rebuild
        header, body = parse_document(raw_text, self._relative(file_path))
        return file_path, raw_text, header, body, newline

    # Update

    def _stamp_plan_transition(self, header: dict[str, Any], status: str) -> list[str]:
        changes = []
        today = self._today()
        if status == "active" and not header.get("started"):
            header["started"] = today
            changes.append(f"started: {today}")
        if status in FINISHED_PLAN_STATUSES and not header.get("completed"):
            header["completed"] = today
            changes.append(f"completed: {today}")
        return changes

    def update_metadata(
        self,
        kind: DocumentKind | str,
        identifier: str,
        set_fields: dict[str, Any] | None = None,
        add_to_lists: dict[str, Any] | None = None,
        remove_from_lists: dict[str, Any] | None = None,
        status: str | None = None,
    ) -> UpdateResult:
        """
        Change header fields of an existing document, keeping its body.

        List additions are append-if-absent; removals drop every matching
        entry. Scalar fields are overwritten. A status is validated against
        the kind's allowed values. Plans get `updated` bumped to today and
        `started`/`completed` stamped on the matching transitions.

        Raises:
            DocumentNotFoundError: If the target does not exist
            DocumentParseError: If the target's header is malformed
            ValidationError: On unknown fields or invalid values
        """
        kind = DocumentKind.parse(kind)
        schema = SCHEMAS[kind]
        file_path, _, header, body, newline = self._load(kind, identifier)
        original = copy.deepcopy(header)
        changes: list[str] = []

        updates = dict(set_fields or {})
        if status is not None:
            updates["status"] = status

        for name, value in updates.items():
            if name not in schema.fields:
                raise ValidationError(
                    f"Unknown {kind.value} field: {name}. Valid fields: {', '.join(schema.fields)}",
                    field=name,
                )
            if kind is DocumentKind.PLAN and name == "id":
                raise ValidationError("A plan id cannot be changed", field="id")
            if name == "status" and schema.statuses:
                value = check_status(kind, value)
            if name in schema.list_fields:
                value = _as_list(value)
            if header.get(name) != value:
                changes.append(f"{name}: {header.get(name)!r} -> {value!r}")
                header[name] = value

        for label, mapping in (("+", add_to_lists), ("-", remove_from_lists)):
            for name, values in (mapping or {}).items():
                if name not in schema.list_fields:
                    raise ValidationError(
                        f"{name} is not a list field of {kind.value}. "
                        f"List fields: {', '.join(schema.list_fields)}",
                        field=name,
                    )
                current = _as_list(header.get(name))
                for value in _as_list(values):
                    if label == "+" and value not in current:
                        current.append(value)
                        changes.append(f"{name}: +{value}")
                    elif label == "-" and value in current:
                        current = [item for item in current if item != value]
                        changes.append(f"{name}: -{value}")
                header[name] = current

        if kind is DocumentKind.PLAN and "status" in updates:
            changes.extend(self._stamp_plan_transition(header, header["status"]))

        relative = self._relative(file_path)
        if header == original:
            logger.info("No changes for %s", relative)
            return UpdateResult(updated=False, path=relative)

        if kind is DocumentKind.PLAN:
            today = self._today()
            if "updated" not in updates and header.get("updated") != today:
                header["updated"] = today
                changes.append(f"updated: {today}")

        self._check_fields(kind, header, allow_extra=True)
        self._write(file_path, serialize_document(header, body), newline)
        logger.info("Updated %s: %s", relative, "; ".join(changes))

        self.indexer.rebuild()
        return UpdateResult(updated=True, path=relative, changes=changes)

    # Body sections

    def _write(self, file_path: Path, text: str, newline: str) -> None:
        if newline != "\n":
            text = text.replace("\n", newline)
        atomic_write_text(file_path, text)

    def _write_body(
        self, file_path: Path, raw_text: str, body: str, new_body: str, newline: str
    ) -> None:
        # The header text is kept as is; only the body changes
        prefix = raw_text[: len(raw_text) - len(body)]
        self._write(file_path, prefix + new_body, newline)

    def insert_section(
        self,
        kind: DocumentKind | str,
        identifier: str,
        heading: str,
        content: str,
        after: str | None = None,
        before: str | None = None,
    ) -> UpdateResult:
        """
        Insert a new titled section into a document body.

        Args:
            kind: Document kind
            identifier: Document id
            heading: New section heading ("## " is added without markers)
            content: Section content
            after: Insert after the section with this heading
            before: Insert right before this heading
                (with neither, the section is appended at the end)

        Raises:
            AnchorNotFoundError: If the anchor heading does not exist
            AmbiguousAnchorError: If the anchor matches several headings;
                the error lists every matching line number
        """
        kind = DocumentKind.parse(kind)
        if not heading or not heading.strip():
            raise ValidationError("Section heading must not be empty", field="heading")
        if after and before:
            raise ValidationError("Use either 'after' or 'before', not both", field="after")

        file_path, raw_text, _, body, newline = self._load(kind, identifier)
        line_offset = raw_text[: len(raw_text) - len(body)].count("\n")
        new_body = sections.insert_section(
            body, heading, content or "", after=after, before=before, line_offset=line_offset
        )

        relative = self._relative(file_path)
        self._write_body(file_path, raw_text, body, new_body, newline)
        position = f"after {after!r}" if after else f"before {before!r}" if before else "at end"
        logger.info("Inserted section %r %s in %s", heading, position, relative)

        self.indexer.rebuild()
        return UpdateResult(
            updated=True,
            path=relative,
            changes=[f"inserted {sections.format_heading(heading)!r} {position}"],
        )

    def append_to_section(
        self,
        kind: DocumentKind | str,
        identifier: str,
        heading: str,
        content: str,
    ) -> UpdateResult:
        """
        Append content to a section, creating the section at the end if needed.

        Raises:
            AmbiguousAnchorError: If the heading matches several sections
        """
        kind = DocumentKind.parse(kind)
        if not heading or not heading.strip():
            raise ValidationError("Section heading must not be empty", field="heading")
        if not content or not content.strip():
            raise ValidationError("Content must not be empty", field="content")

        file_path, raw_text, _, body, newline = self._load(kind, identifier)
        line_offset = raw_text[: len(raw_text) - len(body)].count("\n")
        new_body = sections.append_to_section(body, heading, content, line_offset=line_offset)

        relative = self._relative(file_path)
        self._write_body(file_path, raw_text, body, new_body, newline)
        logger.info("Appended to section %r in %s", heading, relative)

        self.indexer.rebuild()
        return UpdateResult(updated=True, path=relative, changes=[f"appended to {heading!r}"])
