"""Data models for the indexer."""

import re
from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum
from typing import Any, ClassVar

from devlog_mcp.errors import ValidationError

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIMESTAMP_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}([T ].+)?$")


class DocumentKind(str, Enum):
    """The three document kinds, each stored in its own folder."""

    SESSION = "session"
    PLAN = "plan"
    PATTERN = "pattern"

    @classmethod
    def parse(cls, value: "str | DocumentKind") -> "DocumentKind":
        """Resolve a kind from its name, accepting plurals ("sessions")."""
        if isinstance(value, DocumentKind):
            return value
        name = str(value).strip().lower()
        if name in FOLDER_KIND_MAP:
            return FOLDER_KIND_MAP[name]
        if name.endswith("s") and name[:-1] in cls._value2member_map_:
            name = name[:-1]
        try:
            return cls(name)
        except ValueError:
            valid = ", ".join(k.value for k in cls)
            raise ValidationError(
                f"Invalid kind: {value}. Must be one of: {valid}", field="kind"
            ) from None


@dataclass(frozen=True)
class KindSchema:
    """Field schema for one document kind."""

    kind: DocumentKind
    folder: str
    required: tuple[str, ...]
    optional: tuple[str, ...] = ()
    list_fields: tuple[str, ...] = ()
    date_fields: tuple[str, ...] = ()
    timestamp_fields: tuple[str, ...] = ()
    statuses: tuple[str, ...] = ()
    recency_field: str = ""

    @property
    def fields(self) -> tuple[str, ...]:
        return self.required + self.optional


SESSION_STATUSES = ("in-progress", "complete", "abandoned")
PLAN_STATUSES = ("active", "paused", "planned", "complete", "cancelled")

SCHEMAS: dict[DocumentKind, KindSchema] = {
    DocumentKind.SESSION: KindSchema(
        kind=DocumentKind.SESSION,
        folder="sessions",
        required=("date", "status", "topics"),
        optional=("title", "plan", "files", "author"),
        list_fields=("topics", "files"),
        date_fields=("date",),
        statuses=SESSION_STATUSES,
        recency_field="date",
    ),
    DocumentKind.PLAN: KindSchema(
        kind=DocumentKind.PLAN,
        folder="plans",
        required=("id", "status", "author", "updated"),
        optional=("title", "topics", "created", "started", "completed"),
        list_fields=("topics",),
        date_fields=("created", "started", "completed"),
        timestamp_fields=("updated",),
        statuses=PLAN_STATUSES,
        recency_field="updated",
    ),
    DocumentKind.PATTERN: KindSchema(
        kind=DocumentKind.PATTERN,
        folder="learned",
        required=("title", "triggers"),
        optional=("category", "author", "created"),
        list_fields=("triggers",),
        date_fields=("created",),
        recency_field="created",
    ),
}

# Mapping from folder name to document kind
FOLDER_KIND_MAP = {schema.folder: kind for kind, schema in SCHEMAS.items()}

# Canonical scan and search order
KIND_ORDER = (DocumentKind.SESSION, DocumentKind.PLAN, DocumentKind.PATTERN)


def check_date(value: Any, field_name: str) -> str:
    """Validate a YYYY-MM-DD calendar date literal and return it."""
    text = str(value).strip()
    if not DATE_PATTERN.match(text):
        raise ValidationError(
            f"Invalid {field_name}: {value!r}. Expected YYYY-MM-DD", field=field_name
        )
    try:
        date.fromisoformat(text)
    except ValueError:
        raise ValidationError(
            f"Invalid {field_name}: {value!r} is not a calendar date", field=field_name
        ) from None
    return text


def check_timestamp(value: Any, field_name: str) -> str:
    """Validate a date or ISO timestamp whose first ten characters are a date."""
    text = str(value).strip()
    if not TIMESTAMP_PATTERN.match(text):
        raise ValidationError(
            f"Invalid {field_name}: {value!r}. Expected YYYY-MM-DD or an ISO timestamp",
            field=field_name,
        )
    check_date(text[:10], field_name)
    return text


def check_status(kind: DocumentKind, value: Any) -> str:
    """Validate a status against the kind's enum, returning it lowercased."""
    schema = SCHEMAS[kind]
    status = str(value).strip().lower()
    if status not in schema.statuses:
        raise ValidationError(
            f"Invalid status: {value}. Must be one of: {', '.join(schema.statuses)}",
            field="status",
        )
    return status


@dataclass
class SessionRecord:
    """Indexed metadata of a session document."""

    kind: ClassVar[DocumentKind] = DocumentKind.SESSION

    id: str
    file: str
    date: str
    status: str
    topics: list[str] = field(default_factory=list)
    title: str | None = None
    plan: str | None = None
    files: list[str] = field(default_factory=list)
    author: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PlanRecord:
    """Indexed metadata of a plan document."""

    kind: ClassVar[DocumentKind] = DocumentKind.PLAN

    id: str
    file: str
    status: str
    author: str
    updated: str
    title: str | None = None
    topics: list[str] = field(default_factory=list)
    created: str | None = None
    started: str | None = None
    completed: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PatternRecord:
    """Indexed metadata of a learned pattern document."""

    kind: ClassVar[DocumentKind] = DocumentKind.PATTERN

    id: str
    file: str
    title: str
    triggers: list[str] = field(default_factory=list)
    category: str | None = None
    author: str | None = None
    created: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


Record = SessionRecord | PlanRecord | PatternRecord

RECORD_TYPES: dict[DocumentKind, type] = {
    DocumentKind.SESSION: SessionRecord,
    DocumentKind.PLAN: PlanRecord,
    DocumentKind.PATTERN: PatternRecord,
}


def record_from_dict(kind: DocumentKind, data: dict[str, Any]) -> Record:
    """Rebuild a typed record from its stored dict form."""
    return RECORD_TYPES[kind](**data)


def sort_records(kind: DocumentKind, records: list[Record]) -> list[Record]:
    """Order records by recency descending, ties broken by id ascending."""
    recency = SCHEMAS[kind].recency_field
    by_id = sorted(records, key=lambda r: r.id)
    # Stable sort: equal recency keeps the id order from the first pass
    return sorted(by_id, key=lambda r: getattr(r, recency) or "", reverse=True)


@dataclass
class RebuildStats:
    """Outcome of a full index rebuild."""

    scanned: int = 0
    counts: dict[str, int] = field(
        default_factory=lambda: {kind.value: 0 for kind in KIND_ORDER}
    )
    errors: list[dict[str, str]] = field(default_factory=list)
    built_at: float = 0.0
    duration: float = 0.0

    @property
    def indexed(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["indexed"] = self.indexed
        return data


@dataclass
class QueryResult:
    """Uniform result shape for metadata queries."""

    count: int
    items: list[dict[str, Any]]

    @classmethod
    def from_records(cls, records: list[Record]) -> "QueryResult":
        items = [r.to_dict() for r in records]
        return cls(count=len(items), items=items)

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count, "items": self.items}


@dataclass
class SearchHit:
    """One body line matching a search query."""

    kind: str
    id: str
    file: str
    line: int  # 1-based, counted from the first body line
    context: str


@dataclass
class SearchResult:
    """Result of a body text search."""

    query: str
    scope: str
    items: list[SearchHit] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.items)

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "scope": self.scope,
            "count": self.count,
            "items": [asdict(hit) for hit in self.items],
        }
