"""Filter definitions and their translation to backend lookups.

Each filter class validates its input once, then knows how to evaluate
itself against an in-memory record (JSON backend) and how to render itself
as SQL predicates (embedded-database backend). Keeping both renderings side
by side is what keeps the two backends returning the same result sets.
"""

import datetime
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any

from devlog_mcp.errors import ValidationError
from devlog_mcp.indexer.models import (
    DocumentKind,
    PatternRecord,
    PlanRecord,
    Record,
    SessionRecord,
    check_date,
    check_status,
)

if TYPE_CHECKING:
    from devlog_mcp.indexer.auto_index import AutoIndexer


def _contains(haystack: str | None, needle: str) -> bool:
    return haystack is not None and needle.lower() in haystack.lower()


def _any_contains(values: list[str], needle: str) -> bool:
    return any(_contains(v, needle) for v in values)


def _sql_list_contains(column: str) -> str:
    """SQL predicate: any element of a JSON list column contains the parameter."""
    return (
        f"EXISTS (SELECT 1 FROM json_each({column}) "
        "WHERE instr(fold(json_each.value), fold(?)) > 0)"
    )


def _sql_text_contains(column: str) -> str:
    return f"instr(fold(COALESCE({column}, '')), fold(?)) > 0"


@dataclass
class SessionFilters:
    """Filters for session queries. All given filters are AND-combined."""

    date: str | None = None
    date_after: str | None = None
    date_before: str | None = None
    days: int | None = None
    topic: str | None = None
    plan: str | None = None
    status: str | None = None
    today: datetime.date | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        for name in ("date", "date_after", "date_before"):
            value = getattr(self, name)
            if value is not None:
                setattr(self, name, check_date(value, name))
        if self.days is not None:
            try:
                self.days = int(self.days)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid days: {self.days!r}", field="days") from None
            if self.days < 0:
                raise ValidationError("days must not be negative", field="days")
        if self.status is not None:
            self.status = check_status(DocumentKind.SESSION, self.status)

    @property
    def since(self) -> str | None:
        """Inclusive lower bound derived from `days`."""
        if self.days is None:
            return None
        today = self.today or datetime.date.today()
        return (today - datetime.timedelta(days=self.days)).isoformat()

    def matches(self, record: SessionRecord) -> bool:
        if self.date and record.date != self.date:
            return False
        if self.date_after and not record.date > self.date_after:
            return False
        if self.date_before and not record.date < self.date_before:
            return False
        if self.since and record.date < self.since:
            return False
        if self.topic and not (
            _any_contains(record.topics, self.topic) or _contains(record.title, self.topic)
        ):
            return False
        if self.plan and record.plan != self.plan:
            return False
        if self.status and record.status != self.status:
            return False
        return True

    def sql_predicates(self) -> tuple[list[str], list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if self.date:
            clauses.append("date = ?")
            params.append(self.date)
        if self.date_after:
            clauses.append("date > ?")
            params.append(self.date_after)
        if self.date_before:
            clauses.append("date < ?")
            params.append(self.date_before)
        if self.since:
            clauses.append("date >= ?")
            params.append(self.since)
        if self.topic:
            clauses.append(f"({_sql_list_contains('topics')} OR {_sql_text_contains('title')})")
            params.extend([self.topic, self.topic])
        if self.plan:
            clauses.append("plan = ?")
            params.append(self.plan)
        if self.status:
            clauses.append("status = ?")
            params.append(self.status)
        return clauses, params


@dataclass
class PlanFilters:
    """Filters for plan queries. All given filters are AND-combined."""

    status: str | None = None
    author: str | None = None
    topic: str | None = None
    updated_after: str | None = None
    updated_before: str | None = None

    def __post_init__(self) -> None:
        if self.status is not None:
            self.status = check_status(DocumentKind.PLAN, self.status)
        for name in ("updated_after", "updated_before"):
            value = getattr(self, name)
            if value is not None:
                setattr(self, name, check_date(value, name))

    def matches(self, record: PlanRecord) -> bool:
        updated_day = record.updated[:10]
        if self.status and record.status != self.status:
            return False
        if self.author and record.author != self.author:
            return False
        if self.topic and not (
            _any_contains(record.topics, self.topic) or _contains(record.title, self.topic)
        ):
            return False
        if self.updated_after and not updated_day > self.updated_after:
            return False
        if self.updated_before and not updated_day < self.updated_before:
            return False
        return True

    def sql_predicates(self) -> tuple[list[str], list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if self.status:
            clauses.append("status = ?")
            params.append(self.status)
        if self.author:
            clauses.append("author = ?")
            params.append(self.author)
        if self.topic:
            clauses.append(f"({_sql_list_contains('topics')} OR {_sql_text_contains('title')})")
            params.extend([self.topic, self.topic])
        if self.updated_after:
            clauses.append("substr(updated, 1, 10) > ?")
            params.append(self.updated_after)
        if self.updated_before:
            clauses.append("substr(updated, 1, 10) < ?")
            params.append(self.updated_before)
        return clauses, params


@dataclass
class PatternFilters:
    """Filters for learned pattern queries."""

    keyword: str | None = None
    category: str | None = None

    def matches(self, record: PatternRecord) -> bool:
        if self.keyword and not (
            _any_contains(record.triggers, self.keyword) or _contains(record.title, self.keyword)
        ):
            return False
        if self.category and record.category != self.category:
            return False
        return True

    def sql_predicates(self) -> tuple[list[str], list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if self.keyword:
            clauses.append(f"({_sql_list_contains('triggers')} OR {_sql_text_contains('title')})")
            params.extend([self.keyword, self.keyword])
        if self.category:
            clauses.append("category = ?")
            params.append(self.category)
        return clauses, params


Filters = SessionFilters | PlanFilters | PatternFilters

FILTER_TYPES: dict[DocumentKind, type] = {
    DocumentKind.SESSION: SessionFilters,
    DocumentKind.PLAN: PlanFilters,
    DocumentKind.PATTERN: PatternFilters,
}


def build_filters(kind: DocumentKind | str, values: dict[str, Any] | None = None) -> Filters:
    """
    Build typed filters for a kind from loose keyword input.

    None values are ignored, so CLI and MCP callers can pass every option.

    Raises:
        ValidationError: On unknown filter names or invalid values
    """
    kind = DocumentKind.parse(kind)
    filter_type = FILTER_TYPES[kind]
    allowed = {f.name for f in fields(filter_type) if f.name != "today"}
    given = {k: v for k, v in (values or {}).items() if v is not None}

    unknown = sorted(set(given) - allowed)
    if unknown:
        raise ValidationError(
            f"Unknown {kind.value} filter(s): {', '.join(unknown)}. "
            f"Valid filters: {', '.join(sorted(allowed))}",
            field=unknown[0],
        )
    return filter_type(**given)


def check_filters(kind: DocumentKind, filters: Filters | None) -> Filters:
    """Return filters for the kind, defaulting to no filtering."""
    if filters is None:
        return FILTER_TYPES[kind]()
    if not isinstance(filters, FILTER_TYPES[kind]):
        raise ValidationError(
            f"{type(filters).__name__} cannot filter {kind.value} documents", field="filters"
        )
    return filters


def filter_records(kind: DocumentKind, records: list[Record], filters: Filters | None) -> list[Record]:
    """Apply filters to already-ordered records, keeping their order."""
    filters = check_filters(kind, filters)
    return [r for r in records if filters.matches(r)]


class QueryEngine:
    """
    Read operations for callers (command surface and MCP tools).

    Every call goes through the auto-indexer, so results always reflect the
    document tree as of the call. Return values are plain dicts.
    """

    def __init__(self, indexer: "AutoIndexer"):
        self.indexer = indexer

    def query_sessions(self, **filters: Any) -> dict[str, Any]:
        """Query sessions; see SessionFilters for the accepted keywords."""
        typed = build_filters(DocumentKind.SESSION, filters)
        return self.indexer.query_documents(DocumentKind.SESSION, typed).to_dict()

    def query_plans(self, **filters: Any) -> dict[str, Any]:
        """Query plans; see PlanFilters for the accepted keywords."""
        typed = build_filters(DocumentKind.PLAN, filters)
        return self.indexer.query_documents(DocumentKind.PLAN, typed).to_dict()

    def query_patterns(self, **filters: Any) -> dict[str, Any]:
        """Query learned patterns; see PatternFilters for the accepted keywords."""
        typed = build_filters(DocumentKind.PATTERN, filters)
        return self.indexer.query_documents(DocumentKind.PATTERN, typed).to_dict()

    def search(self, query: str, scope: str | None = "all") -> dict[str, Any]:
        if query is None or not str(query).strip():
            raise ValidationError("Search text must not be empty", field="query")
        return self.indexer.search(query, scope).to_dict()

    def rebuild(self) -> dict[str, Any]:
        return self.indexer.rebuild().to_dict()
