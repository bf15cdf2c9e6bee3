"""Typed errors raised by the devlog index.

Callers branch on the class, never on the message text.
"""


class DevlogError(Exception):
    """Base class for every error raised by devlog_mcp."""

    pass


class DocumentParseError(DevlogError, ValueError):
    """Raised when a document's metadata header cannot be parsed."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class DocumentSchemaError(DocumentParseError):
    """Raised when a header parses but violates its kind's field schema."""

    pass


class ValidationError(DevlogError, ValueError):
    """Raised for invalid caller input (dates, statuses, anchors, fields)."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class AnchorNotFoundError(ValidationError):
    """Raised when an insertion anchor heading matches nothing."""

    def __init__(self, anchor: str):
        self.anchor = anchor
        super().__init__(f"Heading not found: {anchor}", field="anchor")


class AmbiguousAnchorError(ValidationError):
    """Raised when an insertion anchor heading matches more than one line."""

    def __init__(self, anchor: str, lines: list[int]):
        self.anchor = anchor
        self.lines = lines
        locations = ", ".join(str(n) for n in lines)
        super().__init__(
            f'Heading "{anchor}" found {len(lines)} times at lines: {locations}. '
            "Please be more specific.",
            field="anchor",
        )


class DocumentNotFoundError(DevlogError, LookupError):
    """Raised when a mutation targets a document that does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"No {kind} found for: {identifier}")


class IndexRebuildError(DevlogError, RuntimeError):
    """Raised when the index cannot be rebuilt (unreadable tree, backend failure)."""

    pass


class ReadOnlyError(DevlogError, PermissionError):
    """Raised when a write is attempted while the server is read-only."""

    pass
