"""Backend selection."""

from pathlib import Path

from devlog_mcp.errors import ValidationError
from devlog_mcp.indexer.database import SqliteStorage
from devlog_mcp.indexer.json_storage import JsonStorage
from devlog_mcp.indexer.storage import StorageAdapter

BACKENDS: dict[str, type[StorageAdapter]] = {
    "json": JsonStorage,
    "embedded-db": SqliteStorage,
    "sqlite": SqliteStorage,
}


def normalize_backend(name: str) -> str:
    """Return the canonical backend name, rejecting unknown ones."""
    key = str(name).strip().lower()
    if key not in BACKENDS:
        raise ValidationError(
            f"Invalid backend: {name}. Must be one of: json, embedded-db", field="backend"
        )
    return BACKENDS[key].backend_name


def create_storage(
    root: Path, backend: str = "json", index_path: Path | None = None
) -> StorageAdapter:
    """
    Construct the storage adapter for a backend name.

    Args:
        root: Document root
        backend: "json" or "embedded-db" ("sqlite" is accepted as an alias)
        index_path: Optional override of the index artifact location

    Raises:
        ValidationError: If the backend name is unknown
    """
    storage_cls = BACKENDS[normalize_backend(backend)]
    return storage_cls(Path(root), index_path)
