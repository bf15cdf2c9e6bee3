"""Configuration module for devlog-mcp.

Loads configuration from environment variables, with an optional
`config.json` in the document root for settings shared by a team.
Environment variables take precedence over the file.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from devlog_mcp.indexer.factory import normalize_backend

CONFIG_FILENAME = "config.json"

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off")


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValueError(f"Invalid {name} value '{value}': expected true or false")


def _parse_float(name: str, value: str, minimum: float = 0.0) -> float:
    try:
        number = float(value)
        if number < minimum:
            raise ValueError(f"must be at least {minimum}, got {number}")
    except ValueError as e:
        raise ValueError(f"Invalid {name} value '{value}': {e}") from e
    return number


def load_config_file(root: Path) -> dict[str, Any]:
    """
    Read `<root>/config.json`.

    Returns an empty dict when the file does not exist.

    Raises:
        ValueError: If the file is not a JSON object
    """
    path = root / CONFIG_FILENAME
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return data


def _file_section(file_config: dict[str, Any], name: str) -> dict[str, Any]:
    section = file_config.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ValueError(f"Invalid '{name}' in {CONFIG_FILENAME}: expected an object")
    return section


def _file_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _parse_bool(name, value)
    raise ValueError(f"Invalid {name} value {value!r} in {CONFIG_FILENAME}: expected true or false")


@dataclass
class Config:
    """Application configuration."""

    root: Path
    backend: str
    auto_rebuild: bool
    max_rebuild_seconds: float
    sync_interval: float
    port: int
    read_only: bool
    author: str | None

    @classmethod
    def from_env(
        cls,
        root_override: Path | None = None,
        backend_override: str | None = None,
        read_only_override: bool | None = None,
    ) -> "Config":
        """Load configuration from environment variables.

        Args:
            root_override: If provided, overrides DEVLOG_ROOT.
            backend_override: If provided, overrides DEVLOG_BACKEND and the config file.
            read_only_override: If provided, overrides the DEVLOG_READ_ONLY env var.
        """
        if root_override is not None:
            root = Path(root_override).expanduser()
        else:
            root = Path(os.getenv("DEVLOG_ROOT", ".aiknowsys")).expanduser()

        file_config = load_config_file(root)
        storage_section = _file_section(file_config, "storage")
        rebuild_section = _file_section(file_config, "autoRebuild")

        # Backend: CLI flag, then env var, then config file, then json
        backend_value = (
            backend_override
            or os.getenv("DEVLOG_BACKEND")
            or storage_section.get("backend")
            or "json"
        )
        try:
            backend = normalize_backend(backend_value)
        except ValueError as e:
            raise ValueError(f"Invalid DEVLOG_BACKEND value '{backend_value}': {e}") from e

        auto_rebuild_env = os.getenv("DEVLOG_AUTO_REBUILD")
        if auto_rebuild_env is not None:
            auto_rebuild = _parse_bool("DEVLOG_AUTO_REBUILD", auto_rebuild_env)
        else:
            auto_rebuild = _file_bool("autoRebuild.enabled", rebuild_section.get("enabled", True))

        max_rebuild_seconds = _parse_float(
            "DEVLOG_MAX_REBUILD_SECONDS", os.getenv("DEVLOG_MAX_REBUILD_SECONDS", "2.0")
        )
        sync_interval = _parse_float(
            "DEVLOG_SYNC_INTERVAL", os.getenv("DEVLOG_SYNC_INTERVAL", "0")
        )

        port_str = os.getenv("DEVLOG_PORT", "8080")
        try:
            port = int(port_str)
            if not 1 <= port <= 65535:
                raise ValueError(f"Port must be between 1 and 65535, got {port}")
        except ValueError as e:
            raise ValueError(f"Invalid DEVLOG_PORT value '{port_str}': {e}") from e

        # Read-only mode - CLI flag takes precedence over env var
        if read_only_override is not None:
            read_only = read_only_override
        else:
            read_only = os.getenv("DEVLOG_READ_ONLY", "").lower() in TRUE_VALUES

        author = os.getenv("DEVLOG_AUTHOR") or None

        return cls(
            root=root,
            backend=backend,
            auto_rebuild=auto_rebuild,
            max_rebuild_seconds=max_rebuild_seconds,
            sync_interval=sync_interval,
            port=port,
            read_only=read_only,
            author=author,
        )


# Global config instance (lazy loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _config
    _config = None
