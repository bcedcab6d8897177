"""
Configuration management for EventGuard.

Settings come from environment variables (prefix ``EVENTGUARD_``, nested
sections separated by ``__``) or from a JSON file with the same shape.
Every setting has a default suitable for local development.

Sections:
    models: Class bindings of the host application (pass-through)
    table_names: Table names used by the SQLite backend
    column_names: Pivot and morph key column names
    cache: Permission cache TTL, namespace key and backing store
    storage: Storage backend selection and SQLite tuning
    event_types: Default catalog of event types

Invariants:
    - All settings have sensible defaults for local development
    - Table and column overrides have no semantic effect on permission logic
    - Cache expiration is a staleness bound, never a consistency mechanism

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep section names aligned with the JSON config file format
"""

from __future__ import annotations

import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .catalog.defaults import DEFAULT_EVENT_TYPES

logger = logging.getLogger(__name__)

SQL_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# SQLite paths that open a private database per connection
IN_MEMORY_PATHS = ("", ":memory:")


class StorageBackend(str, Enum):
    """Supported storage backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class CacheStore(str, Enum):
    """Supported permission cache implementations."""

    DEFAULT = "default"
    MEMORY = "memory"
    NULL = "null"


class ModelBindings(BaseModel):
    """Class bindings of the host application's entity implementations.

    Nothing in EventGuard reads these; the section is kept so existing
    configuration files with a ``models`` block still load.
    """

    permission: str = "eventguard.catalog.PermissionDef"
    role: str = "eventguard.catalog.RoleDef"
    event: str = "eventguard.store.Event"
    event_type: str = "eventguard.catalog.EventTypeDef"


class TableNames(BaseModel):
    """Table names used by the SQLite backend."""

    event_types: str = "egd_event_types"
    events: str = "egd_events"
    roles: str = "egd_roles"
    permissions: str = "egd_permissions"
    role_permission: str = "egd_role_permission"
    model_has_permissions: str = "egd_model_has_permissions"
    model_has_roles: str = "egd_model_has_roles"

    @field_validator("*")
    @classmethod
    def _identifier(cls, value: str) -> str:
        if not SQL_IDENTIFIER.fullmatch(value):
            raise ValueError(f"Invalid table name '{value}'")
        return value


class ColumnNames(BaseModel):
    """Pivot and morph key column names.

    Attributes:
        role_pivot_key: Role column in assignment tables (None = "role_name")
        permission_pivot_key: Permission column (None = "permission_name")
        model_morph_key: Subject id column in assignment tables
    """

    role_pivot_key: Optional[str] = None
    permission_pivot_key: Optional[str] = None
    model_morph_key: str = "model_id"

    @field_validator("*")
    @classmethod
    def _identifier(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not SQL_IDENTIFIER.fullmatch(value):
            raise ValueError(f"Invalid column name '{value}'")
        return value

    @property
    def role_key(self) -> str:
        return self.role_pivot_key or "role_name"

    @property
    def permission_key(self) -> str:
        return self.permission_pivot_key or "permission_name"


class CacheSettings(BaseModel):
    """Permission cache configuration.

    Attributes:
        expiration_time: Entry TTL in seconds (24 hours)
        key: Cache namespace identifier
        store: Backing cache implementation
    """

    expiration_time: float = Field(default=24 * 60 * 60, gt=0)
    key: str = "eventguard.permission.cache"
    store: CacheStore = CacheStore.DEFAULT


class StorageSettings(BaseModel):
    """Storage backend configuration.

    Attributes:
        backend: memory or sqlite
        database_path: SQLite database file
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StorageBackend = StorageBackend.MEMORY
    database_path: str = "eventguard.db"
    wal_mode: bool = True
    busy_timeout_ms: int = Field(default=5000, ge=0)


class EventTypeSettings(BaseModel):
    """One event type of the configured catalog."""

    name: str
    description: str = ""
    roles: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)
    grants: Optional[dict[str, list[str]]] = None


class GuardSettings(BaseSettings):
    """Complete EventGuard configuration loaded from environment."""

    models: ModelBindings = Field(default_factory=ModelBindings)
    table_names: TableNames = Field(default_factory=TableNames)
    column_names: ColumnNames = Field(default_factory=ColumnNames)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    event_types: dict[str, EventTypeSettings] = Field(
        default_factory=lambda: {
            slug: EventTypeSettings(**spec) for slug, spec in DEFAULT_EVENT_TYPES.items()
        }
    )

    # Give event owners the first role of their event type on creation
    assign_owner_role: bool = True

    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR")
    log_format: str = Field(default="text", description="json or text")

    model_config = SettingsConfigDict(
        env_prefix="EVENTGUARD_",
        env_nested_delimiter="__",
    )

    @classmethod
    def from_json_file(cls, path: str | os.PathLike[str]) -> GuardSettings:
        """Load settings from a JSON file.

        Raises:
            FileNotFoundError: If the file does not exist
            pydantic.ValidationError: If the content is invalid
        """
        settings = cls.model_validate_json(Path(path).read_text(encoding="utf-8"))
        logger.info(f"Loaded settings from {path}")
        return settings

    def event_type_mapping(self) -> dict[str, dict[str, Any]]:
        """Event types as plain dictionaries for CatalogStore.load_event_types()."""
        return {slug: spec.model_dump() for slug, spec in self.event_types.items()}

    def validate_settings(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.log_format not in ("json", "text"):
            raise ValueError(f"Invalid log_format '{self.log_format}'. Must be json or text")

        tables = list(self.table_names.model_dump().values())
        if len(set(tables)) != len(tables):
            raise ValueError("Table names must be distinct")

        for slug, spec in self.event_types.items():
            if spec.grants is None:
                continue
            unknown = set(spec.grants) - set(spec.roles)
            if unknown:
                raise ValueError(
                    f"Event type '{slug}' grants permissions to undeclared roles: {sorted(unknown)}"
                )

        if self.storage.backend == StorageBackend.SQLITE:
            if self.storage.database_path in IN_MEMORY_PATHS:
                raise ValueError(
                    "In-memory SQLite databases are not supported; "
                    "use the memory backend or a database file"
                )
            parent = Path(self.storage.database_path).parent
            if not parent.exists():
                logger.warning(
                    f"Database directory does not exist: {parent}. "
                    "It will be created on first write."
                )

    def log_settings(self) -> None:
        """Log a configuration summary."""
        logger.info(
            "EventGuard configuration loaded",
            extra={
                "storage_backend": self.storage.backend.value,
                "database_path": self.storage.database_path
                if self.storage.backend == StorageBackend.SQLITE
                else None,
                "cache_store": self.cache.store.value,
                "cache_key": self.cache.key,
                "cache_ttl_seconds": self.cache.expiration_time,
                "event_types": sorted(self.event_types),
                "log_level": self.log_level,
            },
        )
