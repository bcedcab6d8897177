"""
SQLite storage backend for EventGuard.

This module manages the SQLite database that stores:
- Event types, roles, permissions and role grants (catalog tables)
- Events with soft-delete state
- Subject role assignments and direct permission grants

Invariants:
    - All writes run in a single transaction (BEGIN IMMEDIATE)
    - events.slug is UNIQUE regardless of soft-delete state
    - Deleting an event cascades to its assignment rows
    - Table and column names come from configuration only

How to change safely:
    - Schema migrations must be backward compatible
    - Keep behaviour identical to the in-memory backend
    - Use transactions for all write operations

Table schema (default names):
    egd_event_types:
        - slug TEXT PRIMARY KEY
        - name TEXT, description TEXT
    egd_permissions / egd_roles:
        - event_type TEXT ('' for global), name TEXT
        - PRIMARY KEY (event_type, name)
    egd_role_permission:
        - event_type TEXT, role_name TEXT, permission_name TEXT
    egd_events:
        - id TEXT PRIMARY KEY
        - event_type TEXT REFERENCES egd_event_types(slug) ON DELETE CASCADE
        - name TEXT, slug TEXT UNIQUE, description TEXT
        - owner_id TEXT, settings_json TEXT, is_active INTEGER
        - created_at, updated_at INTEGER (Unix ms), deleted_at INTEGER NULL
        - INDEX on (event_type, owner_id)
    egd_model_has_roles / egd_model_has_permissions:
        - model_id TEXT, event_id TEXT REFERENCES egd_events(id) ON DELETE CASCADE
        - role_name / permission_name TEXT, created_at INTEGER
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..config import IN_MEMORY_PATHS, ColumnNames, TableNames
from ..errors import SlugConflictError, StoreFailureError
from .base import Event, Holdings, now_ms

if TYPE_CHECKING:
    from ..catalog import CatalogStore

logger = logging.getLogger(__name__)

_GLOBAL_SCOPE = ""


class SqliteStore:
    """SQLite implementation of the GuardStore protocol.

    Thread safety:
        Each operation opens its own connection. SQLite serializes
        writers; BEGIN IMMEDIATE takes the write lock up front so
        read-check-write sequences cannot interleave.

    Example:
        >>> store = SqliteStore("/var/lib/eventguard/guard.db")
        >>> store.initialize()
        >>> store.sync_catalog(catalog)
        >>> store.insert_event(event)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        database_path: str,
        table_names: Optional[TableNames] = None,
        column_names: Optional[ColumnNames] = None,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            database_path: SQLite database file
            table_names: Table name overrides
            column_names: Pivot/morph column name overrides
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout

        Raises:
            ValueError: If database_path names an in-memory database, which
                would be empty for every new connection
        """
        if str(database_path) in IN_MEMORY_PATHS:
            raise ValueError(f"SqliteStore needs a database file, got {database_path!r}")
        self.database_path = Path(database_path)
        self.tables = table_names or TableNames()
        self.columns = column_names or ColumnNames()
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    @contextmanager
    def _get_connection(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Raises:
            StoreFailureError: On any sqlite error other than integrity violations
        """
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(
                str(self.database_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise StoreFailureError(f"Cannot open database: {e}", operation) from e

        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        except sqlite3.Error as e:
            logger.warning(f"SQLite failure during {operation}: {e}")
            raise StoreFailureError(f"{operation} failed: {e}", operation) from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._get_connection(operation) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def initialize(self) -> None:
        """Create database schema if it doesn't exist."""
        t = self.tables
        model = self.columns.model_morph_key
        role = self.columns.role_key
        permission = self.columns.permission_key

        with self._get_connection("initialize") as conn:
            conn.executescript(f"""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS {t.event_types} (
                    slug TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS {t.permissions} (
                    event_type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    PRIMARY KEY (event_type, name)
                );

                CREATE TABLE IF NOT EXISTS {t.roles} (
                    event_type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    position INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (event_type, name)
                );

                CREATE TABLE IF NOT EXISTS {t.role_permission} (
                    event_type TEXT NOT NULL,
                    {role} TEXT NOT NULL,
                    {permission} TEXT NOT NULL,
                    PRIMARY KEY (event_type, {role}, {permission})
                );

                CREATE TABLE IF NOT EXISTS {t.events} (
                    id TEXT PRIMARY KEY,
                    event_type TEXT NOT NULL
                        REFERENCES {t.event_types}(slug) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    slug TEXT NOT NULL UNIQUE,
                    description TEXT,
                    owner_id TEXT NOT NULL,
                    settings_json TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    deleted_at INTEGER
                );

                CREATE INDEX IF NOT EXISTS idx_{t.events}_type_owner
                    ON {t.events}(event_type, owner_id);

                CREATE TABLE IF NOT EXISTS {t.model_has_roles} (
                    {model} TEXT NOT NULL,
                    event_id TEXT NOT NULL REFERENCES {t.events}(id) ON DELETE CASCADE,
                    {role} TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    PRIMARY KEY ({model}, event_id, {role})
                );

                CREATE INDEX IF NOT EXISTS idx_{t.model_has_roles}_event
                    ON {t.model_has_roles}(event_id);

                CREATE TABLE IF NOT EXISTS {t.model_has_permissions} (
                    {model} TEXT NOT NULL,
                    event_id TEXT NOT NULL REFERENCES {t.events}(id) ON DELETE CASCADE,
                    {permission} TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    PRIMARY KEY ({model}, event_id, {permission})
                );

                CREATE INDEX IF NOT EXISTS idx_{t.model_has_permissions}_event
                    ON {t.model_has_permissions}(event_id);

                INSERT OR IGNORE INTO schema_version (version, applied_at)
                VALUES ({self.SCHEMA_VERSION}, strftime('%s', 'now') * 1000);
            """)
        logger.info(f"Initialized EventGuard database: {self.database_path}")

    def sync_catalog(self, catalog: "CatalogStore") -> None:
        """Write catalog definitions into the catalog tables.

        Existing rows for the same keys are replaced; event types are never
        deleted here because that would cascade to their events.
        """
        t = self.tables
        role_key = self.columns.role_key
        permission_key = self.columns.permission_key

        with self._transaction("sync_catalog") as conn:
            for permission in catalog.global_permissions():
                conn.execute(
                    f"INSERT OR IGNORE INTO {t.permissions} (event_type, name) VALUES (?, ?)",
                    (_GLOBAL_SCOPE, permission.name),
                )

            roles = [(_GLOBAL_SCOPE, i, r) for i, r in enumerate(catalog.global_roles())]
            for event_type in catalog.list_event_types():
                conn.execute(
                    f"""
                    INSERT INTO {t.event_types} (slug, name, description) VALUES (?, ?, ?)
                    ON CONFLICT(slug) DO UPDATE SET
                        name = excluded.name, description = excluded.description
                    """,
                    (event_type.slug, event_type.name, event_type.description),
                )
                for name in event_type.permissions:
                    conn.execute(
                        f"INSERT OR IGNORE INTO {t.permissions} (event_type, name) VALUES (?, ?)",
                        (event_type.slug, name),
                    )
                roles.extend((event_type.slug, i, r) for i, r in enumerate(event_type.roles))

            for scope, position, role in roles:
                conn.execute(
                    f"INSERT OR REPLACE INTO {t.roles} (event_type, name, position) VALUES (?, ?, ?)",
                    (scope, role.name, position),
                )
                conn.execute(
                    f"DELETE FROM {t.role_permission} WHERE event_type = ? AND {role_key} = ?",
                    (scope, role.name),
                )
                for name in role.permissions:
                    conn.execute(
                        f"""
                        INSERT INTO {t.role_permission} (event_type, {role_key}, {permission_key})
                        VALUES (?, ?, ?)
                        """,
                        (scope, role.name, name),
                    )

        logger.debug(f"Synced catalog into {self.database_path}")

    def catalog_counts(self) -> dict[str, int]:
        """Row counts of the catalog tables."""
        t = self.tables
        with self._get_connection("catalog_counts") as conn:
            return {
                name: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for name, table in (
                    ("event_types", t.event_types),
                    ("roles", t.roles),
                    ("permissions", t.permissions),
                    ("role_permission", t.role_permission),
                )
            }

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        settings = row["settings_json"]
        return Event(
            event_id=row["id"],
            event_type=row["event_type"],
            name=row["name"],
            slug=row["slug"],
            owner_id=row["owner_id"],
            description=row["description"],
            settings=json.loads(settings) if settings is not None else None,
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"],
        )

    def insert_event(self, event: Event) -> None:
        t = self.tables
        try:
            with self._transaction("insert_event") as conn:
                existing = conn.execute(
                    f"SELECT id FROM {t.events} WHERE slug = ?", (event.slug,)
                ).fetchone()
                if existing:
                    raise SlugConflictError(event.slug, existing["id"])

                conn.execute(
                    f"""
                    INSERT INTO {t.events} (id, event_type, name, slug, description, owner_id,
                                            settings_json, is_active, created_at, updated_at,
                                            deleted_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.event_id,
                        event.event_type,
                        event.name,
                        event.slug,
                        event.description,
                        event.owner_id,
                        json.dumps(event.settings) if event.settings is not None else None,
                        int(event.is_active),
                        event.created_at,
                        event.updated_at,
                        event.deleted_at,
                    ),
                )
        except StoreFailureError as e:
            # A concurrent writer may have taken the slug between check and insert
            cause = e.__cause__
            if isinstance(cause, sqlite3.IntegrityError) and "slug" in str(cause):
                raise SlugConflictError(event.slug) from cause
            raise

        logger.debug(
            "Inserted event",
            extra={"event_id": event.event_id, "slug": event.slug, "event_type": event.event_type},
        )

    def get_event(self, event_id: str) -> Optional[Event]:
        with self._get_connection("get_event") as conn:
            row = conn.execute(
                f"SELECT * FROM {self.tables.events} WHERE id = ?", (event_id,)
            ).fetchone()
            return self._row_to_event(row) if row else None

    def get_event_by_slug(self, slug: str) -> Optional[Event]:
        with self._get_connection("get_event_by_slug") as conn:
            row = conn.execute(
                f"SELECT * FROM {self.tables.events} WHERE slug = ?", (slug,)
            ).fetchone()
            return self._row_to_event(row) if row else None

    def save_event(self, event: Event) -> None:
        with self._transaction("save_event") as conn:
            conn.execute(
                f"""
                UPDATE {self.tables.events}
                SET name = ?, description = ?, settings_json = ?, is_active = ?,
                    updated_at = ?, deleted_at = ?
                WHERE id = ?
                """,
                (
                    event.name,
                    event.description,
                    json.dumps(event.settings) if event.settings is not None else None,
                    int(event.is_active),
                    event.updated_at,
                    event.deleted_at,
                    event.event_id,
                ),
            )

    def delete_event(self, event_id: str) -> bool:
        with self._transaction("delete_event") as conn:
            cursor = conn.execute(f"DELETE FROM {self.tables.events} WHERE id = ?", (event_id,))
            return cursor.rowcount > 0

    def list_events(
        self,
        event_type: Optional[str] = None,
        owner_id: Optional[str] = None,
        include_deleted: bool = False,
    ) -> list[Event]:
        query = f"SELECT * FROM {self.tables.events} WHERE 1 = 1"
        params: list[Any] = []

        if event_type is not None:
            query += " AND event_type = ?"
            params.append(event_type)
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        if not include_deleted:
            query += " AND deleted_at IS NULL"

        query += " ORDER BY created_at, rowid"

        with self._get_connection("list_events") as conn:
            return [self._row_to_event(row) for row in conn.execute(query, params).fetchall()]

    def _link(self, table: str, column: str, subject_id: str, event_id: str, value: str) -> bool:
        model = self.columns.model_morph_key
        with self._transaction(f"link:{table}") as conn:
            cursor = conn.execute(
                f"""
                INSERT OR IGNORE INTO {table} ({model}, event_id, {column}, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (subject_id, event_id, value, now_ms()),
            )
            return cursor.rowcount > 0

    def _unlink(self, table: str, column: str, subject_id: str, event_id: str, value: str) -> bool:
        model = self.columns.model_morph_key
        with self._transaction(f"unlink:{table}") as conn:
            cursor = conn.execute(
                f"DELETE FROM {table} WHERE {model} = ? AND event_id = ? AND {column} = ?",
                (subject_id, event_id, value),
            )
            return cursor.rowcount > 0

    def add_role(self, subject_id: str, event_id: str, role_name: str) -> bool:
        return self._link(
            self.tables.model_has_roles, self.columns.role_key, subject_id, event_id, role_name
        )

    def remove_role(self, subject_id: str, event_id: str, role_name: str) -> bool:
        return self._unlink(
            self.tables.model_has_roles, self.columns.role_key, subject_id, event_id, role_name
        )

    def add_permission(self, subject_id: str, event_id: str, permission: str) -> bool:
        return self._link(
            self.tables.model_has_permissions,
            self.columns.permission_key,
            subject_id,
            event_id,
            permission,
        )

    def remove_permission(self, subject_id: str, event_id: str, permission: str) -> bool:
        return self._unlink(
            self.tables.model_has_permissions,
            self.columns.permission_key,
            subject_id,
            event_id,
            permission,
        )

    def holdings(self, subject_id: str, event_id: str) -> Holdings:
        t = self.tables
        model = self.columns.model_morph_key
        role_key = self.columns.role_key
        permission_key = self.columns.permission_key

        with self._get_connection("holdings") as conn:
            roles = conn.execute(
                f"SELECT {role_key} FROM {t.model_has_roles} WHERE {model} = ? AND event_id = ?",
                (subject_id, event_id),
            ).fetchall()
            permissions = conn.execute(
                f"""
                SELECT {permission_key} FROM {t.model_has_permissions}
                WHERE {model} = ? AND event_id = ?
                """,
                (subject_id, event_id),
            ).fetchall()

        return Holdings(roles={r[0] for r in roles}, permissions={p[0] for p in permissions})

    def event_holders(self, event_id: str) -> Dict[str, Holdings]:
        t = self.tables
        model = self.columns.model_morph_key
        holders: Dict[str, Holdings] = {}

        with self._get_connection("event_holders") as conn:
            for row in conn.execute(
                f"SELECT {model}, {self.columns.role_key} FROM {t.model_has_roles} WHERE event_id = ?",
                (event_id,),
            ):
                holders.setdefault(row[0], Holdings()).roles.add(row[1])
            for row in conn.execute(
                f"""
                SELECT {model}, {self.columns.permission_key} FROM {t.model_has_permissions}
                WHERE event_id = ?
                """,
                (event_id,),
            ):
                holders.setdefault(row[0], Holdings()).permissions.add(row[1])

        return holders

    def subject_events(self, subject_id: str) -> list[str]:
        t = self.tables
        model = self.columns.model_morph_key
        with self._get_connection("subject_events") as conn:
            rows = conn.execute(
                f"""
                SELECT DISTINCT event_id FROM {t.model_has_roles}
                WHERE {model} = ? ORDER BY event_id
                """,
                (subject_id,),
            ).fetchall()
        return [row[0] for row in rows]
