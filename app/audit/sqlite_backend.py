"""LocalSQLiteAuditBackend: audit.db on a single long-lived aiosqlite connection.

audit.db is separate from keys.db so the audit trail can be shipped,
rotated or wiped without touching credentials. The table is append-only:
this module contains no UPDATE or DELETE statement. entry_id is UNIQUE and
writes use INSERT OR IGNORE, so a retried append never duplicates a row.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Optional

import aiosqlite

from app.audit.models import EVENT_TYPES, OUTCOMES, AuditEntry
from app.audit.protocol import AuditBackend, AuditFilters
from app.utils.logger import get_logger

logger = get_logger(__name__)

_SCHEMA_VERSION = 1

_DEFAULT_AUDIT_DB_PATH = "~/.keyledger/audit.db"


def _sql_in(values: frozenset[str]) -> str:
    return ", ".join(f"'{v}'" for v in sorted(values))


_CREATE_SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS audit_entries (
    seq             INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id        TEXT NOT NULL UNIQUE,
    timestamp       TEXT NOT NULL,
    event_type      TEXT NOT NULL CHECK(event_type IN ({_sql_in(EVENT_TYPES)})),
    outcome         TEXT NOT NULL CHECK(outcome IN ({_sql_in(OUTCOMES)})),
    endpoint        TEXT NOT NULL,
    subject_id      TEXT,
    source          TEXT NOT NULL DEFAULT '',
    detail          TEXT NOT NULL DEFAULT '',
    schema_version  INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_audit_entries_ts
    ON audit_entries(timestamp DESC, seq DESC);

CREATE INDEX IF NOT EXISTS idx_audit_entries_subject
    ON audit_entries(subject_id, timestamp DESC);

CREATE INDEX IF NOT EXISTS idx_audit_entries_event
    ON audit_entries(event_type, timestamp DESC);
"""

_INSERT_SQL = """
INSERT OR IGNORE INTO audit_entries
    (entry_id, timestamp, event_type, outcome, endpoint,
     subject_id, source, detail, schema_version)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

# AuditFilters attribute → equality column.
_EQUALITY_FILTERS = (
    ("event_type", "event_type"),
    ("outcome", "outcome"),
    ("subject_id", "subject_id"),
)


async def _open_audit_db(db_path: str) -> aiosqlite.Connection:
    """Open audit.db in WAL mode and create or verify its schema.

    Raises:
        RuntimeError: PRAGMA user_version is neither 0 (fresh) nor 1.
    """
    parent_dir = os.path.dirname(db_path)
    if parent_dir:
        os.makedirs(parent_dir, exist_ok=True)

    db = await aiosqlite.connect(db_path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL;")

    cursor = await db.execute("PRAGMA user_version;")
    row = await cursor.fetchone()
    version: int = row[0] if row else 0

    if version == 0:
        await db.executescript(_CREATE_SCHEMA_SQL)
        # executescript commits on its own; user_version is set after it.
        await db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION};")
        await db.commit()
        logger.info("audit_db_schema_created", db_path=db_path, schema_version=_SCHEMA_VERSION)
    elif version != _SCHEMA_VERSION:
        await db.close()
        raise RuntimeError(
            f"Unsupported audit database schema version: {version}. "
            f"Move {db_path} aside to start a fresh audit log."
        )
    return db


def _entry_params(entry: AuditEntry) -> tuple[Any, ...]:
    return (
        entry.entry_id,
        entry.timestamp.isoformat(),
        entry.event_type,
        entry.outcome,
        entry.endpoint,
        entry.subject_id,
        entry.source,
        entry.detail,
        entry.schema_version,
    )


def _row_to_entry(row: aiosqlite.Row) -> AuditEntry:
    return AuditEntry(
        entry_id=row["entry_id"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        event_type=row["event_type"],
        outcome=row["outcome"],
        endpoint=row["endpoint"],
        subject_id=row["subject_id"],
        source=row["source"],
        detail=row["detail"],
        schema_version=row["schema_version"],
    )


def _where_clause(filters: AuditFilters) -> tuple[str, list[Any]]:
    """Parameterised WHERE fragment ('' when no filter is set)."""
    conditions: list[str] = []
    params: list[Any] = []

    for attr, column in _EQUALITY_FILTERS:
        value = getattr(filters, attr)
        if value is not None:
            conditions.append(f"{column} = ?")
            params.append(value)
    if filters.since is not None:
        conditions.append("timestamp >= ?")
        params.append(filters.since.isoformat())
    if filters.until is not None:
        conditions.append("timestamp <= ?")
        params.append(filters.until.isoformat())

    if not conditions:
        return "", params
    return " WHERE " + " AND ".join(conditions), params


class LocalSQLiteAuditBackend:
    """AuditBackend over audit.db.

    Usage:
        backend = LocalSQLiteAuditBackend(db_path)
        await backend.initialize()   # RuntimeError on schema mismatch
        await backend.append(entry)  # never raises
        await backend.close()
    """

    def __init__(self, db_path: str = _DEFAULT_AUDIT_DB_PATH) -> None:
        self._db_path: str = os.path.expanduser(db_path)
        self._db: Optional[aiosqlite.Connection] = None

    @property
    def db_path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        self._db = await _open_audit_db(self._db_path)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.debug("audit_db_closed", db_path=self._db_path)

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Audit database not initialized. Call initialize() first.")
        return self._db

    async def append(self, entry: AuditEntry) -> None:
        """Persist one entry. Failures are logged, never raised."""
        try:
            db = self._conn()
            await db.execute(_INSERT_SQL, _entry_params(entry))
            await db.commit()
        except Exception as exc:
            logger.error(
                "audit_write_failed",
                entry_id=entry.entry_id,
                event_type=entry.event_type,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def query_entries(self, filters: AuditFilters) -> list[AuditEntry]:
        """Matching entries newest first; seq orders entries sharing a timestamp."""
        where, params = _where_clause(filters)
        cursor = await self._conn().execute(
            f"SELECT * FROM audit_entries{where} "
            "ORDER BY timestamp DESC, seq DESC LIMIT ? OFFSET ?",
            [*params, filters.limit, filters.offset],
        )
        return [_row_to_entry(row) for row in await cursor.fetchall()]

    async def count_entries(self, filters: AuditFilters) -> int:
        where, params = _where_clause(filters)
        cursor = await self._conn().execute(
            f"SELECT COUNT(*) FROM audit_entries{where}", params
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            await self._db.execute("SELECT 1")
        except Exception:
            return False
        return True


assert isinstance(LocalSQLiteAuditBackend(":memory:"), AuditBackend), (
    "LocalSQLiteAuditBackend does not satisfy AuditBackend protocol"
)
