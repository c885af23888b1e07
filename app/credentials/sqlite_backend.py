"""aiosqlite-backed CredentialStore and RotationLedger.

Both classes live in the same keys.db file (ledger rows reference key
hashes from the store) but each holds its own long-lived connection.

Features:
  - WAL mode: PRAGMA journal_mode=WAL
  - Schema version guard: PRAGMA user_version=1 — RuntimeError on mismatch, refuse startup
  - os.chmod(db_path, 0o600) on every initialize() call
  - Plaintext keys are NEVER written: lookups go through verification_hash
  - retired_keys tombstones: a deleted key's hash can never be inserted again;
    reinstate() lifts one only to roll back an interrupted rotation
  - aiosqlite.IntegrityError → ConflictError, any other aiosqlite.Error → StorageError
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

import aiosqlite

from app.credentials.errors import ConflictError, StorageError
from app.credentials.models import CredentialRecord, RotationEdge
from app.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Schema DDL ───────────────────────────────────────────────────────────────

_CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS api_keys (
    id                      TEXT PRIMARY KEY,
    owner                   TEXT NOT NULL,
    label                   TEXT NOT NULL,
    verification_hash       TEXT NOT NULL UNIQUE,
    secondary_secret_hash   TEXT NOT NULL,
    created_at              TEXT NOT NULL,
    last_used_at            TEXT,
    active                  INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_keys_created_at
    ON api_keys(created_at DESC);

CREATE TABLE IF NOT EXISTS retired_keys (
    verification_hash       TEXT PRIMARY KEY,
    retired_at              TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS rotation_edges (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    retired_key_hash        TEXT NOT NULL,
    replacement_id          TEXT NOT NULL,
    owner                   TEXT NOT NULL,
    label                   TEXT NOT NULL,
    reason                  TEXT NOT NULL,
    at                      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_rotation_retired_hash
    ON rotation_edges(retired_key_hash);

CREATE INDEX IF NOT EXISTS idx_rotation_owner_at
    ON rotation_edges(owner, at DESC);
"""

_SCHEMA_VERSION = 1

_DEFAULT_KEYS_DB_PATH = "~/.keyledger/keys.db"


# ─── Shared helpers ───────────────────────────────────────────────────────────


async def _open_keys_db(db_path: str) -> aiosqlite.Connection:
    """Open keys.db, enable WAL, create or verify the schema, chmod 0600.

    Raises:
        RuntimeError: If PRAGMA user_version is neither 0 nor 1.
    """
    parent_dir = os.path.dirname(db_path)
    if parent_dir:
        os.makedirs(parent_dir, exist_ok=True)

    db = await aiosqlite.connect(db_path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL;")

    cursor = await db.execute("PRAGMA user_version;")
    row = await cursor.fetchone()
    current_version: int = row[0] if row else 0

    if current_version == 0:
        await db.executescript(_CREATE_SCHEMA_SQL)
        await db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION};")
        await db.commit()
        logger.info("keys_db_schema_created", db_path=db_path, schema_version=_SCHEMA_VERSION)
    elif current_version != _SCHEMA_VERSION:
        await db.close()
        raise RuntimeError(
            f"Unsupported key store schema version: {current_version}. "
            f"Delete {db_path} to reset (all credentials will be lost)."
        )

    # Owner read/write only, regardless of umask at creation time.
    os.chmod(db_path, 0o600)
    return db


async def _rollback(db: aiosqlite.Connection, operation: str) -> None:
    try:
        await db.rollback()
    except aiosqlite.Error as exc:
        logger.warning("keys_db_rollback_failed", operation=operation, error=str(exc))


@asynccontextmanager
async def _storage_errors(db: aiosqlite.Connection, operation: str) -> AsyncIterator[None]:
    """Classify aiosqlite failures raised inside the block, rolling back first."""
    try:
        yield
    except aiosqlite.IntegrityError as exc:
        await _rollback(db, operation)
        logger.error("keys_db_conflict", operation=operation, error=str(exc))
        raise ConflictError(f"Uniqueness violation during {operation}") from exc
    except aiosqlite.Error as exc:
        await _rollback(db, operation)
        logger.error(
            "keys_db_error",
            operation=operation,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        raise StorageError(f"Key store failure during {operation}") from exc


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_record(row: aiosqlite.Row) -> CredentialRecord:
    return CredentialRecord(
        id=row["id"],
        owner=row["owner"],
        label=row["label"],
        verification_hash=row["verification_hash"],
        secondary_secret_hash=row["secondary_secret_hash"],
        created_at=datetime.fromisoformat(row["created_at"]),
        last_used_at=_parse_ts(row["last_used_at"]),
        active=bool(row["active"]),
    )


def _row_to_edge(row: aiosqlite.Row) -> RotationEdge:
    return RotationEdge(
        retired_key_hash=row["retired_key_hash"],
        replacement_id=row["replacement_id"],
        owner=row["owner"],
        label=row["label"],
        reason=row["reason"],
        at=datetime.fromisoformat(row["at"]),
    )


# ─── LocalSQLiteCredentialStore ───────────────────────────────────────────────


class LocalSQLiteCredentialStore:
    """CredentialStore on a single long-lived aiosqlite connection.

    Multi-statement writes (insert, delete) hold an asyncio.Lock so that two
    coroutines sharing the connection never interleave inside one implicit
    transaction.

    Usage:
        store = LocalSQLiteCredentialStore(db_path)
        await store.initialize()     # raises RuntimeError on schema mismatch
        await store.insert(record)
        await store.close()
    """

    def __init__(self, db_path: str = _DEFAULT_KEYS_DB_PATH) -> None:
        self._db_path: str = os.path.expanduser(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        self._db = await _open_keys_db(self._db_path)
        logger.debug("key_store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.debug("key_store_closed", db_path=self._db_path)

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Key store not initialized — call initialize() first")
        return self._db

    # ── CredentialStore Protocol Methods ──────────────────────────────────────

    async def insert(self, record: CredentialRecord) -> CredentialRecord:
        db = self._conn()
        async with self._write_lock:
            async with _storage_errors(db, "insert"):
                cursor = await db.execute(
                    "SELECT 1 FROM retired_keys WHERE verification_hash = ?",
                    (record.verification_hash,),
                )
                if await cursor.fetchone() is not None:
                    raise ConflictError("Presented key was already issued")
                await db.execute(
                    """INSERT INTO api_keys
                       (id, owner, label, verification_hash, secondary_secret_hash,
                        created_at, last_used_at, active)
                       VALUES (?,?,?,?,?,?,?,?)""",
                    (
                        record.id,
                        record.owner,
                        record.label,
                        record.verification_hash,
                        record.secondary_secret_hash,
                        record.created_at.isoformat(),
                        record.last_used_at.isoformat() if record.last_used_at else None,
                        int(record.active),
                    ),
                )
                await db.commit()
        return record

    async def find_by_verification_hash(self, verification_hash: str) -> Optional[CredentialRecord]:
        db = self._conn()
        async with _storage_errors(db, "find"):
            cursor = await db.execute(
                "SELECT * FROM api_keys WHERE verification_hash = ?",
                (verification_hash,),
            )
            row = await cursor.fetchone()
        return _row_to_record(row) if row is not None else None

    async def find_active_by_verification_hash(
        self, verification_hash: str
    ) -> Optional[CredentialRecord]:
        db = self._conn()
        async with _storage_errors(db, "find_active"):
            cursor = await db.execute(
                "SELECT * FROM api_keys WHERE verification_hash = ? AND active = 1",
                (verification_hash,),
            )
            row = await cursor.fetchone()
        return _row_to_record(row) if row is not None else None

    async def mark_used(self, record_id: str, at: datetime) -> None:
        db = self._conn()
        async with self._write_lock:
            async with _storage_errors(db, "mark_used"):
                await db.execute(
                    "UPDATE api_keys SET last_used_at = ? WHERE id = ?",
                    (at.isoformat(), record_id),
                )
                await db.commit()

    async def deactivate(self, record_id: str) -> bool:
        db = self._conn()
        async with self._write_lock:
            async with _storage_errors(db, "deactivate"):
                cursor = await db.execute(
                    "UPDATE api_keys SET active = 0 WHERE id = ? AND active = 1",
                    (record_id,),
                )
                await db.commit()
        return cursor.rowcount > 0

    async def delete(self, record_id: str) -> bool:
        db = self._conn()
        async with self._write_lock:
            async with _storage_errors(db, "delete"):
                cursor = await db.execute(
                    "SELECT verification_hash FROM api_keys WHERE id = ?",
                    (record_id,),
                )
                row = await cursor.fetchone()
                if row is None:
                    return False
                await db.execute(
                    "INSERT OR IGNORE INTO retired_keys (verification_hash, retired_at) "
                    "VALUES (?, datetime('now'))",
                    (row["verification_hash"],),
                )
                cursor = await db.execute("DELETE FROM api_keys WHERE id = ?", (record_id,))
                await db.commit()
        return cursor.rowcount > 0

    async def reinstate(self, record: CredentialRecord) -> None:
        db = self._conn()
        async with self._write_lock:
            async with _storage_errors(db, "reinstate"):
                await db.execute(
                    "DELETE FROM retired_keys WHERE verification_hash = ?",
                    (record.verification_hash,),
                )
                await db.execute(
                    """INSERT INTO api_keys
                       (id, owner, label, verification_hash, secondary_secret_hash,
                        created_at, last_used_at, active)
                       VALUES (?,?,?,?,?,?,?,1)
                       ON CONFLICT(id) DO UPDATE SET active = 1""",
                    (
                        record.id,
                        record.owner,
                        record.label,
                        record.verification_hash,
                        record.secondary_secret_hash,
                        record.created_at.isoformat(),
                        record.last_used_at.isoformat() if record.last_used_at else None,
                    ),
                )
                await db.commit()

    async def list_all(self, limit: Optional[int] = None) -> list[CredentialRecord]:
        db = self._conn()
        sql = "SELECT * FROM api_keys ORDER BY created_at DESC, id DESC"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        async with _storage_errors(db, "list_all"):
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [_row_to_record(row) for row in rows]

    async def health_check(self) -> bool:
        """Returns True if the DB connection is alive and queryable."""
        try:
            await self._conn().execute("SELECT 1")
            return True
        except Exception:
            return False


# ─── LocalSQLiteRotationLedger ────────────────────────────────────────────────


class LocalSQLiteRotationLedger:
    """RotationLedger on its own connection to keys.db. Append-only: no UPDATE/DELETE."""

    def __init__(self, db_path: str = _DEFAULT_KEYS_DB_PATH) -> None:
        self._db_path: str = os.path.expanduser(db_path)
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        self._db = await _open_keys_db(self._db_path)
        logger.debug("rotation_ledger_initialized", db_path=self._db_path)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Rotation ledger not initialized — call initialize() first")
        return self._db

    async def record(self, edge: RotationEdge) -> None:
        db = self._conn()
        async with _storage_errors(db, "record_rotation"):
            await db.execute(
                """INSERT INTO rotation_edges
                   (retired_key_hash, replacement_id, owner, label, reason, at)
                   VALUES (?,?,?,?,?,?)""",
                (
                    edge.retired_key_hash,
                    edge.replacement_id,
                    edge.owner,
                    edge.label,
                    edge.reason,
                    edge.at.isoformat(),
                ),
            )
            await db.commit()

    async def list_edges(
        self,
        owner: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[RotationEdge]:
        db = self._conn()
        sql = "SELECT * FROM rotation_edges"
        params: list = []
        if owner is not None:
            sql += " WHERE owner = ?"
            params.append(owner)
        sql += " ORDER BY at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        async with _storage_errors(db, "list_edges"):
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [_row_to_edge(row) for row in rows]

    async def find_by_retired_hash(self, retired_key_hash: str) -> Optional[RotationEdge]:
        db = self._conn()
        async with _storage_errors(db, "find_rotation"):
            cursor = await db.execute(
                "SELECT * FROM rotation_edges WHERE retired_key_hash = ? ORDER BY id LIMIT 1",
                (retired_key_hash,),
            )
            row = await cursor.fetchone()
        return _row_to_edge(row) if row is not None else None

    async def health_check(self) -> bool:
        try:
            await self._conn().execute("SELECT 1")
            return True
        except Exception:
            return False
