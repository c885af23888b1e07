"""CredentialStore + RotationLedger Protocols.

The lifecycle service only ever talks to these interfaces, so the
in-memory implementations (memory_backend.py) and the aiosqlite ones
(sqlite_backend.py) are interchangeable. Selection happens in factory.py.

Layout:
    models.py         — CredentialRecord, RotationEdge, CallContext, results
    protocol.py       — CredentialStore + RotationLedger Protocols
    memory_backend.py — InMemoryCredentialStore, InMemoryRotationLedger
    sqlite_backend.py — LocalSQLiteCredentialStore, LocalSQLiteRotationLedger
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from app.credentials.models import CredentialRecord, RotationEdge


@runtime_checkable
class CredentialStore(Protocol):
    """Durable table of credential records keyed by id.

    Lookups go through the verification hash — callers hash the presented
    key first (app.credentials.generator.hash_key). The store never sees
    plaintext.

    Error contract:
      - ConflictError on id / hash uniqueness violations (live or retired)
      - StorageError on any other durability failure
    """

    async def insert(self, record: CredentialRecord) -> CredentialRecord:
        """Persist a new record. Raises ConflictError if id or hash was ever used."""
        ...

    async def find_by_verification_hash(self, verification_hash: str) -> Optional[CredentialRecord]:
        """Return the record for this hash regardless of `active`, or None."""
        ...

    async def find_active_by_verification_hash(
        self, verification_hash: str
    ) -> Optional[CredentialRecord]:
        """Return the record only if it is active, else None. Used by validation."""
        ...

    async def mark_used(self, record_id: str, at: datetime) -> None:
        """Set last_used_at. Idempotent; silently ignores unknown ids."""
        ...

    async def deactivate(self, record_id: str) -> bool:
        """Flag the record inactive. True only if an active record was flipped."""
        ...

    async def delete(self, record_id: str) -> bool:
        """Remove the record and retire its hash. True only if a row was removed."""
        ...

    async def reinstate(self, record: CredentialRecord) -> None:
        """Put a record retired by deactivate() or delete() back as active.

        Rollback for an interrupted rotation only: lifts the hash's
        tombstone for this exact record. Never used to revive a revoked key.
        """
        ...

    async def list_all(self, limit: Optional[int] = None) -> list[CredentialRecord]:
        """All records, newest created_at first. limit=None means uncapped."""
        ...

    async def health_check(self) -> bool:
        """Returns True if the store is operational. Must not raise."""
        ...

    async def close(self) -> None:
        """Release connections. Called during graceful shutdown."""
        ...


@runtime_checkable
class RotationLedger(Protocol):
    """Append-only record of rotations. Edges are never updated or deleted."""

    async def record(self, edge: RotationEdge) -> None:
        """Append one edge. Raises StorageError only on durability failure."""
        ...

    async def list_edges(
        self,
        owner: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[RotationEdge]:
        """Edges newest first, optionally restricted to one owner."""
        ...

    async def find_by_retired_hash(self, retired_key_hash: str) -> Optional[RotationEdge]:
        """The edge that retired this key hash, or None."""
        ...

    async def health_check(self) -> bool:
        ...

    async def close(self) -> None:
        ...
