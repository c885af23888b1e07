"""In-memory CredentialStore and RotationLedger.

Process-local, non-durable. Used by the test suite and by
`store.backend: memory` for throwaway dev servers. Honors the same
contract as the SQLite backends, including retired-hash tombstones so a
deleted key can never be re-inserted.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional

from app.credentials.errors import ConflictError
from app.credentials.models import CredentialRecord, RotationEdge
from app.credentials.protocol import CredentialStore, RotationLedger
from app.utils.logger import get_logger

logger = get_logger(__name__)


class InMemoryCredentialStore:
    """Dict-backed CredentialStore.

    Records are copied on the way in and out so callers cannot mutate
    stored state by holding a reference.
    """

    def __init__(self) -> None:
        self._records: dict[str, CredentialRecord] = {}
        self._by_hash: dict[str, str] = {}
        self._retired_hashes: set[str] = set()

    async def insert(self, record: CredentialRecord) -> CredentialRecord:
        if record.id in self._records:
            raise ConflictError(f"Credential id already exists: {record.id}")
        if record.verification_hash in self._by_hash or (
            record.verification_hash in self._retired_hashes
        ):
            raise ConflictError("Presented key was already issued")
        self._records[record.id] = replace(record)
        self._by_hash[record.verification_hash] = record.id
        return replace(record)

    async def find_by_verification_hash(self, verification_hash: str) -> Optional[CredentialRecord]:
        record_id = self._by_hash.get(verification_hash)
        if record_id is None:
            return None
        return replace(self._records[record_id])

    async def find_active_by_verification_hash(
        self, verification_hash: str
    ) -> Optional[CredentialRecord]:
        record = await self.find_by_verification_hash(verification_hash)
        if record is None or not record.active:
            return None
        return record

    async def mark_used(self, record_id: str, at: datetime) -> None:
        record = self._records.get(record_id)
        if record is not None:
            record.last_used_at = at

    async def deactivate(self, record_id: str) -> bool:
        record = self._records.get(record_id)
        if record is None or not record.active:
            return False
        record.active = False
        return True

    async def delete(self, record_id: str) -> bool:
        record = self._records.pop(record_id, None)
        if record is None:
            return False
        self._by_hash.pop(record.verification_hash, None)
        self._retired_hashes.add(record.verification_hash)
        return True

    async def reinstate(self, record: CredentialRecord) -> None:
        current = self._records.get(record.id)
        if current is not None:
            current.active = True
            return
        self._retired_hashes.discard(record.verification_hash)
        self._records[record.id] = replace(record, active=True)
        self._by_hash[record.verification_hash] = record.id

    async def list_all(self, limit: Optional[int] = None) -> list[CredentialRecord]:
        ordered = sorted(
            self._records.values(),
            key=lambda r: (r.created_at, r.id),
            reverse=True,
        )
        if limit is not None:
            ordered = ordered[:limit]
        return [replace(r) for r in ordered]

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        logger.debug("in_memory_store_closed", records=len(self._records))


class InMemoryRotationLedger:
    """List-backed RotationLedger. Append-only."""

    def __init__(self) -> None:
        self._edges: list[RotationEdge] = []

    async def record(self, edge: RotationEdge) -> None:
        self._edges.append(edge)

    async def list_edges(
        self,
        owner: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[RotationEdge]:
        edges = [e for e in reversed(self._edges) if owner is None or e.owner == owner]
        return edges[offset:offset + limit]

    async def find_by_retired_hash(self, retired_key_hash: str) -> Optional[RotationEdge]:
        for edge in self._edges:
            if edge.retired_key_hash == retired_key_hash:
                return edge
        return None

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None


# ─── Protocol compliance assertion ────────────────────────────────────────────
assert isinstance(InMemoryCredentialStore(), CredentialStore), (
    "InMemoryCredentialStore does not satisfy CredentialStore protocol"
)
assert isinstance(InMemoryRotationLedger(), RotationLedger), (
    "InMemoryRotationLedger does not satisfy RotationLedger protocol"
)
