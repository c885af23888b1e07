"""InMemoryAuditBackend — list-backed audit log for tests and ephemeral servers."""

from __future__ import annotations

from app.audit.models import AuditEntry
from app.audit.protocol import AuditBackend, AuditFilters
from app.utils.logger import get_logger

logger = get_logger(__name__)


class InMemoryAuditBackend:
    """Keeps every entry in insertion order. Append-only; idempotent on entry_id."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []
        self._ids: set[str] = set()

    @property
    def entries(self) -> list[AuditEntry]:
        """Snapshot of all entries, oldest first."""
        return list(self._entries)

    async def append(self, entry: AuditEntry) -> None:
        if entry.entry_id in self._ids:
            return
        self._ids.add(entry.entry_id)
        self._entries.append(entry)

    async def query_entries(self, filters: AuditFilters) -> list[AuditEntry]:
        matched = [e for e in reversed(self._entries) if filters.matches(e)]
        return matched[filters.offset:filters.offset + filters.limit]

    async def count_entries(self, filters: AuditFilters) -> int:
        return sum(1 for e in self._entries if filters.matches(e))

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        logger.debug("in_memory_audit_closed", entries=len(self._entries))


assert isinstance(InMemoryAuditBackend(), AuditBackend), (
    "InMemoryAuditBackend does not satisfy AuditBackend protocol"
)
