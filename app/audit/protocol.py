"""AuditBackend Protocol + AuditFilters dataclass.

AuditEntry is defined in app/audit/models.py.
This module defines the pluggable backend interface (AuditBackend Protocol),
the query filter dataclass (AuditFilters) and the NullAuditBackend stub.

Layout:
    models.py         — AuditEntry + type aliases
    protocol.py       — AuditBackend Protocol + AuditFilters + NullAuditBackend
    memory_backend.py — InMemoryAuditBackend
    sqlite_backend.py — LocalSQLiteAuditBackend (aiosqlite, WAL mode, PRAGMA version guard)
    factory.py        — create_audit_backend() — backend selection by config
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from app.audit.models import AuditEntry
from app.utils.logger import get_logger

logger = get_logger(__name__)


# ─── AuditFilters ─────────────────────────────────────────────────────────────


@dataclass
class AuditFilters:
    """Query filters for AuditBackend.query_entries() and count_entries().

    All fields are optional. An empty AuditFilters() returns the newest
    entries up to limit=50.
    """

    event_type: Optional[str] = None
    """Filter by event type (created, validated, used, ...)."""
    outcome: Optional[str] = None
    """Filter by outcome: 'success' or 'failure'."""
    subject_id: Optional[str] = None
    """Filter to entries about one credential id."""
    since: Optional[datetime] = None
    """Include entries with timestamp >= since (UTC)."""
    until: Optional[datetime] = None
    """Include entries with timestamp <= until (UTC)."""
    limit: int = 50
    """Maximum number of entries to return (pagination page size)."""
    offset: int = 0
    """Number of entries to skip (pagination offset)."""

    def matches(self, entry: AuditEntry) -> bool:
        """In-process equivalent of the SQL WHERE clause (ignores limit/offset)."""
        if self.event_type is not None and entry.event_type != self.event_type:
            return False
        if self.outcome is not None and entry.outcome != self.outcome:
            return False
        if self.subject_id is not None and entry.subject_id != self.subject_id:
            return False
        if self.since is not None and entry.timestamp < self.since:
            return False
        if self.until is not None and entry.timestamp > self.until:
            return False
        return True


# ─── AuditBackend Protocol ────────────────────────────────────────────────────


@runtime_checkable
class AuditBackend(Protocol):
    """Pluggable audit backend interface.

    Implementations: LocalSQLiteAuditBackend (default), InMemoryAuditBackend,
    NullAuditBackend. Selection via create_audit_backend() (audit/factory.py).

    append() is best-effort: an audit failure must never fail the credential
    operation it describes. Implementations catch and log internally; the
    lifecycle service wraps the call again in case one does not.
    """

    async def append(self, entry: AuditEntry) -> None:
        """Persist an audit entry. Must NEVER raise — catch all exceptions internally."""
        ...

    async def query_entries(self, filters: AuditFilters) -> list[AuditEntry]:
        """Entries matching filters, newest first."""
        ...

    async def count_entries(self, filters: AuditFilters) -> int:
        """Count entries matching filters, ignoring limit/offset."""
        ...

    async def health_check(self) -> bool:
        """Returns True if the backend is operational. Must not raise."""
        ...

    async def close(self) -> None:
        """Clean up connections and resources. Called during graceful shutdown."""
        ...


# ─── NullAuditBackend ────────────────────────────────────────────────────────


class NullAuditBackend:
    """No-op AuditBackend — selected by `audit.backend: null`.

    Discards every entry. Only meant for throwaway dev servers; the
    append-only trail is lost.
    """

    async def append(self, entry: AuditEntry) -> None:
        """No-op: entry discarded."""
        logger.debug("NullAuditBackend.append (discarded)", entry_id=entry.entry_id)

    async def query_entries(self, filters: AuditFilters) -> list[AuditEntry]:
        return []

    async def count_entries(self, filters: AuditFilters) -> int:
        return 0

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        logger.debug("NullAuditBackend.close")


# ─── Protocol compliance assertion ────────────────────────────────────────────
# Import-time check: protocol drift fails at import, not at first use.
assert isinstance(NullAuditBackend(), AuditBackend), (
    "NullAuditBackend does not satisfy AuditBackend protocol — implementation error"
)
