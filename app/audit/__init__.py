"""keyledger audit backend package.

Re-exports the public API for ergonomic imports:

    from app.audit import AuditEntry, AuditBackend, AuditFilters

Layout:
    models.py         — AuditEntry + type aliases (EventType, OutcomeType)
    protocol.py       — AuditBackend Protocol + AuditFilters + NullAuditBackend stub
    memory_backend.py — InMemoryAuditBackend
    sqlite_backend.py — LocalSQLiteAuditBackend (aiosqlite, WAL mode, PRAGMA version guard)
    factory.py        — create_audit_backend() — backend selection by config
"""

from app.audit.models import (
    EVENT_TYPES,
    OUTCOMES,
    AuditEntry,
    EventType,
    OutcomeType,
)
from app.audit.protocol import (
    AuditBackend,
    AuditFilters,
    NullAuditBackend,
)

__all__ = [
    # Type aliases
    "EventType",
    "OutcomeType",
    "EVENT_TYPES",
    "OUTCOMES",
    # Dataclasses
    "AuditEntry",
    "AuditFilters",
    # Protocol + implementations
    "AuditBackend",
    "NullAuditBackend",
]
