"""AuditEntry dataclass and type aliases for the keyledger audit log.

Every lifecycle service call produces exactly one AuditEntry, success or
failure. The type aliases enforce the Literal string unions used
throughout the audit pipeline.

IMPORTANT: detail MUST NEVER contain a plaintext presented key or
secondary secret. Reference credentials by subject_id only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Optional

# ─── Type Aliases ─────────────────────────────────────────────────────────────

EventType = Literal[
    "created",
    "validated",
    "used",
    "regenerated",
    "deleted",
    "rejected",
    "listed",
]
OutcomeType = Literal["success", "failure"]

EVENT_TYPES: frozenset[str] = frozenset(
    {"created", "validated", "used", "regenerated", "deleted", "rejected", "listed"}
)
OUTCOMES: frozenset[str] = frozenset({"success", "failure"})


# ─── AuditEntry ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuditEntry:
    """One observable credential event. Append-only; never updated.

    schema_version=1 — increment on breaking schema changes.

    Event types:
        created      Issue succeeded
        validated    Validate (and verify_secondary_secret) attempts
        used         AccessProtectedResource attempts; endpoint = resource name
        regenerated  Rotate attempts; subject = new id on success, None if the old key is unknown
        deleted      Revoke attempts; written BEFORE the record is removed
        rejected     any call refused with ValidationError before a lookup
        listed       List calls
    """

    entry_id: str
    """ULID. Unique; INSERT OR IGNORE makes retried appends idempotent."""
    timestamp: datetime
    """UTC time of the event."""
    event_type: EventType
    outcome: OutcomeType
    endpoint: str
    """Logical operation name, or the protected resource for 'used' events."""
    subject_id: Optional[str] = None
    """Credential id, or None if the call failed before a subject resolved."""
    source: str = ""
    """Best-effort '<ip> <user-agent>' of the caller."""
    detail: str = ""
    """Human-readable reason. Never contains key material."""
    schema_version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "entryId": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "eventType": self.event_type,
            "outcome": self.outcome,
            "endpoint": self.endpoint,
            "subjectId": self.subject_id,
            "source": self.source,
            "detail": self.detail,
            "schemaVersion": self.schema_version,
        }
