"""Credential, rotation-edge and call-context dataclasses.

CredentialRecord is what the store persists. It has no field
for the plaintext presented key or the plaintext secondary secret: those
exist only inside IssuedCredential / RotationResult, which the service
returns once and never rebuilds.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from app.constants import LOG_HASH_PREFIX_CHARS


# ─── CredentialRecord ────────────────────────────────────────────────────────


@dataclass
class CredentialRecord:
    """One issuable credential as persisted by a CredentialStore.

    Immutable after insert except for last_used_at (mark_used) and
    active (deactivate).
    """

    id: str
    """ULID assigned at creation. Primary key."""
    owner: str
    """Free-text principal name supplied by the caller."""
    label: str
    """Free-text purpose of the credential."""
    verification_hash: str
    """HMAC-SHA256 of the presented key. Unique; the lookup index."""
    secondary_secret_hash: str
    """bcrypt hash of the secondary secret. Never returned by any read path."""
    created_at: datetime
    """UTC creation time."""
    last_used_at: Optional[datetime] = None
    """UTC time of the last successful validation / protected access."""
    active: bool = True
    """False once revoked or superseded (soft-delete mode only)."""

    @property
    def hash_prefix(self) -> str:
        """Short verification-hash prefix — the only key reference allowed in logs."""
        return self.verification_hash[:LOG_HASH_PREFIX_CHARS]

    def to_public_dict(self) -> dict[str, Any]:
        """Serialise for List: hash included, secondary secret hash excluded."""
        return {
            "id": self.id,
            "owner": self.owner,
            "label": self.label,
            "verificationHash": self.verification_hash,
            "createdAt": self.created_at.isoformat(),
            "lastUsedAt": self.last_used_at.isoformat() if self.last_used_at else None,
            "active": self.active,
        }


# ─── RotationEdge ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RotationEdge:
    """Append-only link from a retired credential to its replacement.

    owner/label are copied so the edge stays readable after the retired
    record has been deleted.
    """

    retired_key_hash: str
    """Verification hash of the superseded key (plaintext is never stored)."""
    replacement_id: str
    """Id of the newly issued record."""
    owner: str
    label: str
    reason: str
    at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "retiredKeyHash": self.retired_key_hash,
            "replacementId": self.replacement_id,
            "owner": self.owner,
            "label": self.label,
            "reason": self.reason,
            "at": self.at.isoformat(),
        }


# ─── CallContext ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CallContext:
    """Caller origin passed by the request layer into every service call."""

    client_ip: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def source(self) -> str:
        """Best-effort '<ip> <user-agent>' string for AuditEntry.source."""
        return f"{self.client_ip or 'unknown'} {self.user_agent or '-'}"


# ─── Service results ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class IssuedCredential:
    """Result of Issue. The only object that ever holds both plaintexts."""

    record: CredentialRecord
    key: str
    secondary_secret: str


@dataclass(frozen=True)
class ValidationResult:
    """Result of Validate / AccessProtectedResource. Never carries key material."""

    owner: str
    label: str
    created_at: datetime
    last_used_at: Optional[datetime]

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "label": self.label,
            "createdAt": self.created_at.isoformat(),
            "lastUsedAt": self.last_used_at.isoformat() if self.last_used_at else None,
        }


@dataclass(frozen=True)
class RotationResult:
    """Result of Rotate. old_key is echoed from the caller's own input."""

    old_key: str
    key: str
    secondary_secret: str
    record: CredentialRecord
    edge: RotationEdge
