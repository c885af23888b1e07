"""Credential lifecycle package.

Layout:
    errors.py         — CredentialError taxonomy (status-code mapped)
    generator.py      — key / secret / id generation and hashing
    models.py         — CredentialRecord, RotationEdge, CallContext, results
    protocol.py       — CredentialStore + RotationLedger Protocols
    memory_backend.py — in-memory store + ledger
    sqlite_backend.py — aiosqlite store + ledger (WAL, PRAGMA version guard)
    factory.py        — create_credential_backends() — selection by config
    service.py        — CredentialLifecycleService
"""

from app.credentials.errors import (
    ConflictError,
    CredentialError,
    InvalidCredentialError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from app.credentials.models import (
    CallContext,
    CredentialRecord,
    IssuedCredential,
    RotationEdge,
    RotationResult,
    ValidationResult,
)
from app.credentials.protocol import CredentialStore, RotationLedger
from app.credentials.service import CredentialLifecycleService

__all__ = [
    "CredentialError",
    "ValidationError",
    "InvalidCredentialError",
    "NotFoundError",
    "ConflictError",
    "StorageError",
    "CallContext",
    "CredentialRecord",
    "IssuedCredential",
    "RotationEdge",
    "RotationResult",
    "ValidationResult",
    "CredentialStore",
    "RotationLedger",
    "CredentialLifecycleService",
]
