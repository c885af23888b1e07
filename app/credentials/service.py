"""Credential lifecycle service — issue / validate / rotate / revoke / list.

Orchestrates the CredentialStore, RotationLedger and AuditBackend. The
service is stateless between calls apart from per-key locks; all state
lives in the backends.

Invariants:
  - Exactly ONE audit entry per public call, success or failure.
  - Plaintext key + secondary secret leave the service only in the
    IssuedCredential / RotationResult of the call that minted them.
  - Audit failures are swallowed (logged to the diagnostic channel only).
  - Rotate/Revoke on one key run under a per-key asyncio.Lock, and the
    final delete is conditional, so concurrent calls yield one winner.
  - Any non-classified backend exception is re-raised as StorageError.

State machine per credential: nonexistent → active → inactive (terminal).
A rotated credential is a NEW record, never a reactivation.
"""

from __future__ import annotations

import asyncio
import weakref
from datetime import datetime, timezone
from typing import Callable, Optional

from app.audit.models import AuditEntry, EventType, OutcomeType
from app.audit.protocol import AuditBackend
from app.constants import (
    DEFAULT_LIST_LIMIT,
    DEFAULT_SECRET_HASH_ROUNDS,
)
from app.credentials.errors import (
    ConflictError,
    CredentialError,
    InvalidCredentialError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from app.credentials.generator import (
    constant_time_equals,
    generate_id,
    generate_key,
    generate_secondary_secret,
    hash_key,
    hash_secret,
    verify_secret,
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
from app.utils.logger import get_logger
from app.utils.ulid import generate_ulid

logger = get_logger(__name__)

_NO_CONTEXT = CallContext()

DEFAULT_ROTATION_REASON = "manual rotation"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require(value: Optional[str], field: str) -> str:
    """Return the stripped value or raise ValidationError for missing / blank input."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


class CredentialLifecycleService:
    """Issue, validate, rotate, revoke and list opaque API credentials.

    Args:
        store:              CredentialStore implementation.
        ledger:             RotationLedger implementation.
        audit_backend:      AuditBackend implementation.
        key_pepper:         Server-side secret for hash_key(). Changing it
                            invalidates every issued key.
        secret_hash_rounds: bcrypt cost for the secondary secret hash.
        soft_delete:        Deactivate instead of deleting on rotate/revoke.
        list_limit:         Cap applied to list_credentials().
        clock:              Injectable UTC clock (tests).
    """

    def __init__(
        self,
        store: CredentialStore,
        ledger: RotationLedger,
        audit_backend: AuditBackend,
        *,
        key_pepper: str = "",
        secret_hash_rounds: int = DEFAULT_SECRET_HASH_ROUNDS,
        soft_delete: bool = False,
        list_limit: int = DEFAULT_LIST_LIMIT,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._audit_backend = audit_backend
        self._key_pepper = key_pepper
        self._secret_hash_rounds = secret_hash_rounds
        self._soft_delete = soft_delete
        self._list_limit = list_limit
        self._clock = clock or _utcnow
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ─── Issue ────────────────────────────────────────────────────────────────

    async def issue(
        self,
        owner: Optional[str],
        label: Optional[str],
        context: CallContext = _NO_CONTEXT,
    ) -> IssuedCredential:
        """Mint a new active credential.

        Returns the record plus the plaintext key and secondary secret. This
        is the only moment either plaintext is ever returned.

        Raises:
            ValidationError: owner or label missing / blank.
            ConflictError:   generated id or key collided (should never happen).
            StorageError:    store failure.
        """
        endpoint = "issue"
        try:
            owner = _require(owner, "owner")
            label = _require(label, "label")
        except ValidationError as exc:
            await self._audit("rejected", "failure", endpoint, context, detail=exc.message)
            raise

        try:
            issued = await self._mint(owner, label)
        except Exception as exc:
            raise await self._fail(exc, "created", endpoint, context)

        await self._audit(
            "created",
            "success",
            endpoint,
            context,
            subject_id=issued.record.id,
            detail=f"Credential issued for owner '{owner}' ({label})",
        )
        logger.info("credential_issued", credential_id=issued.record.id, owner=owner)
        return issued

    # ─── Validate / AccessProtectedResource ──────────────────────────────────

    async def validate(
        self,
        presented_key: Optional[str],
        context: CallContext = _NO_CONTEXT,
    ) -> ValidationResult:
        """Prove a presented key is active and stamp last_used_at.

        Raises:
            ValidationError:        key missing / blank.
            InvalidCredentialError: key unknown or inactive.
            StorageError:           store failure.
        """
        return await self._authenticate(presented_key, "validated", "validate", context)

    async def access_protected_resource(
        self,
        presented_key: Optional[str],
        resource_name: str,
        context: CallContext = _NO_CONTEXT,
    ) -> ValidationResult:
        """Same lookup/update as validate(), audited as 'used' on resource_name."""
        endpoint = resource_name or "protected-resource"
        return await self._authenticate(presented_key, "used", endpoint, context)

    async def _authenticate(
        self,
        presented_key: Optional[str],
        event_type: EventType,
        endpoint: str,
        context: CallContext,
    ) -> ValidationResult:
        try:
            key = _require(presented_key, "API key")
        except ValidationError as exc:
            await self._audit("rejected", "failure", endpoint, context, detail=exc.message)
            raise

        digest = hash_key(key, self._key_pepper)
        try:
            record = await self._store.find_active_by_verification_hash(digest)
            if record is None or not constant_time_equals(record.verification_hash, digest):
                raise InvalidCredentialError("API key is invalid or inactive")
            used_at = self._clock()
            await self._store.mark_used(record.id, used_at)
        except Exception as exc:
            raise await self._fail(exc, event_type, endpoint, context)

        await self._audit(
            event_type,
            "success",
            endpoint,
            context,
            subject_id=record.id,
            detail="API key accepted",
        )
        return ValidationResult(
            owner=record.owner,
            label=record.label,
            created_at=record.created_at,
            last_used_at=used_at,
        )

    async def verify_secondary_secret(
        self,
        presented_key: Optional[str],
        secondary_secret: Optional[str],
        context: CallContext = _NO_CONTEXT,
    ) -> bool:
        """Check a secondary secret against its bcrypt hash (dual-factor hook).

        Returns False on mismatch. Does not stamp last_used_at.

        Raises:
            ValidationError:        key or secret missing / blank.
            InvalidCredentialError: key unknown or inactive.
        """
        endpoint = "verify-secret"
        try:
            key = _require(presented_key, "API key")
            secret = _require(secondary_secret, "secret")
        except ValidationError as exc:
            await self._audit("rejected", "failure", endpoint, context, detail=exc.message)
            raise

        digest = hash_key(key, self._key_pepper)
        try:
            record = await self._store.find_active_by_verification_hash(digest)
            if record is None or not constant_time_equals(record.verification_hash, digest):
                raise InvalidCredentialError("API key is invalid or inactive")
        except Exception as exc:
            raise await self._fail(exc, "validated", endpoint, context)

        matched = await asyncio.to_thread(verify_secret, secret, record.secondary_secret_hash)
        await self._audit(
            "validated",
            "success" if matched else "failure",
            endpoint,
            context,
            subject_id=record.id,
            detail="Secondary secret accepted" if matched else "Secondary secret mismatch",
        )
        return matched

    # ─── Rotate ───────────────────────────────────────────────────────────────

    async def rotate(
        self,
        old_presented_key: Optional[str],
        reason: Optional[str] = None,
        context: CallContext = _NO_CONTEXT,
    ) -> RotationResult:
        """Replace a credential with a new one carrying the same owner/label.

        Sequence (under the per-key lock):
          1. look up the old record by hash
          2. mint + insert the replacement
          3. retire the old record (delete, or deactivate in soft-delete mode)
          4. append the RotationEdge
        A failure in 3 removes the replacement before raising. A failure in
        4 reinstates the old record and removes the replacement, so no edge
        is ever written for a rotation that did not complete.

        Raises:
            ValidationError: old key missing / blank.
            NotFoundError:   old key unknown (or already retired).
            StorageError:    store / ledger failure.
        """
        endpoint = "rotate"
        try:
            old_key = _require(old_presented_key, "API key")
        except ValidationError as exc:
            await self._audit("rejected", "failure", endpoint, context, detail=exc.message)
            raise
        reason = (reason or "").strip() or DEFAULT_ROTATION_REASON

        digest = hash_key(old_key, self._key_pepper)
        async with self._key_lock(digest):
            try:
                old = await self._find_live(digest)
                issued = await self._mint(old.owner, old.label)
            except Exception as exc:
                raise await self._fail(exc, "regenerated", endpoint, context)

            edge = RotationEdge(
                retired_key_hash=digest,
                replacement_id=issued.record.id,
                owner=old.owner,
                label=old.label,
                reason=reason,
                at=self._clock(),
            )
            try:
                if not await self._retire(old.id):
                    raise NotFoundError("API key was retired by a concurrent request")
            except Exception as exc:
                await self._discard_replacement(issued.record, old)
                raise await self._fail(exc, "regenerated", endpoint, context, subject_id=old.id)

            try:
                await self._ledger.record(edge)
            except Exception as exc:
                await self._reinstate_old(old)
                await self._discard_replacement(issued.record, old)
                raise await self._fail(exc, "regenerated", endpoint, context, subject_id=old.id)

        await self._audit(
            "regenerated",
            "success",
            endpoint,
            context,
            subject_id=issued.record.id,
            detail=f"Replaced credential {old.id}: {reason}",
        )
        logger.info(
            "credential_rotated",
            old_credential_id=old.id,
            new_credential_id=issued.record.id,
            key_ref=old.hash_prefix,
            owner=old.owner,
        )
        return RotationResult(
            old_key=old_key,
            key=issued.key,
            secondary_secret=issued.secondary_secret,
            record=issued.record,
            edge=edge,
        )

    # ─── Revoke ───────────────────────────────────────────────────────────────

    async def revoke(
        self,
        presented_key: Optional[str],
        context: CallContext = _NO_CONTEXT,
    ) -> CredentialRecord:
        """Permanently retire a credential.

        The 'deleted' success entry is appended BEFORE the record is removed.

        Returns:
            The record as it was before removal.

        Raises:
            ValidationError: key missing / blank.
            NotFoundError:   key unknown (or already retired).
            StorageError:    store failure.
        """
        endpoint = "revoke"
        try:
            key = _require(presented_key, "API key")
        except ValidationError as exc:
            await self._audit("rejected", "failure", endpoint, context, detail=exc.message)
            raise

        digest = hash_key(key, self._key_pepper)
        async with self._key_lock(digest):
            try:
                record = await self._find_live(digest)
            except Exception as exc:
                raise await self._fail(exc, "deleted", endpoint, context)

            await self._audit(
                "deleted",
                "success",
                endpoint,
                context,
                subject_id=record.id,
                detail=f"Credential revoked for owner '{record.owner}'",
            )
            try:
                retired = await self._retire(record.id)
            except Exception as exc:
                # The success entry is already written; surface the mismatch here.
                logger.error(
                    "revoke_after_audit_failed",
                    credential_id=record.id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                if isinstance(exc, CredentialError):
                    raise
                raise StorageError("Failed to remove credential") from exc
            if not retired:
                logger.error("revoke_lost_race", credential_id=record.id)
                raise NotFoundError("API key was retired by a concurrent request")

        logger.info("credential_revoked", credential_id=record.id, key_ref=record.hash_prefix)
        return record

    # ─── List ─────────────────────────────────────────────────────────────────

    async def list_credentials(self, context: CallContext = _NO_CONTEXT) -> list[CredentialRecord]:
        """All records newest first, capped at list_limit. Never includes secrets."""
        endpoint = "list"
        try:
            records = await self._store.list_all(limit=self._list_limit)
        except Exception as exc:
            raise await self._fail(exc, "listed", endpoint, context)

        await self._audit(
            "listed",
            "success",
            endpoint,
            context,
            detail=f"{len(records)} credential(s) listed",
        )
        return records

    async def reject(self, endpoint: str, detail: str, context: CallContext = _NO_CONTEXT) -> None:
        """Audit a call whose request could not be parsed into an operation."""
        await self._audit("rejected", "failure", endpoint, context, detail=detail)

    # ─── Internals ────────────────────────────────────────────────────────────

    def _key_lock(self, digest: str) -> asyncio.Lock:
        """Per-key lock; dropped automatically once no coroutine holds it."""
        lock = self._locks.get(digest)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[digest] = lock
        return lock

    async def _mint(self, owner: str, label: str) -> IssuedCredential:
        key = generate_key()
        secondary_secret = generate_secondary_secret()
        # bcrypt blocks for the full cost factor; keep it off the event loop.
        secondary_secret_hash = await asyncio.to_thread(
            hash_secret, secondary_secret, self._secret_hash_rounds
        )
        record = CredentialRecord(
            id=generate_id(),
            owner=owner,
            label=label,
            verification_hash=hash_key(key, self._key_pepper),
            secondary_secret_hash=secondary_secret_hash,
            created_at=self._clock(),
        )
        stored = await self._store.insert(record)
        return IssuedCredential(record=stored, key=key, secondary_secret=secondary_secret)

    async def _find_live(self, digest: str) -> CredentialRecord:
        """Record for digest regardless of store-level state; inactive counts as gone."""
        record = await self._store.find_by_verification_hash(digest)
        if record is None or not constant_time_equals(record.verification_hash, digest):
            raise NotFoundError("API key not found")
        if not record.active:
            raise NotFoundError("API key has already been retired")
        return record

    async def _retire(self, record_id: str) -> bool:
        if self._soft_delete:
            return await self._store.deactivate(record_id)
        return await self._store.delete(record_id)

    async def _discard_replacement(self, replacement: CredentialRecord, old: CredentialRecord) -> None:
        """Compensate a half-finished rotation by removing the new record."""
        try:
            await self._store.delete(replacement.id)
        except Exception as exc:
            logger.error(
                "rotation_compensation_failed",
                old_credential_id=old.id,
                orphaned_credential_id=replacement.id,
                error=str(exc),
            )

    async def _reinstate_old(self, old: CredentialRecord) -> None:
        try:
            await self._store.reinstate(old)
        except Exception as exc:
            logger.error(
                "rotation_reinstate_failed",
                old_credential_id=old.id,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def _fail(
        self,
        exc: Exception,
        event_type: EventType,
        endpoint: str,
        context: CallContext,
        subject_id: Optional[str] = None,
    ) -> CredentialError:
        """Audit a failed call and return the classified error to raise."""
        if isinstance(exc, CredentialError):
            error = exc
        else:
            error = StorageError()
            error.__cause__ = exc
        if isinstance(error, (ConflictError, StorageError)):
            logger.error(
                "credential_operation_failed",
                endpoint=endpoint,
                event_type=event_type,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        await self._audit(
            event_type,
            "failure",
            endpoint,
            context,
            subject_id=subject_id,
            detail=error.message,
        )
        return error

    async def _audit(
        self,
        event_type: EventType,
        outcome: OutcomeType,
        endpoint: str,
        context: CallContext,
        subject_id: Optional[str] = None,
        detail: str = "",
    ) -> None:
        """Append one audit entry. Never raises."""
        try:
            entry = AuditEntry(
                entry_id=generate_ulid(),
                timestamp=self._clock(),
                event_type=event_type,
                outcome=outcome,
                endpoint=endpoint,
                subject_id=subject_id,
                source=context.source,
                detail=detail,
            )
            await self._audit_backend.append(entry)
        except Exception as exc:
            logger.error(
                "audit_append_failed",
                event_type=event_type,
                outcome=outcome,
                endpoint=endpoint,
                error=str(exc),
                error_type=type(exc).__name__,
            )

