"""Credential API endpoints.

Provides:
  POST   /api/generate-key    — issue a credential (key + secret shown once)
  POST   /api/validate-key    — validate a presented key
  POST   /api/regenerate-key  — rotate a key (new key + secret shown once)
  DELETE /api/delete-key      — revoke a key
  GET    /api/keys            — list credentials (hash included, secret never)
  GET    /api/protected-data  — sample resource gated behind a key header
  GET    /api/audit-log       — read the audit trail (filters + pagination)
  GET    /api/rotations       — read the rotation ledger

Every payload carries a boolean ``success``. Failures are raised as
CredentialError subclasses and rendered by the handler in app/main.py as
``{"success": false, "message": ...}`` with the mapped status code.

The key-management routes are unauthenticated. Bind to 127.0.0.1 or put
the service behind a trusted proxy.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from app.audit.models import EVENT_TYPES, OUTCOMES
from app.audit.protocol import AuditBackend, AuditFilters
from app.constants import DEFAULT_QUERY_LIMIT, MAX_QUERY_LIMIT
from app.credentials.errors import InvalidCredentialError, ValidationError
from app.credentials.models import CallContext
from app.credentials.protocol import RotationLedger
from app.credentials.service import CredentialLifecycleService
from app.api.dependencies import (
    extract_api_key,
    get_audit_backend,
    get_call_context,
    get_rotation_ledger,
    get_service,
)
from app.utils.logger import get_logger
from app.utils.ulid import is_valid_ulid

logger = get_logger(__name__)

router = APIRouter(tags=["api-keys"])

PROTECTED_RESOURCE_NAME = "protected-data"

# Route path → service endpoint name, for auditing requests FastAPI rejects
# before the route body runs.
LIFECYCLE_ENDPOINTS: dict[str, str] = {
    "/api/generate-key": "issue",
    "/api/validate-key": "validate",
    "/api/regenerate-key": "rotate",
    "/api/delete-key": "revoke",
}


# ─── Request Models ───────────────────────────────────────────────────────────
# Every field is optional at the schema level: a missing value is reported by
# the service as ValidationError (400) and audited, rather than rejected by
# FastAPI before the call is recorded.


class GenerateKeyRequest(BaseModel):
    """Request body for POST /api/generate-key."""

    owner: Optional[str] = None
    """Principal the credential is issued to. ``username`` is accepted too."""
    username: Optional[str] = None
    label: Optional[str] = None
    """Purpose of the credential."""


class PresentedKeyRequest(BaseModel):
    """Request body carrying a presented key (validate / delete)."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: Optional[str] = Field(default=None, alias="apiKey")


class RegenerateKeyRequest(PresentedKeyRequest):
    """Request body for POST /api/regenerate-key."""

    reason: Optional[str] = None
    """Free-text reason recorded on the rotation edge."""


# ─── Credential lifecycle ─────────────────────────────────────────────────────


@router.post("/generate-key")
async def generate_key(
    body: Optional[GenerateKeyRequest] = None,
    service: CredentialLifecycleService = Depends(get_service),
    context: CallContext = Depends(get_call_context),
) -> dict:
    """Issue a new credential. The key and secret appear in this response only.

    Returns:
        JSON: {success, message, id, key, secret, owner, label, createdAt}

    Raises:
        HTTP 400: owner or label missing.
        HTTP 500: store failure.
    """
    body = body or GenerateKeyRequest()
    issued = await service.issue(body.owner or body.username, body.label, context)
    record = issued.record
    return {
        "success": True,
        "message": (
            "API key created. Store the key and secret now. "
            "The secret cannot be recovered after this response."
        ),
        "id": record.id,
        "key": issued.key,
        "secret": issued.secondary_secret,
        "owner": record.owner,
        "label": record.label,
        "createdAt": record.created_at.isoformat(),
    }


@router.post("/validate-key")
async def validate_key(
    body: Optional[PresentedKeyRequest] = None,
    service: CredentialLifecycleService = Depends(get_service),
    context: CallContext = Depends(get_call_context),
) -> dict:
    """Validate a presented key and stamp its last-used time.

    Raises:
        HTTP 400: key missing.
        HTTP 401: key unknown or inactive.
    """
    body = body or PresentedKeyRequest()
    result = await service.validate(body.api_key, context)
    return {
        "success": True,
        "message": "API key valid",
        "data": result.to_dict(),
    }


@router.post("/regenerate-key")
async def regenerate_key(
    body: Optional[RegenerateKeyRequest] = None,
    service: CredentialLifecycleService = Depends(get_service),
    context: CallContext = Depends(get_call_context),
) -> dict:
    """Rotate a key. The old key stops working immediately.

    Returns:
        JSON: {success, message, oldKey, key, secret, id, owner, label, createdAt}

    Raises:
        HTTP 400: key missing.
        HTTP 404: key unknown.
        HTTP 500: store or ledger failure (nothing changed).
    """
    body = body or RegenerateKeyRequest()
    rotation = await service.rotate(body.api_key, body.reason, context)
    record = rotation.record
    return {
        "success": True,
        "message": (
            "API key regenerated. Store the new key and secret now. "
            "The old key no longer works."
        ),
        "oldKey": rotation.old_key,
        "key": rotation.key,
        "secret": rotation.secondary_secret,
        "id": record.id,
        "owner": record.owner,
        "label": record.label,
        "createdAt": record.created_at.isoformat(),
    }


@router.delete("/delete-key")
async def delete_key(
    body: Optional[PresentedKeyRequest] = None,
    service: CredentialLifecycleService = Depends(get_service),
    context: CallContext = Depends(get_call_context),
) -> dict:
    """Revoke a key permanently.

    Raises:
        HTTP 400: key missing.
        HTTP 404: key unknown or already revoked.
    """
    body = body or PresentedKeyRequest()
    record = await service.revoke(body.api_key, context)
    return {
        "success": True,
        "message": "API key deleted",
        "id": record.id,
    }


@router.get("/keys")
async def list_keys(
    service: CredentialLifecycleService = Depends(get_service),
    context: CallContext = Depends(get_call_context),
) -> dict:
    """List credentials newest first (verification hash included, secret never)."""
    records = await service.list_credentials(context)
    return {
        "success": True,
        "count": len(records),
        "keys": [record.to_public_dict() for record in records],
    }


@router.get("/protected-data")
async def protected_data(
    request: Request,
    service: CredentialLifecycleService = Depends(get_service),
    context: CallContext = Depends(get_call_context),
) -> dict:
    """Sample resource gated behind X-API-Key (or Authorization: Bearer kl_...).

    Raises:
        HTTP 401: key header missing, or key unknown / inactive.
    """
    try:
        result = await service.access_protected_resource(
            extract_api_key(request), PROTECTED_RESOURCE_NAME, context
        )
    except ValidationError as exc:
        # A missing credential header is an authentication failure here.
        raise InvalidCredentialError("API key missing from request headers") from exc

    return {
        "success": True,
        "message": "Access granted",
        "data": {
            "message": "This is protected data",
            "owner": result.owner,
            "label": result.label,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }


# ─── Inspection ───────────────────────────────────────────────────────────────


@router.get("/audit-log")
async def audit_log(
    event_type: Optional[str] = Query(default=None),
    outcome: Optional[str] = Query(default=None),
    subject_id: Optional[str] = Query(default=None),
    limit: int = Query(default=DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT),
    offset: int = Query(default=0, ge=0),
    audit_backend: AuditBackend = Depends(get_audit_backend),
) -> dict:
    """Read the audit trail, newest first.

    Returns:
        JSON: {success, total, limit, offset, entries: [...]}

    Raises:
        HTTP 400: unknown event_type or outcome, malformed subject_id, or
                  out-of-range paging.
    """
    if event_type is not None and event_type not in EVENT_TYPES:
        raise ValidationError(
            f"Unknown event_type '{event_type}'. Expected one of {sorted(EVENT_TYPES)}."
        )
    if outcome is not None and outcome not in OUTCOMES:
        raise ValidationError(
            f"Unknown outcome '{outcome}'. Expected one of {sorted(OUTCOMES)}."
        )
    if subject_id is not None and not is_valid_ulid(subject_id):
        raise ValidationError(f"subject_id must be a credential id, got '{subject_id}'.")

    filters = AuditFilters(
        event_type=event_type,
        outcome=outcome,
        subject_id=subject_id,
        limit=limit,
        offset=offset,
    )
    entries = await audit_backend.query_entries(filters)
    total = await audit_backend.count_entries(filters)
    return {
        "success": True,
        "total": total,
        "limit": limit,
        "offset": offset,
        "entries": [entry.to_dict() for entry in entries],
    }


@router.get("/rotations")
async def rotations(
    owner: Optional[str] = Query(default=None),
    limit: int = Query(default=DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT),
    offset: int = Query(default=0, ge=0),
    ledger: RotationLedger = Depends(get_rotation_ledger),
) -> dict:
    """Read the rotation ledger, newest first, optionally for one owner."""
    edges = await ledger.list_edges(owner=owner, limit=limit, offset=offset)
    return {
        "success": True,
        "count": len(edges),
        "rotations": [edge.to_dict() for edge in edges],
    }
