"""Request dependencies for the credential API.

Provides:
  get_service()       — the CredentialLifecycleService wired by the lifespan
  get_call_context()  — caller origin (client IP + User-Agent) for audit entries
  extract_api_key()   — presented key from request headers

Header extraction precedence:
  1. X-API-Key: <key>               (preferred)
  2. Authorization: Bearer kl_...   (fallback — only keyledger-prefixed tokens)

Other Authorization values are ignored; they may belong to an upstream
service sitting behind the protected resource.
"""

from __future__ import annotations

import re
from typing import Optional

from fastapi import HTTPException, Request

from app.audit.protocol import AuditBackend
from app.constants import KEY_PREFIX
from app.credentials.models import CallContext
from app.credentials.protocol import RotationLedger
from app.credentials.service import CredentialLifecycleService

# "Bearer kl_..." with the prefixed token as group 1.
_BEARER_KEY_RE = re.compile(rf"^Bearer\s+({re.escape(KEY_PREFIX)}\S+)", re.IGNORECASE)


def _extract_bearer_key(authorization: str) -> Optional[str]:
    """Return the kl_ token from an Authorization header, or None."""
    if not authorization:
        return None
    m = _BEARER_KEY_RE.match(authorization.strip())
    return m.group(1) if m else None


def extract_api_key(request: Request) -> Optional[str]:
    """Presented key from X-API-Key, falling back to Authorization: Bearer kl_..."""
    return request.headers.get("X-API-Key") or _extract_bearer_key(
        request.headers.get("Authorization", "")
    )


async def get_call_context(request: Request) -> CallContext:
    """FastAPI dependency: network origin + client identifier for the audit trail."""
    return CallContext(
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )


async def get_service(request: Request) -> CredentialLifecycleService:
    """FastAPI dependency: the lifecycle service; HTTP 503 until startup completes."""
    service: Optional[CredentialLifecycleService] = getattr(
        request.app.state, "service", None
    )
    if service is None or not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail="keyledger is starting up. Try again shortly.",
        )
    return service


async def get_audit_backend(request: Request) -> AuditBackend:
    """FastAPI dependency: the audit backend (read side of the trail)."""
    await get_service(request)
    return request.app.state.audit_backend


async def get_rotation_ledger(request: Request) -> RotationLedger:
    """FastAPI dependency: the rotation ledger (read side)."""
    await get_service(request)
    return request.app.state.ledger
