"""Health endpoint for keyledger.

Implements:
  GET /health — 503 before ``app.state.ready``, then 200 with backend status

/health is polled by container health probes and process supervisors. A
failing backend reports ``"status": "degraded"`` with HTTP 200 so that the
probe distinguishes "starting" (503) from "running but unhealthy".
"""

from __future__ import annotations

import os
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from app.config import Config

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check endpoint.

    Response body (200):
        {
          "status": "ok" | "degraded",
          "store": "healthy" | "error",
          "ledger": "healthy" | "error",
          "audit": "healthy" | "error",
          "store_backend": "sqlite" | "memory",
          "audit_backend": "sqlite" | "memory" | "null",
          "keys_path": "/path/to/keys.db" | null,
          "audit_path": "/path/to/audit.db" | null,
          "soft_delete": false
        }

    Response body (503): {"success": false, "message": "..."}
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail="keyledger is starting up. Try again shortly.",
        )

    config: Config = request.app.state.config
    store_ok = await request.app.state.store.health_check()
    ledger_ok = await request.app.state.ledger.health_check()
    audit_ok = await request.app.state.audit_backend.health_check()

    return {
        "status": "ok" if (store_ok and ledger_ok and audit_ok) else "degraded",
        "store": "healthy" if store_ok else "error",
        "ledger": "healthy" if ledger_ok else "error",
        "audit": "healthy" if audit_ok else "error",
        "store_backend": config.store.backend,
        "audit_backend": config.audit.backend,
        "keys_path": (
            os.path.expanduser(config.store.path)
            if config.store.backend == "sqlite"
            else None
        ),
        "audit_path": (
            os.path.expanduser(config.audit.path)
            if config.audit.backend == "sqlite"
            else None
        ),
        "soft_delete": config.credentials.soft_delete,
    }
