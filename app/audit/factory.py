"""Audit backend factory — backend selection and initialization.

Backend selection (config.audit.backend):
  - "sqlite" (default) → LocalSQLiteAuditBackend at config.audit.path
  - "memory"           → InMemoryAuditBackend (lost on restart)
  - "null"             → NullAuditBackend (entries discarded)

PRAGMA version guard:
  LocalSQLiteAuditBackend.initialize() raises RuntimeError if PRAGMA
  user_version is not 0 (fresh) or 1 (expected). The FastAPI lifespan
  propagates this RuntimeError to refuse startup.
"""

from __future__ import annotations

from app.audit.protocol import AuditBackend, NullAuditBackend
from app.config import Config
from app.utils.logger import get_logger

logger = get_logger(__name__)


async def create_audit_backend(config: Config) -> AuditBackend:
    """Create and initialize the configured audit backend.

    Raises:
      RuntimeError: If LocalSQLiteAuditBackend finds an incompatible schema.
    """
    backend_name = config.audit.backend

    if backend_name == "null":
        logger.warning(
            "audit_backend_selected",
            backend="NullAuditBackend",
            note="audit entries are discarded",
        )
        return NullAuditBackend()

    if backend_name == "memory":
        from app.audit.memory_backend import InMemoryAuditBackend

        logger.info("audit_backend_selected", backend="InMemoryAuditBackend")
        return InMemoryAuditBackend()

    return await _create_local_sqlite_backend(config.audit.path)


async def _create_local_sqlite_backend(db_path: str) -> AuditBackend:
    """Create and initialize a LocalSQLiteAuditBackend.

    Raises:
      RuntimeError: If PRAGMA user_version indicates an incompatible schema.
    """
    from app.audit.sqlite_backend import LocalSQLiteAuditBackend

    backend = LocalSQLiteAuditBackend(db_path=db_path)
    await backend.initialize()

    logger.info(
        "audit_backend_selected",
        backend="LocalSQLiteAuditBackend",
        db_path=backend.db_path,
    )
    return backend
