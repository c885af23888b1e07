"""Credential store / rotation ledger factory.

Backend selection (config.store.backend):
  - "sqlite" (default) → LocalSQLiteCredentialStore + LocalSQLiteRotationLedger
                         sharing config.store.path
  - "memory"           → InMemoryCredentialStore + InMemoryRotationLedger

Both halves are always created from the same backend so that the ledger
never references hashes from a different store.
"""

from __future__ import annotations

from app.config import Config
from app.credentials.protocol import CredentialStore, RotationLedger
from app.utils.logger import get_logger

logger = get_logger(__name__)


async def create_credential_backends(config: Config) -> tuple[CredentialStore, RotationLedger]:
    """Create and initialize the credential store and rotation ledger.

    Raises:
      RuntimeError: If keys.db carries an incompatible PRAGMA user_version.
                    Propagated to the FastAPI lifespan → startup refused.
    """
    if config.store.backend == "memory":
        from app.credentials.memory_backend import (
            InMemoryCredentialStore,
            InMemoryRotationLedger,
        )

        logger.warning(
            "credential_store_selected",
            backend="InMemoryCredentialStore",
            note="credentials are lost on restart",
        )
        return InMemoryCredentialStore(), InMemoryRotationLedger()

    from app.credentials.sqlite_backend import (
        LocalSQLiteCredentialStore,
        LocalSQLiteRotationLedger,
    )

    store = LocalSQLiteCredentialStore(db_path=config.store.path)
    await store.initialize()
    ledger = LocalSQLiteRotationLedger(db_path=config.store.path)
    try:
        await ledger.initialize()
    except Exception:
        await store.close()
        raise

    logger.info(
        "credential_store_selected",
        backend="LocalSQLiteCredentialStore",
        db_path=store.db_path,
    )
    return store, ledger
