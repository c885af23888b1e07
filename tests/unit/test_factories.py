"""Unit tests for audit/factory.py and credentials/factory.py.

Tests:
  - audit.backend sqlite (default) / memory / null → matching backend
  - store.backend sqlite (default) / memory → matching store + ledger pair
  - configured paths are honoured
  - RuntimeError from a schema mismatch propagates (startup refused)
  - a failing ledger initialize closes the already-open store
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import aiosqlite
import pytest

from app.audit.factory import create_audit_backend
from app.audit.memory_backend import InMemoryAuditBackend
from app.audit.protocol import AuditBackend, NullAuditBackend
from app.audit.sqlite_backend import LocalSQLiteAuditBackend
from app.config import Config
from app.credentials.factory import create_credential_backends
from app.credentials.memory_backend import InMemoryCredentialStore, InMemoryRotationLedger
from app.credentials.sqlite_backend import (
    LocalSQLiteCredentialStore,
    LocalSQLiteRotationLedger,
)


def _config(tmp_path: Path, store_backend: str = "sqlite", audit_backend: str = "sqlite") -> Config:
    config = Config.defaults()
    config.store.backend = store_backend
    config.store.path = str(tmp_path / "keys.db")
    config.audit.backend = audit_backend
    config.audit.path = str(tmp_path / "audit.db")
    return config


# ─── Audit backend selection ──────────────────────────────────────────────────


class TestAuditBackendSelection:
    async def test_sqlite_is_default(self, tmp_path: Path) -> None:
        backend = await create_audit_backend(_config(tmp_path))
        try:
            assert isinstance(backend, LocalSQLiteAuditBackend)
            assert isinstance(backend, AuditBackend)
            assert backend.db_path == str(tmp_path / "audit.db")
            assert (tmp_path / "audit.db").exists()
        finally:
            await backend.close()

    async def test_memory(self, tmp_path: Path) -> None:
        backend = await create_audit_backend(_config(tmp_path, audit_backend="memory"))
        assert isinstance(backend, InMemoryAuditBackend)

    async def test_null(self, tmp_path: Path) -> None:
        backend = await create_audit_backend(_config(tmp_path, audit_backend="null"))
        assert isinstance(backend, NullAuditBackend)
        assert not (tmp_path / "audit.db").exists()

    async def test_schema_mismatch_propagates(self, tmp_path: Path) -> None:
        async with aiosqlite.connect(str(tmp_path / "audit.db")) as db:
            await db.execute("PRAGMA user_version = 2;")
            await db.commit()
        with pytest.raises(RuntimeError):
            await create_audit_backend(_config(tmp_path))


# ─── Credential backend selection ─────────────────────────────────────────────


class TestCredentialBackendSelection:
    async def test_sqlite_is_default(self, tmp_path: Path) -> None:
        store, ledger = await create_credential_backends(_config(tmp_path))
        try:
            assert isinstance(store, LocalSQLiteCredentialStore)
            assert isinstance(ledger, LocalSQLiteRotationLedger)
            assert store.db_path == str(tmp_path / "keys.db")
            assert await store.health_check() is True
            assert await ledger.health_check() is True
        finally:
            await ledger.close()
            await store.close()

    async def test_memory(self, tmp_path: Path) -> None:
        store, ledger = await create_credential_backends(_config(tmp_path, store_backend="memory"))
        assert isinstance(store, InMemoryCredentialStore)
        assert isinstance(ledger, InMemoryRotationLedger)
        assert not (tmp_path / "keys.db").exists()

    async def test_schema_mismatch_propagates(self, tmp_path: Path) -> None:
        async with aiosqlite.connect(str(tmp_path / "keys.db")) as db:
            await db.execute("PRAGMA user_version = 5;")
            await db.commit()
        with pytest.raises(RuntimeError):
            await create_credential_backends(_config(tmp_path))

    async def test_ledger_failure_closes_store(self, tmp_path: Path) -> None:
        with patch.object(
            LocalSQLiteRotationLedger,
            "initialize",
            AsyncMock(side_effect=RuntimeError("boom")),
        ), patch.object(
            LocalSQLiteCredentialStore, "close", AsyncMock()
        ) as mock_close:
            with pytest.raises(RuntimeError, match="boom"):
                await create_credential_backends(_config(tmp_path))
        mock_close.assert_awaited_once()
