"""Unit tests for LocalSQLiteAuditBackend.

Covers:
  - schema creation, WAL mode, version guard
  - append(): persisted, idempotent on entry_id, never raises
  - query_entries(): filters, newest-first ordering, pagination
  - count_entries() ignores limit/offset
  - CHECK constraints reject unknown event types (append swallows + logs)
  - health_check()
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncIterator, Optional
from unittest.mock import patch

import aiosqlite
import pytest

from app.audit.models import AuditEntry
from app.audit.protocol import AuditBackend, AuditFilters
from app.audit.sqlite_backend import LocalSQLiteAuditBackend

_T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _make_entry(
    entry_id: str,
    event_type: str = "created",
    outcome: str = "success",
    subject_id: Optional[str] = "cred-1",
    minutes: int = 0,
) -> AuditEntry:
    return AuditEntry(
        entry_id=entry_id,
        timestamp=_T0 + timedelta(minutes=minutes),
        event_type=event_type,  # type: ignore[arg-type]
        outcome=outcome,  # type: ignore[arg-type]
        endpoint="issue",
        subject_id=subject_id,
        source="127.0.0.1 pytest",
        detail="test entry",
    )


@pytest.fixture
async def backend(tmp_path: Path) -> AsyncIterator[LocalSQLiteAuditBackend]:
    b = LocalSQLiteAuditBackend(db_path=str(tmp_path / "audit.db"))
    await b.initialize()
    yield b
    await b.close()


# ─── Schema ───────────────────────────────────────────────────────────────────


class TestSchema:
    def test_protocol_compliance(self) -> None:
        assert isinstance(LocalSQLiteAuditBackend(":memory:"), AuditBackend)

    async def test_fresh_db_creates_schema(self, tmp_path: Path) -> None:
        db_path = str(tmp_path / "audit.db")
        b = LocalSQLiteAuditBackend(db_path=db_path)
        await b.initialize()
        await b.close()

        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("PRAGMA user_version;")
            assert (await cursor.fetchone())[0] == 1
            cursor = await db.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='audit_entries'"
            )
            assert await cursor.fetchone() is not None

    async def test_wal_mode(self, backend: LocalSQLiteAuditBackend) -> None:
        async with aiosqlite.connect(backend.db_path) as db:
            cursor = await db.execute("PRAGMA journal_mode;")
            assert (await cursor.fetchone())[0].lower() == "wal"

    async def test_version_mismatch_raises(self, tmp_path: Path) -> None:
        db_path = str(tmp_path / "audit.db")
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA user_version = 7;")
            await db.commit()

        b = LocalSQLiteAuditBackend(db_path=db_path)
        with pytest.raises(RuntimeError, match="schema version: 7"):
            await b.initialize()

    async def test_health_check(self, tmp_path: Path) -> None:
        b = LocalSQLiteAuditBackend(db_path=str(tmp_path / "audit.db"))
        assert await b.health_check() is False
        await b.initialize()
        assert await b.health_check() is True
        await b.close()
        assert await b.health_check() is False


# ─── Append ───────────────────────────────────────────────────────────────────


class TestAppend:
    async def test_append_persists_all_fields(self, backend: LocalSQLiteAuditBackend) -> None:
        entry = _make_entry("e1")
        await backend.append(entry)
        assert await backend.query_entries(AuditFilters()) == [entry]

    async def test_append_is_idempotent_on_entry_id(self, backend: LocalSQLiteAuditBackend) -> None:
        entry = _make_entry("e1")
        await backend.append(entry)
        await backend.append(entry)
        assert await backend.count_entries(AuditFilters()) == 1

    async def test_null_subject_round_trips(self, backend: LocalSQLiteAuditBackend) -> None:
        await backend.append(_make_entry("e1", outcome="failure", subject_id=None))
        [stored] = await backend.query_entries(AuditFilters())
        assert stored.subject_id is None

    async def test_append_before_initialize_does_not_raise(self, tmp_path: Path) -> None:
        b = LocalSQLiteAuditBackend(db_path=str(tmp_path / "audit.db"))
        await b.append(_make_entry("e1"))  # must not raise

    async def test_check_constraint_violation_is_swallowed_and_logged(
        self, backend: LocalSQLiteAuditBackend
    ) -> None:
        with patch("app.audit.sqlite_backend.logger") as mock_logger:
            await backend.append(_make_entry("e1", event_type="bogus"))
        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args.args[0] == "audit_write_failed"
        assert await backend.count_entries(AuditFilters()) == 0

    async def test_backend_usable_after_failed_append(
        self, backend: LocalSQLiteAuditBackend
    ) -> None:
        await backend.append(_make_entry("e1", event_type="bogus"))
        await backend.append(_make_entry("e2"))
        assert await backend.count_entries(AuditFilters()) == 1


# ─── Query ────────────────────────────────────────────────────────────────────


class TestQuery:
    async def _seed(self, backend: LocalSQLiteAuditBackend) -> None:
        await backend.append(_make_entry("e1", "created", "success", "c1", minutes=0))
        await backend.append(_make_entry("e2", "validated", "failure", None, minutes=1))
        await backend.append(_make_entry("e3", "validated", "success", "c1", minutes=2))
        await backend.append(_make_entry("e4", "deleted", "success", "c1", minutes=3))

    async def test_newest_first(self, backend: LocalSQLiteAuditBackend) -> None:
        await self._seed(backend)
        entries = await backend.query_entries(AuditFilters())
        assert [e.entry_id for e in entries] == ["e4", "e3", "e2", "e1"]

    async def test_filter_event_type(self, backend: LocalSQLiteAuditBackend) -> None:
        await self._seed(backend)
        entries = await backend.query_entries(AuditFilters(event_type="validated"))
        assert [e.entry_id for e in entries] == ["e3", "e2"]

    async def test_filter_outcome_and_subject(self, backend: LocalSQLiteAuditBackend) -> None:
        await self._seed(backend)
        entries = await backend.query_entries(
            AuditFilters(outcome="success", subject_id="c1")
        )
        assert [e.entry_id for e in entries] == ["e4", "e3", "e1"]

    async def test_filter_time_window(self, backend: LocalSQLiteAuditBackend) -> None:
        await self._seed(backend)
        entries = await backend.query_entries(
            AuditFilters(
                since=_T0 + timedelta(minutes=1),
                until=_T0 + timedelta(minutes=2),
            )
        )
        assert [e.entry_id for e in entries] == ["e3", "e2"]

    async def test_pagination(self, backend: LocalSQLiteAuditBackend) -> None:
        await self._seed(backend)
        page = await backend.query_entries(AuditFilters(limit=2, offset=1))
        assert [e.entry_id for e in page] == ["e3", "e2"]

    async def test_count_ignores_paging(self, backend: LocalSQLiteAuditBackend) -> None:
        await self._seed(backend)
        assert await backend.count_entries(AuditFilters(limit=1, offset=3)) == 4
        assert await backend.count_entries(AuditFilters(event_type="validated")) == 2
