"""Unit tests for InMemoryAuditBackend, NullAuditBackend, AuditFilters and AuditEntry."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.audit.memory_backend import InMemoryAuditBackend
from app.audit.models import EVENT_TYPES, OUTCOMES, AuditEntry
from app.audit.protocol import AuditBackend, AuditFilters, NullAuditBackend

_T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _make_entry(entry_id: str, event_type: str = "created", minutes: int = 0) -> AuditEntry:
    return AuditEntry(
        entry_id=entry_id,
        timestamp=_T0 + timedelta(minutes=minutes),
        event_type=event_type,  # type: ignore[arg-type]
        outcome="success",
        endpoint="issue",
        subject_id="cred-1",
    )


class TestAuditEntry:
    def test_to_dict_uses_camel_case(self) -> None:
        data = _make_entry("e1").to_dict()
        assert data["entryId"] == "e1"
        assert data["eventType"] == "created"
        assert data["subjectId"] == "cred-1"
        assert data["timestamp"] == _T0.isoformat()
        assert data["schemaVersion"] == 1

    def test_is_frozen(self) -> None:
        entry = _make_entry("e1")
        with pytest.raises(AttributeError):
            entry.detail = "changed"  # type: ignore[misc]

    def test_event_type_set_includes_listed_and_rejected(self) -> None:
        assert {"listed", "rejected"} <= EVENT_TYPES
        assert OUTCOMES == {"success", "failure"}


class TestAuditFiltersMatches:
    def test_empty_filters_match_everything(self) -> None:
        assert AuditFilters().matches(_make_entry("e1")) is True

    def test_event_type_mismatch(self) -> None:
        assert AuditFilters(event_type="deleted").matches(_make_entry("e1")) is False

    def test_time_window(self) -> None:
        entry = _make_entry("e1", minutes=5)
        assert AuditFilters(since=_T0 + timedelta(minutes=5)).matches(entry) is True
        assert AuditFilters(since=_T0 + timedelta(minutes=6)).matches(entry) is False
        assert AuditFilters(until=_T0 + timedelta(minutes=4)).matches(entry) is False


class TestInMemoryAuditBackend:
    def test_protocol_compliance(self) -> None:
        assert isinstance(InMemoryAuditBackend(), AuditBackend)

    async def test_append_and_query_newest_first(self) -> None:
        backend = InMemoryAuditBackend()
        for i in range(3):
            await backend.append(_make_entry(f"e{i}", minutes=i))
        entries = await backend.query_entries(AuditFilters())
        assert [e.entry_id for e in entries] == ["e2", "e1", "e0"]

    async def test_idempotent_on_entry_id(self) -> None:
        backend = InMemoryAuditBackend()
        await backend.append(_make_entry("e1"))
        await backend.append(_make_entry("e1"))
        assert len(backend.entries) == 1

    async def test_filters_and_paging(self) -> None:
        backend = InMemoryAuditBackend()
        await backend.append(_make_entry("e1", "created", 0))
        await backend.append(_make_entry("e2", "validated", 1))
        await backend.append(_make_entry("e3", "validated", 2))
        page = await backend.query_entries(AuditFilters(event_type="validated", limit=1, offset=1))
        assert [e.entry_id for e in page] == ["e2"]
        assert await backend.count_entries(AuditFilters(event_type="validated", limit=1)) == 2

    async def test_entries_snapshot_is_a_copy(self) -> None:
        backend = InMemoryAuditBackend()
        await backend.append(_make_entry("e1"))
        backend.entries.clear()
        assert len(backend.entries) == 1


class TestNullAuditBackend:
    async def test_discards_everything(self) -> None:
        backend = NullAuditBackend()
        await backend.append(_make_entry("e1"))
        assert await backend.query_entries(AuditFilters()) == []
        assert await backend.count_entries(AuditFilters()) == 0
        assert await backend.health_check() is True
        await backend.close()
