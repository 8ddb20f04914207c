"""Tests for the chip status mirror."""

import asyncio
import logging
from dataclasses import dataclass, field

import pytest

from firezap.adapters.supabase_chip_repository import SupabaseChipRepository
from firezap.domain.sessions import EventKind, LifecycleEvent, SessionStatus
from firezap.services.chips import ChipStatusService
from tests.fakes import InMemoryChipRepository


@dataclass
class FakeTable:
    name: str
    last_payload: object | None = None
    last_filters: list[tuple[str, object]] = field(default_factory=list)
    executed: int = 0

    def update(self, payload) -> "FakeTable":  # type: ignore[no-untyped-def]
        self.last_payload = payload
        return self

    def eq(self, column: str, value) -> "FakeTable":  # type: ignore[no-untyped-def]
        self.last_filters.append((column, value))
        return self

    def execute(self) -> None:
        self.executed += 1


@dataclass
class FakeClient:
    tables: dict[str, FakeTable] = field(default_factory=dict)

    def table(self, name: str) -> FakeTable:
        return self.tables.setdefault(name, FakeTable(name))


def _event(session_id: str, status: SessionStatus) -> LifecycleEvent:
    return LifecycleEvent(session_id, EventKind.STATUS, status)


def test_ready_marks_chip_active() -> None:
    repository = InMemoryChipRepository()
    service = ChipStatusService(repository)

    asyncio.run(service.on_event(_event("5511999999999", SessionStatus.READY)))

    assert repository.updates == [("+5511999999999", "active", True)]


def test_lifecycle_statuses_map_to_chip_statuses() -> None:
    repository = InMemoryChipRepository()
    service = ChipStatusService(repository)

    async def scenario() -> None:
        for status in (
            SessionStatus.STARTING,
            SessionStatus.DISCONNECTED,
            SessionStatus.EXITED,
            SessionStatus.ERROR,
        ):
            await service.on_event(_event("551100", status))

    asyncio.run(scenario())

    assert [update[1:] for update in repository.updates] == [
        ("connecting", False),
        ("disconnected", False),
        ("disconnected", False),
        ("error", False),
    ]


def test_non_numeric_sessions_are_not_mirrored() -> None:
    repository = InMemoryChipRepository()
    service = ChipStatusService(repository)

    asyncio.run(service.on_event(_event("support-desk", SessionStatus.READY)))

    assert repository.updates == []


def test_repository_failures_are_logged_not_raised(
    caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(logging.getLogger("firezap"), "propagate", True)
    service = ChipStatusService(InMemoryChipRepository(fail=True))

    asyncio.run(service.on_event(_event("551100", SessionStatus.READY)))

    assert "Failed to mirror chip status" in caplog.text


def test_supabase_chip_repository_updates_by_phone_number() -> None:
    client = FakeClient()
    repository = SupabaseChipRepository(client)  # type: ignore[arg-type]

    repository.update_status("+5511999999999", "active", True)

    table = client.tables["chips"]
    assert table.last_filters == [("phone_number", "+5511999999999")]
    assert table.last_payload["status"] == "active"  # type: ignore[index]
    assert table.last_payload["connected"] is True  # type: ignore[index]
    assert "last_activity" in table.last_payload  # type: ignore[operator]
    assert table.executed == 1
