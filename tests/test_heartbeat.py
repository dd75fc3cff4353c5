"""Tests for the heartbeat read-modify-write cycle."""

from __future__ import annotations

import copy
import json
from typing import Any, Dict, Optional

import pytest
from freezegun import freeze_time

from qms_sessions.errors import BadRequestError, DocumentError, StaleWriteError, StorageError
from qms_sessions.sessions.heartbeat import NO_STATE_MESSAGE, record_heartbeat
from qms_sessions.sessions.sweep import AUTO_LOGOUT_NOTE
from qms_sessions.state.models import StoredDocument
from qms_sessions.state.store import MemoryDocumentStore
from tests.factories import NOW_MS, iso_at, make_document, session


def _clock(ms: int = NOW_MS):
    return lambda: ms


def test_scenario_other_user_heartbeat_sweeps_stale_alice() -> None:
    store = MemoryDocumentStore(
        make_document(
            heartbeats={"alice": NOW_MS - 95_000},
            auditLogs=[{"username": "alice", "loginTime": iso_at(NOW_MS - 900_000)}],
        )
    )

    result = record_heartbeat(store, "bob", clock=_clock())

    doc = store.read().content
    assert result.to_payload() == {"status": "ok"}
    assert result.expired == ["alice"]
    assert doc["heartbeats"] == {"bob": NOW_MS}
    assert doc["auditLogs"][0]["logoutTime"] == "10/9/2025, 8:53:20 AM"
    assert doc["auditLogs"][0]["durationMinutes"] == 15
    assert doc["auditLogs"][0]["note"] == "Auto-Logout (Heartbeat Timeout)"
    assert AUTO_LOGOUT_NOTE == "Auto-Logout (Heartbeat Timeout)"


def test_no_document_is_a_benign_no_op(memory_store: MemoryDocumentStore) -> None:
    result = record_heartbeat(memory_store, "alice", clock=_clock())
    assert result.found_state is False
    assert result.to_payload() == {"status": "ok", "message": NO_STATE_MESSAGE}
    assert memory_store.read() is None


@pytest.mark.parametrize("username", [None, "", 42, ["alice"]])
def test_missing_username_is_rejected_without_mutation(username: Any) -> None:
    original = make_document(
        heartbeats={"alice": NOW_MS - 95_000},
        auditLogs=[session("alice", NOW_MS - 900_000)],
    )
    store = MemoryDocumentStore(original)

    with pytest.raises(BadRequestError):
        record_heartbeat(store, username, clock=_clock())

    stored = store.read()
    assert stored.version == 1
    assert stored.content == original


def test_heartbeats_map_is_created_when_missing() -> None:
    doc = make_document()
    del doc["heartbeats"]
    store = MemoryDocumentStore(doc)
    record_heartbeat(store, "alice", clock=_clock())
    assert store.read().content["heartbeats"] == {"alice": NOW_MS}


def test_unrelated_fields_are_preserved_exactly() -> None:
    doc = make_document(
        heartbeats={"alice": NOW_MS - 500_000, "bob": NOW_MS - 1_000},
        auditLogs=[session("alice", NOW_MS - 3_600_000)],
        shipments=[{"sku": "TR-900-B", "qty": 40, "country": "DE"}],
        customLogoUrl=None,
        dashboardColumns=4,
    )
    store = MemoryDocumentStore(doc)
    record_heartbeat(store, "carol", clock=_clock())
    after = store.read().content

    for key, value in doc.items():
        if key in ("heartbeats", "auditLogs"):
            continue
        assert json.dumps(after[key], sort_keys=True) == json.dumps(value, sort_keys=True)
    assert list(after) == list(doc)


def test_audit_log_entries_round_trip_byte_for_byte() -> None:
    closed = {
        "id": "log-alice-1",
        "username": "alice",
        "loginTime": iso_at(NOW_MS - 7_200_000),
        "logoutTime": "10/9/2025, 7:00:00 AM",
        "durationMinutes": 60,
    }
    stale = {"id": "log-dave-1", "username": "dave", "loginTime": iso_at(NOW_MS - 600_000), "logoutTime": ""}
    store = MemoryDocumentStore(
        make_document(
            heartbeats={"bob": NOW_MS - 1_000, "dave": NOW_MS - 95_000},
            auditLogs=[closed, session("bob", NOW_MS - 60_000, device="kiosk-3"), stale],
        )
    )

    record_heartbeat(store, "carol", clock=_clock())
    logs = store.read().content["auditLogs"]

    assert json.dumps(logs[0]) == json.dumps(closed)
    assert json.dumps(logs[1]) == json.dumps(session("bob", NOW_MS - 60_000, device="kiosk-3"))
    assert list(logs[2]) == ["id", "username", "loginTime", "logoutTime", "durationMinutes", "note"]
    assert logs[2]["durationMinutes"] == 10


def test_foreign_closed_entry_does_not_block_heartbeats() -> None:
    odd = {"username": "zed", "loginTime": 1759990000000, "logoutTime": 1760000000000}
    store = MemoryDocumentStore(make_document(auditLogs=[odd]))

    record_heartbeat(store, "alice", clock=_clock())

    doc = store.read().content
    assert doc["heartbeats"] == {"alice": NOW_MS}
    assert doc["auditLogs"] == [odd]


def test_string_heartbeat_value_is_not_coerced() -> None:
    store = MemoryDocumentStore(make_document(heartbeats={"bob": str(NOW_MS)}))
    with pytest.raises(DocumentError):
        record_heartbeat(store, "alice", clock=_clock())
    assert store.read().content["heartbeats"] == {"bob": str(NOW_MS)}


def test_live_users_keep_their_timestamps() -> None:
    store = MemoryDocumentStore(make_document(heartbeats={"bob": NOW_MS - 30_000}))
    record_heartbeat(store, "alice", clock=_clock())
    assert store.read().content["heartbeats"] == {"bob": NOW_MS - 30_000, "alice": NOW_MS}


def test_caller_refresh_happens_before_sweep() -> None:
    store = MemoryDocumentStore(
        make_document(
            heartbeats={"alice": NOW_MS - 95_000},
            auditLogs=[session("alice", NOW_MS - 900_000)],
        )
    )
    result = record_heartbeat(store, "alice", clock=_clock())
    doc = store.read().content
    assert result.expired == []
    assert doc["heartbeats"] == {"alice": NOW_MS}
    assert "logoutTime" not in doc["auditLogs"][0]


@freeze_time("2025-10-09 08:53:20")
def test_refresh_uses_wall_clock() -> None:
    store = MemoryDocumentStore(make_document(heartbeats={"alice": NOW_MS - 10_000}))
    before = store.read().content["heartbeats"]["alice"]
    record_heartbeat(store, "alice")
    after = store.read().content["heartbeats"]["alice"]
    assert before <= after == NOW_MS


def test_at_most_one_open_session_after_many_calls() -> None:
    store = MemoryDocumentStore(
        make_document(
            auditLogs=[session("alice", NOW_MS - 900_000), session("bob", NOW_MS - 800_000)],
        )
    )
    ticks = [NOW_MS, NOW_MS + 30_000, NOW_MS + 200_000, NOW_MS + 230_000, NOW_MS + 400_000]
    for i, tick in enumerate(ticks):
        record_heartbeat(store, "bob" if i % 2 else "alice", clock=_clock(tick))

    logs = store.read().content["auditLogs"]
    for user in ("alice", "bob"):
        assert sum(1 for e in logs if e["username"] == user and not e.get("logoutTime")) <= 1


def test_version_advances_on_every_write() -> None:
    store = MemoryDocumentStore(make_document())
    first = record_heartbeat(store, "alice", clock=_clock())
    second = record_heartbeat(store, "alice", clock=_clock(NOW_MS + 1))
    assert (first.version, second.version) == (2, 3)


class _RacingStore(MemoryDocumentStore):
    """Lets a second writer land between this store's read and write."""

    def __init__(self, content: Dict[str, Any]) -> None:
        super().__init__(content)
        self.raced = False

    def read(self) -> Optional[StoredDocument]:
        stored = super().read()
        if not self.raced:
            self.raced = True
            rival = copy.deepcopy(stored.content)
            rival["heartbeats"]["mallory"] = NOW_MS
            super().write(rival, expected_version=stored.version)
        return stored


def test_concurrent_write_surfaces_as_conflict() -> None:
    store = _RacingStore(make_document())
    with pytest.raises(StaleWriteError) as err:
        record_heartbeat(store, "alice", clock=_clock())
    assert err.value.status_code == 409
    assert store.read().content["heartbeats"] == {"mallory": NOW_MS}


def test_storage_failures_propagate() -> None:
    class Broken(MemoryDocumentStore):
        def read(self):
            raise StorageError("Workspace read failed", details="connection refused")

    with pytest.raises(StorageError):
        record_heartbeat(Broken(), "alice", clock=_clock())


def test_malformed_heartbeat_section_is_a_document_error() -> None:
    store = MemoryDocumentStore(make_document(heartbeats=["alice"]))
    with pytest.raises(DocumentError):
        record_heartbeat(store, "alice", clock=_clock())
    assert store.read().version == 1
