"""Tests for the append-only journal — proves records survive restarts intact."""

import json
import os
import pytest
from datetime import datetime, timezone
from pathlib import Path

from fairdrop.persistence.event_log import EventKind, EventLog, EventRecord


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _event(n: int, kind: EventKind = EventKind.BET_RECORDED) -> EventRecord:
    return EventRecord.create(
        event_id=f"evt_{n:010d}",
        event_kind=kind,
        actor_id="fairdrop",
        payload={"payment_id": f"pay_{n}", "bet_amount": "10"},
        timestamp_utc=_now(),
    )


class TestEventRecord:
    def test_hash_is_deterministic(self) -> None:
        assert _event(1).event_hash == _event(1).event_hash
        assert _event(1).event_hash.startswith("sha256:")

    def test_hash_covers_payload(self) -> None:
        a = _event(1)
        b = EventRecord.create(
            event_id=a.event_id, event_kind=a.event_kind, actor_id=a.actor_id,
            payload={"payment_id": "pay_1", "bet_amount": "11"}, timestamp_utc=_now(),
        )
        assert a.event_hash != b.event_hash


class TestInMemory:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_event(1))
        log.append(_event(2, EventKind.BET_SETTLED))
        assert log.count == 2
        assert [e.event_id for e in log.events(EventKind.BET_SETTLED)] == ["evt_0000000002"]
        assert log.events()[-1].event_id == "evt_0000000002"

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        log.append(_event(1))
        with pytest.raises(ValueError, match="Duplicate event ID"):
            log.append(_event(1))
        assert log.count == 1


class TestFilePersistence:
    def test_reload(self, tmp_path: Path) -> None:
        path = tmp_path / "ledger.jsonl"
        log = EventLog(storage_path=path)
        for n in range(1, 4):
            log.append(_event(n))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 3
        assert reloaded.events()[0] == log.events()[0]

    def test_tampered_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "ledger.jsonl"
        EventLog(storage_path=path).append(_event(1))

        record = json.loads(path.read_text(encoding="utf-8"))
        record["payload"]["bet_amount"] = "1000"
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)

    def test_replayed_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "ledger.jsonl"
        EventLog(storage_path=path).append(_event(1))
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")

        with pytest.raises(ValueError, match="Duplicate event ID on recovery"):
            EventLog(storage_path=path)

    def test_failed_write_not_visible(self, tmp_path: Path) -> None:
        missing_dir = tmp_path / "missing" / "ledger.jsonl"
        log = EventLog(storage_path=missing_dir)
        with pytest.raises(OSError):
            log.append(_event(1))
        assert log.count == 0


def _fail_once(real):
    """Wrap ``real`` so its first call raises OSError."""
    calls = []

    def wrapper(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise OSError("I/O error")
        return real(*args, **kwargs)

    return wrapper


class TestFailedWrites:
    def test_sync_failure_rolled_back(self, tmp_path: Path, monkeypatch) -> None:
        path = tmp_path / "ledger.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))

        monkeypatch.setattr(os, "fsync", _fail_once(os.fsync))
        with pytest.raises(OSError):
            log.append(_event(2))
        assert log.count == 1
        assert len(path.read_text(encoding="utf-8").splitlines()) == 1

        log.append(_event(2))
        reloaded = EventLog(storage_path=path)
        assert [e.event_id for e in reloaded.events()] == ["evt_0000000001", "evt_0000000002"]

    def test_failed_rollback_blocks_appends(self, tmp_path: Path, monkeypatch) -> None:
        path = tmp_path / "ledger.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))

        monkeypatch.setattr(os, "fsync", _fail_once(os.fsync))
        monkeypatch.setattr(os, "truncate", _fail_once(os.truncate))
        with pytest.raises(OSError):
            log.append(_event(2))
        with pytest.raises(OSError, match="unusable"):
            log.append(_event(2))
        monkeypatch.undo()

        # The record reached the file, so a restart replays it exactly once.
        assert EventLog(storage_path=path).count == 2


class TestTornWrites:
    def test_torn_final_line_discarded(self, tmp_path: Path) -> None:
        path = tmp_path / "ledger.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))
        log.append(_event(2))
        with path.open("a", encoding="utf-8") as f:
            f.write('{"event_id": "evt_00')

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert path.read_text(encoding="utf-8").endswith("}\n")

        reloaded.append(_event(3))
        assert EventLog(storage_path=path).count == 3

    def test_unreadable_middle_line_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "ledger.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(1))
        log.append(_event(2))
        first, second = path.read_text(encoding="utf-8").splitlines(keepends=True)
        path.write_text(first + '{"event_id": "evt_00\n' + second, encoding="utf-8")

        with pytest.raises(ValueError, match="Unreadable record \\(line 2\\)"):
            EventLog(storage_path=path)
