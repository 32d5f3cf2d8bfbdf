"""Append-only event log — the durable journal behind the ledger store.

Every mutation of seeds, rounds, bets and accounts is written here before
it becomes visible to any caller. Records are immutable once written.
The log serves as:
1. The durable store the ledger is rebuilt from on start.
2. The audit trail for reconciliation with the payment provider.

Each record carries a SHA-256 over its canonical JSON. Loading a log
recomputes every hash and fails closed on tampering or replayed ids.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    """Classification of journal records."""
    SEED_CREATED = "seed_created"
    SEED_REVEALED = "seed_revealed"
    NONCE_CLAIMED = "nonce_claimed"
    ROUND_RESOLVED = "round_resolved"
    ACCOUNT_OPENED = "account_opened"
    BET_RECORDED = "bet_recorded"
    BET_UPDATED = "bet_updated"
    BET_SETTLED = "bet_settled"  # bet snapshot + account increment, one record


@dataclass(frozen=True)
class EventRecord:
    """A single immutable journal record.

    event_hash is computed at creation from the canonical JSON of the
    other fields.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(event_id, event_kind.value, ts_str, actor_id, payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional JSONL file persistence.

    With a storage path every append is flushed and fsync'd before
    append() returns, so a record that was acknowledged survives a crash.
    A failed append is cut back out of the file, so retrying it with the
    same event id cannot leave the record in the journal twice. If the
    cut itself fails the log refuses further appends; the record on disk
    is then replayed on the next start.
    """

    def __init__(self, storage_path: Optional[Path] = None, fsync: bool = True) -> None:
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()
        self._storage_path = storage_path
        self._fsync = fsync
        self._unusable: Optional[str] = None

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        Raises OSError if the write fails; the file is left as it was.
        The in-memory view is only updated after the file write succeeds.
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")
        if self._unusable is not None:
            raise OSError(f"Journal is unusable until restart: {self._unusable}")

        if self._storage_path:
            self._append_to_file(event)

        self._events.append(event)
        self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    @property
    def count(self) -> int:
        return len(self._events)

    def _append_to_file(self, event: EventRecord) -> None:
        path = self._storage_path
        line = json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n"
        offset = path.stat().st_size if path.exists() else 0
        try:
            with path.open("a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                if self._fsync:
                    os.fsync(f.fileno())
        except OSError:
            self._rollback(offset, event.event_id)
            raise

    def _rollback(self, offset: int, event_id: str) -> None:
        """Cut a partially written record back out of the file."""
        path = self._storage_path
        if not path.exists():
            return
        try:
            os.truncate(path, offset)
        except OSError as exc:
            self._unusable = f"could not roll back {event_id}: {exc}"
            logger.error("Journal %s: %s", path, self._unusable)
            return
        logger.warning("Rolled back failed journal write of %s", event_id)

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch), duplicate
        event IDs and unreadable records. The one exception is an
        unreadable final line, which is a write torn by a crash: it was
        never acknowledged, so it is cut off and loading continues.
        """
        with path.open("rb") as f:
            raw_lines = f.readlines()

        offset = 0
        for line_num, raw in enumerate(raw_lines, 1):
            start = offset
            offset += len(raw)
            try:
                line = raw.decode("utf-8").strip()
                data = json.loads(line) if line else None
            except ValueError as exc:
                if line_num == len(raw_lines):
                    logger.warning(
                        "Discarding torn record at end of %s (line %d): %s",
                        path, line_num, exc,
                    )
                    os.truncate(path, start)
                    return
                raise ValueError(f"Unreadable record (line {line_num}): {exc}") from exc
            if data is None:
                continue
            event_id = data["event_id"]

            if event_id in self._event_ids:
                raise ValueError(
                    f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                )

            expected_hash = _canonical_hash(
                event_id,
                data["event_kind"],
                data["timestamp_utc"],
                data["actor_id"],
                data["payload"],
            )
            if data["event_hash"] != expected_hash:
                raise ValueError(
                    f"Integrity check failed (line {line_num}): event {event_id} "
                    f"stored hash {data['event_hash']} != computed {expected_hash}"
                )

            self._events.append(EventRecord(
                event_id=event_id,
                event_kind=EventKind(data["event_kind"]),
                timestamp_utc=data["timestamp_utc"],
                actor_id=data["actor_id"],
                payload=data["payload"],
                event_hash=data["event_hash"],
            ))
            self._event_ids.add(event_id)


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"
