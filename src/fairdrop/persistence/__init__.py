"""Persistence — append-only journal and the ledger store rebuilt from it."""

from fairdrop.persistence.event_log import EventKind, EventLog, EventRecord
from fairdrop.persistence.ledger_store import LedgerStore

__all__ = ["EventKind", "EventLog", "EventRecord", "LedgerStore"]
