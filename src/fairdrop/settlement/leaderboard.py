"""Leaderboard projector — an eventually-consistent view of top winners.

Settlement only ever *requests* a refresh; the rebuild runs on a
background worker and never blocks a settlement. Requests that arrive
while a rebuild is queued collapse into that rebuild. Readers get the
last completed snapshot, which may trail the ledger by a few seconds.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Optional

from fairdrop.models.account import LeaderboardEntry
from fairdrop.models.money import round_money
from fairdrop.persistence.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


class LeaderboardProjector:
    """Rebuilds the leaderboard from account totals.

    Usage:
        projector = LeaderboardProjector(store, size=10, places=4)
        projector.request_refresh()   # from the settlement path
        projector.top()               # from readers
    """

    def __init__(
        self,
        store: LedgerStore,
        size: int = 10,
        places: int = 4,
        executor: Optional[Executor] = None,
    ) -> None:
        self._store = store
        self._size = size
        self._places = places
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="leaderboard",
        )
        self._lock = threading.Lock()
        self._pending = False
        self._snapshot: tuple[LeaderboardEntry, ...] = ()
        self._refreshed_utc: Optional[datetime] = None

    def request_refresh(self) -> None:
        """Queue a rebuild unless one is already queued. Never blocks."""
        with self._lock:
            if self._pending:
                return
            self._pending = True
        self._executor.submit(self._run_queued)

    def refresh(self) -> list[LeaderboardEntry]:
        """Rebuild the snapshot now, on the calling thread."""
        ranked = sorted(
            (a for a in self._store.accounts() if a.bets_settled > 0),
            key=lambda a: (-a.total_winnings, a.user_id),
        )[: self._size]
        snapshot = tuple(
            LeaderboardEntry(
                rank=position,
                user_id=account.user_id,
                total_winnings=round_money(account.total_winnings, self._places),
            )
            for position, account in enumerate(ranked, 1)
        )
        with self._lock:
            self._snapshot = snapshot
            self._refreshed_utc = datetime.now(timezone.utc)
        return list(snapshot)

    def top(self) -> list[LeaderboardEntry]:
        with self._lock:
            return list(self._snapshot)

    @property
    def refreshed_utc(self) -> Optional[datetime]:
        return self._refreshed_utc

    def close(self) -> None:
        """Let queued rebuilds finish and stop the worker."""
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def _run_queued(self) -> None:
        with self._lock:
            self._pending = False
        try:
            self.refresh()
        except Exception:
            # The ledger is unaffected; the next request rebuilds again.
            logger.exception("Leaderboard refresh failed")
