"""Ledger store — the durable state of seeds, rounds, bets and accounts.

The store provides exactly the primitives the settlement layer needs:

- unique-key atomic insert of a bet keyed by paymentId
- compare-and-swap of a bet on its previous state
- atomic increment of account totals, journalled together with the bet
  that caused it
- durable append of seeds, rounds and bets

Every mutation is written to the event log before it is applied to the
in-memory view, and the view is rebuilt by replaying the log on start.
The store lock covers a single primitive only; callers never hold it
across calls, and the settlement layer takes no locks of its own.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from fairdrop.errors import PersistenceError, StateError, ValidationError
from fairdrop.models.account import UserAccount
from fairdrop.models.bet import Bet, BetState
from fairdrop.models.money import round_money
from fairdrop.models.round import Round
from fairdrop.models.seed import Seed, SeedStatus
from fairdrop.persistence.event_log import EventKind, EventLog, EventRecord
from fairdrop.persistence.records import (
    account_to_dict,
    bet_from_dict,
    bet_to_dict,
    round_from_dict,
    round_to_dict,
    seed_from_dict,
    seed_to_dict,
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "fairdrop"


class LedgerStore:
    """Journal-backed store with atomic settlement primitives.

    Usage:
        store = LedgerStore(EventLog(storage_path=Path("data/ledger.jsonl")))
        bet, created = store.insert_bet_if_absent(bet)
        bet, swapped = store.compare_and_swap_bet(updated, BetState.PAYMENT_PENDING)
        bet, settled = store.settle_bet(resolved, BetState.OUTCOME_RESOLVED, places=4)
    """

    def __init__(self, event_log: Optional[EventLog] = None) -> None:
        self._log = event_log if event_log is not None else EventLog()
        self._lock = threading.RLock()
        self._seeds: dict[str, Seed] = {}
        self._seed_order: list[str] = []
        self._rounds: dict[str, Round] = {}
        self._rounds_by_seed: dict[str, list[str]] = {}
        self._nonces: dict[str, set[int]] = {}
        self._next_nonce: dict[str, int] = {}
        self._bets: dict[str, Bet] = {}
        self._bet_order: list[str] = []
        self._accounts: dict[str, UserAccount] = {}
        self._event_counter = self._log.count

        for event in self._log.events():
            self._apply(event.event_kind, event.payload)
        if self._log.count:
            logger.info(
                "Ledger rebuilt from %d journal records (%d seeds, %d bets)",
                self._log.count, len(self._seeds), len(self._bets),
            )

    @property
    def event_log(self) -> EventLog:
        return self._log

    # ------------------------------------------------------------------
    # Seeds
    # ------------------------------------------------------------------

    def add_seed(self, seed: Seed) -> Seed:
        """Durably record a new active seed. Two active seeds is an error."""
        with self._lock:
            if seed.seed_id in self._seeds:
                raise StateError(f"Seed ID already exists: {seed.seed_id}")
            if seed.status != SeedStatus.ACTIVE:
                raise StateError(f"New seed {seed.seed_id} must be active")
            active = self._active_seeds()
            if active:
                logger.error(
                    "Refusing to activate seed %s while %s is active",
                    seed.seed_id, active[0].seed_id,
                )
                raise StateError(
                    f"Cannot activate {seed.seed_id}: seed {active[0].seed_id} is still active"
                )
            self._commit(EventKind.SEED_CREATED, seed_to_dict(seed))
            return replace(self._seeds[seed.seed_id])

    def reveal_seed(
        self,
        seed_id: str,
        revealed_utc: datetime,
        rounds_root: str,
        round_count: int,
    ) -> Seed:
        """Durably mark a seed revealed. Returns only after the journal write."""
        with self._lock:
            seed = self._require_seed(seed_id)
            if seed.status == SeedStatus.REVEALED:
                raise StateError(f"Seed {seed_id} is already revealed")
            self._commit(EventKind.SEED_REVEALED, {
                "seed_id": seed_id,
                "revealed_utc": revealed_utc.isoformat(),
                "rounds_root": rounds_root,
                "round_count": round_count,
            })
            return replace(self._seeds[seed_id])

    def get_seed(self, seed_id: str) -> Seed:
        with self._lock:
            return replace(self._require_seed(seed_id))

    def active_seed(self) -> Optional[Seed]:
        """The single active seed, or None before the first seed exists."""
        with self._lock:
            active = self._active_seeds()
            if len(active) > 1:
                ids = ", ".join(s.seed_id for s in active)
                logger.error("Multiple active seeds in ledger: %s", ids)
                raise StateError(f"Multiple active seeds: {ids}")
            return replace(active[0]) if active else None

    def seeds(self, status: Optional[SeedStatus] = None) -> list[Seed]:
        """Seeds in activation order, optionally filtered by status."""
        with self._lock:
            return [
                replace(self._seeds[sid])
                for sid in self._seed_order
                if status is None or self._seeds[sid].status == status
            ]

    # ------------------------------------------------------------------
    # Nonces and rounds
    # ------------------------------------------------------------------

    def claim_nonce(self, seed_id: str, nonce: Optional[int] = None) -> int:
        """Reserve a nonce on an active seed.

        Without an explicit nonce, the next unused value is claimed.
        A nonce already used on this seed is rejected so no result can
        be replayed.
        """
        with self._lock:
            seed = self._require_seed(seed_id)
            if seed.status != SeedStatus.ACTIVE:
                raise StateError(f"Seed {seed_id} is revealed; it accepts no new nonces")
            if nonce is None:
                nonce = self._next_nonce.get(seed_id, 0)
                while nonce in self._nonces.get(seed_id, set()):
                    nonce += 1
            elif isinstance(nonce, bool) or not isinstance(nonce, int) or nonce < 0:
                raise ValidationError(f"nonce must be a non-negative integer, got {nonce!r}")
            elif nonce in self._nonces.get(seed_id, set()):
                raise ValidationError(f"Nonce {nonce} was already used on seed {seed_id}")
            self._commit(EventKind.NONCE_CLAIMED, {"seed_id": seed_id, "nonce": nonce})
            return nonce

    def append_round(self, round_: Round) -> Round:
        with self._lock:
            if round_.round_id in self._rounds:
                raise StateError(f"Round ID already exists: {round_.round_id}")
            seed = self._require_seed(round_.seed_id)
            if seed.status != SeedStatus.ACTIVE:
                raise StateError(
                    f"Cannot record round {round_.round_id}: seed {seed.seed_id} is revealed"
                )
            if round_.nonce not in self._nonces.get(round_.seed_id, set()):
                raise StateError(
                    f"Round {round_.round_id} uses unclaimed nonce {round_.nonce}"
                )
            self._commit(EventKind.ROUND_RESOLVED, round_to_dict(round_))
            return round_

    def get_round(self, round_id: str) -> Optional[Round]:
        with self._lock:
            return self._rounds.get(round_id)

    def rounds_for_seed(self, seed_id: str) -> list[Round]:
        with self._lock:
            return [self._rounds[rid] for rid in self._rounds_by_seed.get(seed_id, [])]

    # ------------------------------------------------------------------
    # Bets
    # ------------------------------------------------------------------

    def insert_bet_if_absent(self, bet: Bet) -> tuple[Bet, bool]:
        """Unique-key insert on payment_id.

        Returns (stored bet, True) when inserted, or (existing bet, False)
        when a bet for the payment already exists.
        """
        with self._lock:
            existing = self._bets.get(bet.payment_id)
            if existing is not None:
                return existing.copy(), False
            self._commit(EventKind.BET_RECORDED, bet_to_dict(bet))
            return self._bets[bet.payment_id].copy(), True

    def compare_and_swap_bet(self, bet: Bet, expected: BetState) -> tuple[Bet, bool]:
        """Replace the stored bet only if it is still in ``expected`` state."""
        with self._lock:
            current = self._require_bet(bet.payment_id)
            if current.state != expected:
                return current.copy(), False
            self._commit(EventKind.BET_UPDATED, bet_to_dict(bet))
            return self._bets[bet.payment_id].copy(), True

    def settle_bet(self, bet: Bet, expected: BetState, places: int) -> tuple[Bet, bool]:
        """Publish a settled bet and increment the player's totals, atomically.

        Both changes are one journal record, so neither can exist
        without the other.
        """
        if bet.state != BetState.SETTLED or bet.winnings is None:
            raise StateError(f"Bet {bet.payment_id} is not a settled bet with winnings")
        with self._lock:
            current = self._require_bet(bet.payment_id)
            if current.state != expected:
                return current.copy(), False
            if bet.user_id not in self._accounts:
                raise StateError(f"No account for user {bet.user_id}")
            self._commit(EventKind.BET_SETTLED, {
                "bet": bet_to_dict(bet),
                "wager": str(bet.bet_amount),
                "winnings": str(bet.winnings),
                "places": places,
            })
            return self._bets[bet.payment_id].copy(), True

    def get_bet(self, payment_id: str) -> Optional[Bet]:
        with self._lock:
            bet = self._bets.get(payment_id)
            return bet.copy() if bet is not None else None

    def bets(self, state: Optional[BetState] = None) -> list[Bet]:
        """Bets in insertion order, optionally filtered by state."""
        with self._lock:
            return [
                self._bets[pid].copy()
                for pid in self._bet_order
                if state is None or self._bets[pid].state == state
            ]

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def open_account(self, user_id: str, username: str, now: datetime) -> UserAccount:
        """Find or create the account for an external user id."""
        with self._lock:
            account = self._accounts.get(user_id)
            if account is None:
                self._commit(EventKind.ACCOUNT_OPENED, account_to_dict(UserAccount(
                    user_id=user_id, username=username, created_utc=now,
                )))
                account = self._accounts[user_id]
            return replace(account)

    def get_account(self, user_id: str) -> Optional[UserAccount]:
        with self._lock:
            account = self._accounts.get(user_id)
            return replace(account) if account is not None else None

    def accounts(self) -> list[UserAccount]:
        with self._lock:
            return [replace(a) for a in self._accounts.values()]

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    def _commit(self, kind: EventKind, payload: dict[str, Any]) -> None:
        """Write one journal record, then apply it. Caller holds the lock."""
        event = EventRecord.create(
            event_id=f"evt_{self._event_counter + 1:010d}",
            event_kind=kind,
            actor_id=SYSTEM_ACTOR,
            payload=payload,
        )
        try:
            self._log.append(event)
        except OSError as exc:
            raise PersistenceError(f"Journal write failed for {kind.value}: {exc}") from exc
        self._event_counter += 1
        self._apply(kind, payload)

    def _apply(self, kind: EventKind, payload: dict[str, Any]) -> None:
        if kind == EventKind.SEED_CREATED:
            seed = seed_from_dict(payload)
            self._seeds[seed.seed_id] = seed
            self._seed_order.append(seed.seed_id)
            self._nonces.setdefault(seed.seed_id, set())
            self._rounds_by_seed.setdefault(seed.seed_id, [])
        elif kind == EventKind.SEED_REVEALED:
            self._seeds[payload["seed_id"]].reveal(
                now=datetime.fromisoformat(payload["revealed_utc"]),
                rounds_root=payload["rounds_root"],
                round_count=payload["round_count"],
            )
        elif kind == EventKind.NONCE_CLAIMED:
            seed_id, nonce = payload["seed_id"], payload["nonce"]
            self._nonces.setdefault(seed_id, set()).add(nonce)
            self._next_nonce[seed_id] = max(self._next_nonce.get(seed_id, 0), nonce + 1)
        elif kind == EventKind.ROUND_RESOLVED:
            round_ = round_from_dict(payload)
            self._rounds[round_.round_id] = round_
            self._rounds_by_seed.setdefault(round_.seed_id, []).append(round_.round_id)
        elif kind == EventKind.ACCOUNT_OPENED:
            self._accounts[payload["user_id"]] = UserAccount(
                user_id=payload["user_id"],
                username=payload["username"],
                created_utc=datetime.fromisoformat(payload["created_utc"])
                if payload.get("created_utc") else None,
            )
        elif kind in (EventKind.BET_RECORDED, EventKind.BET_UPDATED):
            self._put_bet(bet_from_dict(payload))
        elif kind == EventKind.BET_SETTLED:
            bet = bet_from_dict(payload["bet"])
            self._put_bet(bet)
            places = payload["places"]
            account = self._accounts[bet.user_id]
            account.total_wagered = round_money(
                account.total_wagered + Decimal(payload["wager"]), places,
            )
            account.total_winnings = round_money(
                account.total_winnings + Decimal(payload["winnings"]), places,
            )
            account.bets_settled += 1
        else:
            raise StateError(f"Unknown journal record kind: {kind}")

    def _put_bet(self, bet: Bet) -> None:
        if bet.payment_id not in self._bets:
            self._bet_order.append(bet.payment_id)
        self._bets[bet.payment_id] = bet

    def _active_seeds(self) -> list[Seed]:
        return [s for s in self._seeds.values() if s.status == SeedStatus.ACTIVE]

    def _require_seed(self, seed_id: str) -> Seed:
        seed = self._seeds.get(seed_id)
        if seed is None:
            raise StateError(f"Unknown seed ID: {seed_id}")
        return seed

    def _require_bet(self, payment_id: str) -> Bet:
        bet = self._bets.get(payment_id)
        if bet is None:
            raise StateError(f"Unknown payment ID: {payment_id}")
        return bet
