"""Bet model — a monetised round and its settlement state machine.

paymentId is the idempotency key: at most one bet per paymentId is ever
recorded, so at most one can reach SETTLED. Bets are append-only audit
records; they are never deleted.

State machine:
    PAYMENT_PENDING → PAYMENT_VERIFIED   (payment collaborator confirms)
    PAYMENT_VERIFIED → OUTCOME_RESOLVED  (outcome persisted, no balances touched)
    OUTCOME_RESOLVED → SETTLED           (bet + account totals, one atomic step)
    any non-terminal → FAILED
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from fairdrop.errors import StateError


class BetState(str, enum.Enum):
    """Lifecycle state of a bet."""
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_VERIFIED = "payment_verified"
    OUTCOME_RESOLVED = "outcome_resolved"
    SETTLED = "settled"
    FAILED = "failed"


BET_TRANSITIONS: Dict[BetState, frozenset] = {
    BetState.PAYMENT_PENDING: frozenset({
        BetState.PAYMENT_VERIFIED,
        BetState.FAILED,
    }),
    BetState.PAYMENT_VERIFIED: frozenset({
        BetState.OUTCOME_RESOLVED,
        BetState.FAILED,
    }),
    BetState.OUTCOME_RESOLVED: frozenset({
        BetState.SETTLED,
        BetState.FAILED,
    }),
    BetState.SETTLED: frozenset(),
    BetState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({BetState.SETTLED, BetState.FAILED})


@dataclass
class Bet:
    """A wager keyed by its external payment id.

    Mutable — the coordinator works on a copy and publishes it to the
    store with a compare-and-swap on the previous state.
    """
    payment_id: str
    user_id: str
    bet_amount: Decimal
    txid: str
    state: BetState = BetState.PAYMENT_PENDING
    created_utc: Optional[datetime] = None
    verified_utc: Optional[datetime] = None
    resolved_utc: Optional[datetime] = None
    settled_utc: Optional[datetime] = None
    failed_utc: Optional[datetime] = None
    seed_id: Optional[str] = None
    round_id: Optional[str] = None
    nonce: Optional[int] = None
    result_bin: Optional[int] = None
    multiplier: Optional[Decimal] = None
    winnings: Optional[Decimal] = None
    failure_reason: Optional[str] = None
    completion_acknowledged: Optional[bool] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition_to(self, new_state: BetState) -> None:
        """Transition to a new state, validating the transition is legal."""
        allowed = BET_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise StateError(
                f"Invalid bet transition for {self.payment_id}: "
                f"{self.state.value} → {new_state.value}. "
                f"Allowed: {', '.join(s.value for s in allowed) or 'none'}"
            )
        self.state = new_state

    def copy(self) -> Bet:
        return replace(self)

    def summary(self) -> dict[str, Any]:
        """Reconciliation view of the bet."""
        return {
            "payment_id": self.payment_id,
            "user_id": self.user_id,
            "state": self.state.value,
            "bet_amount": str(self.bet_amount),
            "multiplier": None if self.multiplier is None else str(self.multiplier),
            "winnings": None if self.winnings is None else str(self.winnings),
            "result_bin": self.result_bin,
            "seed_id": self.seed_id,
            "round_id": self.round_id,
            "nonce": self.nonce,
            "failure_reason": self.failure_reason,
        }
