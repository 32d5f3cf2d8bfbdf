"""Settlement coordinator — turns a verified payment into a settled bet.

Drives each bet through its state machine:

    PAYMENT_PENDING  → PAYMENT_VERIFIED   provider confirms the payment
    PAYMENT_VERIFIED → OUTCOME_RESOLVED   round resolved and persisted,
                                          winnings computed, no balances touched
    OUTCOME_RESOLVED → SETTLED            bet + account totals, one atomic write
    any non-terminal → FAILED             verification failed or timed out

Exactly-once rules:
- The bet is inserted with a unique-key insert on payment_id; every later
  step is a compare-and-swap on the previous state. Duplicate or
  concurrent webhook deliveries collapse onto one record and one balance
  increment. No application-level lock is held per payment.
- The round id is derived from the payment id, so a resumed or duplicated
  resolution finds the round already recorded instead of resolving twice.
- A bet past PAYMENT_PENDING is never re-verified or re-charged; replays
  resume from the state the store holds.
"""

from __future__ import annotations

import hashlib
import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from fairdrop.crypto.seed_manager import SeedCommitmentManager
from fairdrop.engine.outcome import OutcomeResolver, compute_winnings
from fairdrop.errors import ExternalVerificationError, StateError, ValidationError
from fairdrop.models.account import sanitize_username
from fairdrop.models.bet import Bet, BetState
from fairdrop.models.money import parse_amount, round_money
from fairdrop.models.round import Round
from fairdrop.persistence.ledger_store import LedgerStore
from fairdrop.policy.resolver import PolicyResolver
from fairdrop.settlement.leaderboard import LeaderboardProjector
from fairdrop.settlement.payments import PaymentGateway, PaymentVerification, VerificationStatus
from fairdrop.settlement.retry import with_retry

logger = logging.getLogger(__name__)

MAX_ID_LENGTH = 128
MAX_CLIENT_SEED_LENGTH = 64


@dataclass(frozen=True)
class SettlementRequest:
    """One payment notification, as delivered by the webhook."""
    payment_id: str
    user_id: str
    bet_amount: Decimal
    txid: str
    username: Optional[str] = None
    client_seed: str = ""


@dataclass(frozen=True)
class SettlementOutcome:
    """Result returned to the caller and written to reconciliation logs."""
    bet: Bet
    replayed: bool = False

    @property
    def settled(self) -> bool:
        return self.bet.state == BetState.SETTLED

    @property
    def failed(self) -> bool:
        return self.bet.state == BetState.FAILED

    @property
    def pending(self) -> bool:
        return not self.bet.is_terminal

    def to_dict(self) -> dict[str, Any]:
        data = self.bet.summary()
        data["settled"] = self.settled
        data["replayed"] = self.replayed
        return data


def round_id_for(payment_id: str, client_seed: str = "") -> str:
    """Round id bound to a payment (and optional player-chosen client seed)."""
    digest = hashlib.sha256(f"{payment_id}|{client_seed}".encode("utf-8")).hexdigest()
    return f"r{digest[:32]}"


class SettlementCoordinator:
    """Idempotent bet lifecycle over the ledger store.

    Usage:
        coordinator = SettlementCoordinator(resolver, store, seeds, outcome, gateway)
        outcome = coordinator.settle(SettlementRequest(
            payment_id="pay_1", user_id="uid_1",
            bet_amount=Decimal("10"), txid="tx_1",
        ))
        outcome.bet.winnings
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        store: LedgerStore,
        seeds: SeedCommitmentManager,
        outcome_resolver: OutcomeResolver,
        gateway: PaymentGateway,
        leaderboard: Optional[LeaderboardProjector] = None,
        sleep: Callable[[float], None] = time.sleep,
        executor: Optional[Executor] = None,
    ) -> None:
        self._resolver = resolver
        self._store = store
        self._seeds = seeds
        self._outcome = outcome_resolver
        self._gateway = gateway
        self._leaderboard = leaderboard
        self._sleep = sleep
        self._payment_policy = resolver.payment_policy()
        self._retry_policy = resolver.retry_policy()
        self._places = resolver.money_places()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=8, thread_name_prefix="payment-verify",
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def settle(self, request: SettlementRequest, now: Optional[datetime] = None) -> SettlementOutcome:
        """Process one (possibly duplicated) payment notification."""
        request = self.validate(request)
        if now is None:
            now = datetime.now(timezone.utc)

        self._retry(
            lambda: self._store.open_account(
                request.user_id,
                sanitize_username(request.username, fallback=request.user_id),
                now,
            ),
            "open account",
        )
        fresh = Bet(
            payment_id=request.payment_id,
            user_id=request.user_id,
            bet_amount=request.bet_amount,
            txid=request.txid,
            round_id=round_id_for(request.payment_id, request.client_seed),
            created_utc=now,
        )
        bet, created = self._retry(
            lambda: self._store.insert_bet_if_absent(fresh), "record bet",
        )
        if not created:
            if bet.user_id != request.user_id or bet.bet_amount != request.bet_amount:
                raise ValidationError(
                    f"Payment {request.payment_id} was already recorded with different details"
                )
            logger.info(
                "Duplicate delivery for %s in state %s", bet.payment_id, bet.state.value,
            )
        else:
            logger.info("Recorded bet %s for %s (%s)", bet.payment_id, bet.user_id, bet.bet_amount)
        return self._drive(bet, replayed=not created)

    def resume(self, payment_id: str) -> SettlementOutcome:
        """Continue a bet from whatever state the store holds."""
        bet = self._store.get_bet(payment_id)
        if bet is None:
            raise ValidationError(f"Unknown payment: {payment_id}")
        return self._drive(bet, replayed=True)

    def recover_incomplete(self) -> list[SettlementOutcome]:
        """Drive every verified-but-unsettled bet to a terminal state.

        Run on start so no bet whose stake left the player is abandoned.
        """
        outcomes = []
        for state in (BetState.PAYMENT_VERIFIED, BetState.OUTCOME_RESOLVED):
            for bet in self._store.bets(state):
                logger.info("Recovering bet %s from %s", bet.payment_id, state.value)
                outcomes.append(self._drive(bet, replayed=True))
        return outcomes

    def retry_completions(self) -> int:
        """Re-send completion for settled bets the provider has not acknowledged."""
        acknowledged = 0
        for bet in self._store.bets(BetState.SETTLED):
            if bet.completion_acknowledged is not True:
                if self._complete_payment(bet).completion_acknowledged:
                    acknowledged += 1
        return acknowledged

    def validate(self, request: SettlementRequest) -> SettlementRequest:
        """Reject malformed requests before any state change."""
        for name in ("payment_id", "user_id", "txid"):
            value = getattr(request, name)
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{name} is required")
            if len(value) > MAX_ID_LENGTH:
                raise ValidationError(f"{name} exceeds {MAX_ID_LENGTH} characters")
        if not isinstance(request.client_seed, str) or len(request.client_seed) > MAX_CLIENT_SEED_LENGTH:
            raise ValidationError(
                f"client_seed must be a string of at most {MAX_CLIENT_SEED_LENGTH} characters"
            )

        amount = parse_amount(request.bet_amount, "bet_amount")
        min_bet, max_bet = self._resolver.bet_limits()
        if amount <= 0:
            raise ValidationError("bet_amount must be positive")
        if amount < min_bet or amount > max_bet:
            raise ValidationError(f"bet_amount must be between {min_bet} and {max_bet}")
        if round_money(amount, self._places) != amount:
            raise ValidationError(
                f"bet_amount has more than {self._places} decimal places"
            )
        return SettlementRequest(
            payment_id=request.payment_id.strip(),
            user_id=request.user_id.strip(),
            bet_amount=amount,
            txid=request.txid.strip(),
            username=request.username,
            client_seed=request.client_seed,
        )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _drive(self, bet: Bet, replayed: bool) -> SettlementOutcome:
        if bet.state == BetState.PAYMENT_PENDING:
            bet, won = self._verify(bet)
            if not won or bet.state != BetState.PAYMENT_VERIFIED:
                return SettlementOutcome(bet, replayed=replayed or not won)
        if bet.state == BetState.PAYMENT_VERIFIED:
            bet = self._resolve(bet)
        if bet.state == BetState.OUTCOME_RESOLVED:
            bet = self._settle(bet)
        return SettlementOutcome(bet, replayed=replayed)

    def _verify(self, bet: Bet) -> tuple[Bet, bool]:
        """PAYMENT_PENDING → PAYMENT_VERIFIED | FAILED (or unchanged if pending)."""
        verification = self._call_verify(bet.payment_id)
        now = datetime.now(timezone.utc)
        updated = bet.copy()

        if verification.is_verified:
            reason = self._verification_mismatch(bet, verification)
            if reason is None:
                updated.transition_to(BetState.PAYMENT_VERIFIED)
                updated.verified_utc = now
            else:
                self._fail(updated, reason, now)
        elif verification.status == VerificationStatus.PENDING:
            logger.info("Payment %s not completed yet: %s", bet.payment_id, verification.reason)
            return bet, True
        else:
            self._fail(updated, verification.reason or "payment verification failed", now)

        current, swapped = self._retry(
            lambda: self._store.compare_and_swap_bet(updated, BetState.PAYMENT_PENDING),
            "verify payment",
        )
        if swapped and current.state == BetState.FAILED:
            logger.warning("Bet %s failed verification: %s", current.payment_id, current.failure_reason)
        return current, swapped

    def _resolve(self, bet: Bet) -> Bet:
        """PAYMENT_VERIFIED → OUTCOME_RESOLVED. No balance is touched."""
        round_id = bet.round_id or round_id_for(bet.payment_id)
        with self._seeds.active_round() as seed:
            round_ = self._store.get_round(round_id)
            if round_ is None:
                nonce = self._retry(
                    lambda: self._store.claim_nonce(seed.seed_id), "claim nonce",
                )
                result = self._outcome.resolve(seed, nonce, round_id)
                round_ = Round(
                    round_id=round_id,
                    seed_id=seed.seed_id,
                    nonce=nonce,
                    bet_amount=bet.bet_amount,
                    result_bin=result.result_bin,
                    multiplier=result.multiplier,
                    resolved_utc=datetime.now(timezone.utc).isoformat(),
                    payment_id=bet.payment_id,
                )
                self._retry(lambda: self._store.append_round(round_), "record round")

            resolved = bet.copy()
            resolved.transition_to(BetState.OUTCOME_RESOLVED)
            resolved.resolved_utc = datetime.now(timezone.utc)
            resolved.seed_id = round_.seed_id
            resolved.round_id = round_.round_id
            resolved.nonce = round_.nonce
            resolved.result_bin = round_.result_bin
            resolved.multiplier = round_.multiplier
            resolved.winnings = compute_winnings(
                bet.bet_amount,
                round_.multiplier,
                self._resolver.house_edge_margin(),
                self._places,
            )
            current, _ = self._retry(
                lambda: self._store.compare_and_swap_bet(resolved, BetState.PAYMENT_VERIFIED),
                "record outcome",
            )
        logger.info(
            "Resolved %s: bin %s x%s on seed %s nonce %s",
            current.payment_id, current.result_bin, current.multiplier,
            current.seed_id, current.nonce,
        )
        return current

    def _settle(self, bet: Bet) -> Bet:
        """OUTCOME_RESOLVED → SETTLED, with the account increment in the same write."""
        settled = bet.copy()
        settled.transition_to(BetState.SETTLED)
        settled.settled_utc = datetime.now(timezone.utc)
        current, swapped = self._retry(
            lambda: self._store.settle_bet(settled, BetState.OUTCOME_RESOLVED, self._places),
            "settle bet",
        )
        if not swapped:
            return current

        logger.info(
            "Settled %s: %s wagered, %s won by %s",
            current.payment_id, current.bet_amount, current.winnings, current.user_id,
        )
        if self._leaderboard is not None:
            self._leaderboard.request_refresh()
        if self._payment_policy.completion_required:
            current = self._complete_payment(current)
        self._seeds.rotate_if_due()
        return current

    # ------------------------------------------------------------------
    # Collaborator calls
    # ------------------------------------------------------------------

    def _call_verify(self, payment_id: str) -> PaymentVerification:
        """Verification bounded by the configured timeout, whatever the gateway does."""
        timeout = self._payment_policy.timeout_seconds
        future = self._executor.submit(self._gateway.verify_payment, payment_id, timeout)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            logger.warning("Verification of %s exceeded %.1fs", payment_id, timeout)
            return PaymentVerification.failed("verification timed out")
        except ExternalVerificationError as exc:
            return PaymentVerification.failed(str(exc) or "payment provider error")

    def _complete_payment(self, bet: Bet) -> Bet:
        timeout = self._payment_policy.timeout_seconds
        future = self._executor.submit(
            self._gateway.complete_payment, bet.payment_id, bet.txid, timeout,
        )
        try:
            acknowledged = bool(future.result(timeout=timeout))
        except (FutureTimeout, ExternalVerificationError) as exc:
            logger.warning("Completion of %s not acknowledged: %s", bet.payment_id, exc)
            acknowledged = False
        if not acknowledged:
            logger.warning("Payment %s settled but completion not acknowledged", bet.payment_id)

        updated = bet.copy()
        updated.completion_acknowledged = acknowledged
        current, _ = self._retry(
            lambda: self._store.compare_and_swap_bet(updated, BetState.SETTLED),
            "record completion",
        )
        return current

    def _verification_mismatch(self, bet: Bet, verification: PaymentVerification) -> Optional[str]:
        if verification.amount is None or verification.amount != bet.bet_amount:
            return (
                f"payment amount {verification.amount} does not match bet amount {bet.bet_amount}"
            )
        if verification.user_id is not None and verification.user_id != bet.user_id:
            return "payment belongs to a different user"
        if verification.txid is not None and verification.txid != bet.txid:
            return "payment transaction does not match txid"
        return None

    @staticmethod
    def _fail(bet: Bet, reason: str, now: datetime) -> None:
        bet.transition_to(BetState.FAILED)
        bet.failure_reason = reason
        bet.failed_utc = now

    def _retry(self, operation, step: str):
        return with_retry(operation, self._retry_policy, step, sleep=self._sleep)

    def close(self) -> None:
        self._executor.shutdown(wait=False)
