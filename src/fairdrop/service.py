"""FairDrop service — unified facade for the settlement pipeline.

This is the primary interface for programmatic access to fairdrop.
It wires the subsystems together:
- Seed lifecycle (commitment, rotation, revealed seeds)
- Settlement of payment webhooks (verify → resolve → settle)
- Player audit (round verification, round tree inclusion proofs)
- Reporting (leaderboard, recent bets, admin metrics, user profiles)
- Presentation (drop path for a resolved round)

User-facing operations return a ServiceResult. Pipeline failures
(SettlementError) become failed results with a reason; StateError is
an invariant violation and always propagates.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Optional

from fairdrop.crypto.commitment import derive_digest, generate_secret
from fairdrop.crypto.seed_manager import SeedCommitmentManager
from fairdrop.engine.outcome import OutcomeResolver
from fairdrop.engine.trajectory import DropPathPlanner
from fairdrop.errors import SettlementError, StateError, ValidationError
from fairdrop.models.bet import BetState
from fairdrop.models.money import round_money
from fairdrop.persistence.ledger_store import LedgerStore
from fairdrop.policy.resolver import PolicyResolver
from fairdrop.settlement.coordinator import SettlementCoordinator, SettlementRequest
from fairdrop.settlement.leaderboard import LeaderboardProjector
from fairdrop.settlement.payments import PaymentGateway
from fairdrop.verification import VerificationService

logger = logging.getLogger(__name__)

RECENT_BETS_LIMIT = 20

# Fields a client may send that the server derives itself.
_SERVER_DERIVED_FIELDS = ("multiplier", "winnings", "resultBin", "result_bin")


@dataclass
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class FairDropService:
    """Settlement pipeline facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        store = LedgerStore(EventLog(storage_path=data_dir / "ledger.jsonl"))
        service = FairDropService(resolver, store, gateway=PiPaymentClient(api_key))

        service.commitment()                       # publish before play
        result = service.handle_payment_webhook({
            "paymentId": "...", "txid": "...", "user": "uid", "betAmount": "10",
        })
        service.rotate()                           # reveal the old seed
        service.verify_round(seed_id, nonce, round_id, claimed_bin)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        store: Optional[LedgerStore] = None,
        gateway: Optional[PaymentGateway] = None,
        secret_factory: Callable[[], str] = generate_secret,
        sleep: Callable[[float], None] = time.sleep,
        verify_executor: Optional[Executor] = None,
        leaderboard_executor: Optional[Executor] = None,
    ) -> None:
        self._resolver = resolver
        self._store = store if store is not None else LedgerStore()
        self._places = resolver.money_places()
        self._table = resolver.bin_table()
        self._seeds = SeedCommitmentManager(
            self._store,
            rotation=resolver.rotation_policy(),
            secret_factory=secret_factory,
        )
        self._outcome = OutcomeResolver(self._table)
        self._planner = DropPathPlanner(self._table.rows)
        self._verifier = VerificationService(resolver, self._store)
        self._leaderboard = LeaderboardProjector(
            self._store,
            size=resolver.leaderboard_size(),
            places=self._places,
            executor=leaderboard_executor,
        )
        self._coordinator: Optional[SettlementCoordinator] = None
        if gateway is not None:
            self._coordinator = SettlementCoordinator(
                resolver,
                self._store,
                self._seeds,
                self._outcome,
                gateway,
                leaderboard=self._leaderboard,
                sleep=sleep,
                executor=verify_executor,
            )

        self._seeds.ensure_active_seed()
        self._leaderboard.refresh()

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def seeds(self) -> SeedCommitmentManager:
        return self._seeds

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def handle_payment_webhook(self, payload: dict[str, Any]) -> ServiceResult:
        """Settle one payment notification. Safe to deliver more than once.

        Accepted fields: paymentId, txid, user (an id, or an object with
        uid and username), betAmount, optional username and clientSeed.
        """
        if self._coordinator is None:
            return ServiceResult(success=False, errors=["No payment gateway configured"])
        try:
            request = self._request_from_payload(payload)
            outcome = self._coordinator.settle(request)
        except StateError:
            raise
        except SettlementError as e:
            logger.warning("Webhook rejected: %s", e)
            return ServiceResult(success=False, errors=[str(e)])

        data = outcome.to_dict()
        if outcome.settled:
            data["commitment_hash"] = self._store.get_seed(outcome.bet.seed_id).commitment_hash
            data["path"] = self._plan(outcome.bet.round_id).to_dict()
            return ServiceResult(success=True, data=data)
        if outcome.failed:
            return ServiceResult(success=False, errors=[outcome.bet.failure_reason or "failed"], data=data)
        return ServiceResult(
            success=False,
            errors=[f"Payment {outcome.bet.payment_id} is not settled yet ({outcome.bet.state.value})"],
            data=data,
        )

    def recover(self) -> ServiceResult:
        """Finish bets interrupted after payment verification; resend completions."""
        if self._coordinator is None:
            return ServiceResult(success=False, errors=["No payment gateway configured"])
        outcomes = self._coordinator.recover_incomplete()
        acknowledged = self._coordinator.retry_completions()
        return ServiceResult(success=True, data={
            "recovered": [o.to_dict() for o in outcomes],
            "completions_acknowledged": acknowledged,
        })

    def _request_from_payload(self, payload: dict[str, Any]) -> SettlementRequest:
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body must be a JSON object")
        for name in _SERVER_DERIVED_FIELDS:
            if name in payload:
                logger.warning("Ignoring client-supplied %r on payment %s", name, payload.get("paymentId"))

        user = payload.get("user")
        username = payload.get("username")
        if isinstance(user, dict):
            username = username or user.get("username")
            user = user.get("uid") or user.get("pi_uid")
        if user is None:
            user = payload.get("userId")

        return SettlementRequest(
            payment_id=payload.get("paymentId") or payload.get("payment_id") or "",
            user_id=user or "",
            bet_amount=payload.get("betAmount", payload.get("bet_amount")),
            txid=payload.get("txid") or "",
            username=username,
            client_seed=payload.get("clientSeed") or "",
        )

    # ------------------------------------------------------------------
    # Seeds and audit
    # ------------------------------------------------------------------

    def commitment(self) -> ServiceResult:
        return ServiceResult(success=True, data={
            "seed_id": self._seeds.active_seed_id(),
            "commitment_hash": self._seeds.get_public_commitment(),
        })

    def revealed_seeds(self) -> ServiceResult:
        return ServiceResult(success=True, data={
            "seeds": [r.to_dict() for r in self._verifier.revealed_seeds()],
            "bins": [
                {"index": b.index, "multiplier": str(b.multiplier), "weight": str(b.weight)}
                for b in self._table.bins
            ],
        })

    def seed_history(self) -> ServiceResult:
        return ServiceResult(success=True, data={"seeds": self._seeds.history()})

    def rotate(self) -> ServiceResult:
        result = self._seeds.rotate()
        return ServiceResult(success=True, data=result.to_dict())

    def verify_round(self, seed_id: str, nonce: int, round_id: str, claimed_bin: int) -> ServiceResult:
        try:
            matches = self._verifier.verify_round(seed_id, nonce, round_id, claimed_bin)
        except StateError:
            raise
        except SettlementError as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(success=True, data={"verified": matches})

    def verify_settled_bets(self) -> ServiceResult:
        audits = self._verifier.verify_settled_bets()
        failed = [a.payment_id for a in audits if not a.ok]
        return ServiceResult(
            success=not failed,
            errors=[f"Verification failed for {pid}" for pid in failed],
            data={"audited": len(audits), "audits": [a.to_dict() for a in audits]},
        )

    def inclusion_proof(self, round_id: str) -> ServiceResult:
        try:
            proof = self._verifier.inclusion_proof(round_id)
        except StateError:
            raise
        except SettlementError as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(success=True, data=proof.to_dict())

    def drop_path(self, round_id: str) -> ServiceResult:
        """Peg-by-peg path for a resolved round, ending in its recorded bin."""
        if self._store.get_round(round_id) is None:
            return ServiceResult(success=False, errors=[f"Unknown round: {round_id}"])
        return ServiceResult(success=True, data=self._plan(round_id).to_dict())

    def _plan(self, round_id: str):
        round_ = self._store.get_round(round_id)
        seed = self._store.get_seed(round_.seed_id)
        digest = derive_digest(seed.secret, round_.nonce, round_.round_id)
        return self._planner.plan(digest, round_.result_bin)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def leaderboard(self) -> ServiceResult:
        return ServiceResult(success=True, data={
            "entries": [e.to_dict() for e in self._leaderboard.top()],
            "refreshed_utc": (
                self._leaderboard.refreshed_utc.isoformat()
                if self._leaderboard.refreshed_utc else None
            ),
        })

    def recent_bets(self, limit: int = RECENT_BETS_LIMIT) -> ServiceResult:
        settled = self._store.bets(BetState.SETTLED)
        settled.sort(key=lambda b: b.settled_utc, reverse=True)
        return ServiceResult(success=True, data={
            "bets": [b.summary() for b in settled[:limit]],
        })

    def user_profile(self, user_id: str) -> ServiceResult:
        account = self._store.get_account(user_id)
        if account is None:
            return ServiceResult(success=False, errors=[f"User not found: {user_id}"])
        return ServiceResult(success=True, data=account.to_dict())

    def admin_metrics(self) -> ServiceResult:
        settled = self._store.bets(BetState.SETTLED)
        wagered = sum((b.bet_amount for b in settled), Decimal("0"))
        payouts = sum((b.winnings for b in settled), Decimal("0"))
        return ServiceResult(success=True, data={
            "total_bets": len(settled),
            "total_wagered": str(round_money(wagered, self._places)),
            "total_payouts": str(round_money(payouts, self._places)),
            "profit": str(round_money(wagered - payouts, self._places)),
            "failed_bets": len(self._store.bets(BetState.FAILED)),
            "recent_bets": self.recent_bets().data["bets"],
            "leaderboard": self.leaderboard().data["entries"],
        })

    def status(self) -> dict[str, Any]:
        bets_by_state: dict[str, int] = {}
        for bet in self._store.bets():
            bets_by_state[bet.state.value] = bets_by_state.get(bet.state.value, 0) + 1
        active = self._seeds.ensure_active_seed()
        return {
            "active_seed": {
                "seed_id": active.seed_id,
                "commitment_hash": active.commitment_hash,
                "rounds": len(self._store.rounds_for_seed(active.seed_id)),
            },
            "revealed_seeds": len(self._store.seeds()) - 1,
            "bets": bets_by_state,
            "accounts": len(self._store.accounts()),
            "journal_records": self._store.event_log.count,
            "house_edge": str(self._table.house_edge()),
            "house_edge_margin": str(self._resolver.house_edge_margin()),
            "payments_enabled": self._coordinator is not None,
        }

    def close(self) -> None:
        if self._coordinator is not None:
            self._coordinator.close()
        self._leaderboard.close()
