"""Verification — recompute past rounds from revealed seeds.

A round is audited using only public material: the commitment hash
published before the round, the secret revealed at rotation, the round's
(nonce, round_id) and the bin table. verify_outcome() needs nothing
from the house's database and is what a player runs on their own.

VerificationService adds the house-side reconciliation view: it checks
every settled bet against its revealed seed, its recorded winnings and
the round tree root published with the secret.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from fairdrop.crypto.commitment import matches_commitment
from fairdrop.crypto.round_tree import InclusionProof, RoundTree, verify_inclusion
from fairdrop.engine.outcome import BinTable, OutcomeResolver, compute_winnings
from fairdrop.errors import StateError, ValidationError
from fairdrop.models.bet import Bet, BetState
from fairdrop.models.seed import Seed, SeedRevelation, SeedStatus
from fairdrop.persistence.ledger_store import LedgerStore
from fairdrop.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)


def verify_outcome(
    secret: str,
    commitment: str,
    table: BinTable,
    nonce: int,
    round_id: str,
    claimed_bin: int,
) -> bool:
    """True if the secret matches the commitment and reproduces claimed_bin."""
    if not matches_commitment(secret, commitment):
        return False
    return OutcomeResolver(table).resolve_secret(secret, nonce, round_id).result_bin == claimed_bin


@dataclass(frozen=True)
class BetAudit:
    """Result of auditing one settled bet."""
    payment_id: str
    seed_id: str
    round_id: str
    nonce: int
    recorded_bin: int
    recomputed_bin: int
    commitment_valid: bool
    winnings_valid: bool
    included_in_root: bool

    @property
    def ok(self) -> bool:
        return (
            self.commitment_valid
            and self.recorded_bin == self.recomputed_bin
            and self.winnings_valid
            and self.included_in_root
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "seed_id": self.seed_id,
            "round_id": self.round_id,
            "nonce": self.nonce,
            "recorded_bin": self.recorded_bin,
            "recomputed_bin": self.recomputed_bin,
            "commitment_valid": self.commitment_valid,
            "winnings_valid": self.winnings_valid,
            "included_in_root": self.included_in_root,
            "ok": self.ok,
        }


class VerificationService:
    """Audit surface over revealed seeds.

    Usage:
        verifier = VerificationService(resolver, store)
        verifier.verify_round(seed_id, nonce, round_id, claimed_bin)
        audits = verifier.verify_settled_bets()
    """

    def __init__(self, resolver: PolicyResolver, store: LedgerStore) -> None:
        self._resolver = resolver
        self._store = store
        self._outcome = OutcomeResolver(resolver.bin_table())

    def verify_round(self, seed_id: str, nonce: int, round_id: str, claimed_bin: int) -> bool:
        """Recompute a round from the revealed secret and compare bins.

        Raises ValidationError while the seed is still active: its secret is
        not public, so there is nothing a player could check.
        """
        seed = self._revealed_seed(seed_id)
        if not matches_commitment(seed.secret, seed.commitment_hash):
            logger.error("Revealed secret of %s does not match its commitment", seed_id)
            return False
        recomputed = self._outcome.resolve_secret(seed.secret, nonce, round_id)
        return recomputed.result_bin == claimed_bin

    def audit_bet(self, bet: Bet) -> BetAudit:
        if bet.state != BetState.SETTLED:
            raise ValidationError(f"Bet {bet.payment_id} is not settled")
        seed = self._revealed_seed(bet.seed_id)
        recomputed = self._outcome.resolve_secret(seed.secret, bet.nonce, bet.round_id)
        expected_winnings = compute_winnings(
            bet.bet_amount,
            recomputed.multiplier,
            self._resolver.house_edge_margin(),
            self._resolver.money_places(),
        )
        round_ = self._store.get_round(bet.round_id)
        included = False
        if round_ is not None and seed.rounds_root is not None:
            proof = self._tree(seed).inclusion_proof(round_.round_hash())
            included = proof is not None and verify_inclusion(proof, seed.rounds_root)
        return BetAudit(
            payment_id=bet.payment_id,
            seed_id=seed.seed_id,
            round_id=bet.round_id,
            nonce=bet.nonce,
            recorded_bin=bet.result_bin,
            recomputed_bin=recomputed.result_bin,
            commitment_valid=matches_commitment(seed.secret, seed.commitment_hash),
            winnings_valid=bet.winnings == expected_winnings,
            included_in_root=included,
        )

    def verify_settled_bets(self) -> list[BetAudit]:
        """Audit every settled bet whose seed has been revealed."""
        revealed = {s.seed_id for s in self._store.seeds(SeedStatus.REVEALED)}
        audits = [
            self.audit_bet(bet)
            for bet in self._store.bets(BetState.SETTLED)
            if bet.seed_id in revealed
        ]
        failures = [a for a in audits if not a.ok]
        if failures:
            logger.error(
                "%d of %d settled bets failed verification: %s",
                len(failures), len(audits), ", ".join(a.payment_id for a in failures),
            )
        return audits

    def inclusion_proof(self, round_id: str) -> InclusionProof:
        """Proof that a round is a leaf of its seed's published round tree."""
        round_ = self._store.get_round(round_id)
        if round_ is None:
            raise ValidationError(f"Unknown round: {round_id}")
        seed = self._revealed_seed(round_.seed_id)
        proof = self._tree(seed).inclusion_proof(round_.round_hash())
        if proof is None or proof.root != seed.rounds_root:
            logger.error("Round %s is not covered by the root of %s", round_id, seed.seed_id)
            raise StateError(f"Round {round_id} is not covered by the published root")
        return proof

    # ------------------------------------------------------------------
    # Public audit surface
    # ------------------------------------------------------------------

    def commitment(self) -> Optional[str]:
        """Commitment hash of the active seed, if any."""
        seed = self._store.active_seed()
        return seed.commitment_hash if seed is not None else None

    def revealed_seeds(self) -> list[SeedRevelation]:
        return [s.revelation() for s in self._store.seeds(SeedStatus.REVEALED)]

    def _revealed_seed(self, seed_id: Optional[str]) -> Seed:
        if not seed_id:
            raise ValidationError("seed_id is required")
        try:
            seed = self._store.get_seed(seed_id)
        except StateError as exc:
            raise ValidationError(f"Unknown seed: {seed_id}") from exc
        if seed.status != SeedStatus.REVEALED:
            raise ValidationError(f"Seed {seed_id} is still active; it cannot be verified yet")
        return seed

    def _tree(self, seed: Seed) -> RoundTree:
        return RoundTree(r.round_hash() for r in self._store.rounds_for_seed(seed.seed_id))
