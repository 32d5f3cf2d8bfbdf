"""Outcome resolver — deterministic mapping from round inputs to a payout bin.

The resolver is a pure function of (secret, nonce, round_id). It never
reads the clock, global state or any random source. Given a revealed
secret, any third party reproduces the same bin bit-for-bit.

Construction:
    digest = HMAC-SHA256(secret, "nonce:round_id")
    roll   = first 52 bits of digest, as an integer in [0, 2^52)
    bin    = first bin whose cumulative weight * 2^52 exceeds roll

Selection compares integers against exact Decimal thresholds so no
floating-point boundary can move a roll into a neighbouring bin.

House edge of a table is 1 − Σ(weight_i × multiplier_i).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from fairdrop.crypto.commitment import (
    ROLL_SCALE,
    derive_digest,
    roll_integer,
    unit_interval,
)
from fairdrop.errors import StateError, ValidationError
from fairdrop.models.money import round_money
from fairdrop.models.round import RoundOutcome
from fairdrop.models.seed import Seed, SeedStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayoutBin:
    """One slot at the bottom of the board."""
    index: int
    multiplier: Decimal
    weight: Decimal


class BinTable:
    """Ordered payout bins with weights summing exactly to 1.

    Usage:
        table = BinTable([PayoutBin(0, Decimal("0.5"), Decimal("0.7")), ...])
        payout_bin = table.select(roll)
    """

    def __init__(self, bins: Sequence[PayoutBin]) -> None:
        if not bins:
            raise ValidationError("A bin table needs at least one bin")
        for position, payout_bin in enumerate(bins):
            if payout_bin.index != position:
                raise ValidationError(
                    f"Bin at position {position} has index {payout_bin.index}"
                )
            if payout_bin.weight < 0:
                raise ValidationError(f"Bin {position} has negative weight")
            if payout_bin.multiplier < 0:
                raise ValidationError(f"Bin {position} has negative multiplier")
        total = sum((b.weight for b in bins), Decimal("0"))
        if total != Decimal("1"):
            raise ValidationError(f"Bin weights must sum to 1, got {total}")

        self._bins = tuple(bins)
        # Upper bound (exclusive) of each bin in roll-integer space.
        thresholds = []
        cumulative = Decimal("0")
        for payout_bin in self._bins:
            cumulative += payout_bin.weight
            thresholds.append(cumulative * ROLL_SCALE)
        self._thresholds = tuple(thresholds)

    @property
    def bins(self) -> tuple[PayoutBin, ...]:
        return self._bins

    @property
    def size(self) -> int:
        return len(self._bins)

    @property
    def rows(self) -> int:
        """Peg rows of a board with one bin per final gap."""
        return len(self._bins) - 1

    def multipliers(self) -> list[Decimal]:
        return [b.multiplier for b in self._bins]

    def expected_return(self) -> Decimal:
        return sum((b.weight * b.multiplier for b in self._bins), Decimal("0"))

    def house_edge(self) -> Decimal:
        return Decimal("1") - self.expected_return()

    def get(self, index: int) -> PayoutBin:
        if not 0 <= index < len(self._bins):
            raise ValidationError(f"No bin with index {index}")
        return self._bins[index]

    def select(self, roll: int) -> PayoutBin:
        """Return the bin whose probability interval contains ``roll``."""
        if not 0 <= roll < ROLL_SCALE:
            raise ValidationError(f"Roll {roll} is outside [0, {ROLL_SCALE})")
        for payout_bin, upper in zip(self._bins, self._thresholds):
            if roll < upper:
                return payout_bin
        # Unreachable while weights sum to 1; zero-weight tail bins never match.
        raise StateError("Roll fell beyond the final bin threshold")


class OutcomeResolver:
    """Resolves rounds against a committed seed.

    resolve() is the house-side entry point and refuses revealed seeds.
    resolve_secret() is the audit entry point: it takes the raw secret
    and applies no lifecycle checks.
    """

    def __init__(self, table: BinTable) -> None:
        self._table = table

    @property
    def table(self) -> BinTable:
        return self._table

    def resolve(self, seed: Seed, nonce: int, round_id: str) -> RoundOutcome:
        """Resolve a new round. No new rounds may open on a revealed seed."""
        if seed.status == SeedStatus.REVEALED:
            logger.error("Refusing to resolve round %s on revealed seed %s", round_id, seed.seed_id)
            raise StateError(
                f"Seed {seed.seed_id} is revealed; no new rounds may be resolved against it"
            )
        return self.resolve_secret(seed.secret, nonce, round_id)

    def resolve_secret(self, secret: str, nonce: int, round_id: str) -> RoundOutcome:
        _validate_inputs(nonce, round_id)
        digest = derive_digest(secret, nonce, round_id)
        payout_bin = self._table.select(roll_integer(digest))
        return RoundOutcome(
            result_bin=payout_bin.index,
            multiplier=payout_bin.multiplier,
            roll=unit_interval(digest),
            digest=digest,
        )


def compute_winnings(
    bet_amount: Decimal,
    multiplier: Decimal,
    house_edge_margin: Decimal,
    places: int,
) -> Decimal:
    """betAmount × multiplier × (1 − margin), rounded once at the end."""
    return round_money(bet_amount * multiplier * (Decimal("1") - house_edge_margin), places)


def _validate_inputs(nonce: int, round_id: str) -> None:
    if isinstance(nonce, bool) or not isinstance(nonce, int) or nonce < 0:
        raise ValidationError(f"nonce must be a non-negative integer, got {nonce!r}")
    if not round_id or ":" in round_id:
        raise ValidationError(f"round_id must be non-empty and contain no ':', got {round_id!r}")
