"""Round model — one resolved drop.

A round's result is a pure function of (secret of the owning seed,
nonce, round_id). Rounds are immutable once resolved; the canonical
round hash is the leaf committed into the seed's round tree at reveal.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional


@dataclass(frozen=True)
class RoundOutcome:
    """Output of the outcome resolver for one set of inputs."""
    result_bin: int
    multiplier: Decimal
    roll: Decimal  # uniform value in [0, 1)
    digest: str  # hex HMAC-SHA256 the roll was taken from


@dataclass(frozen=True)
class Round:
    """A resolved drop bound to the seed it was resolved against."""
    round_id: str
    seed_id: str
    nonce: int
    bet_amount: Decimal
    result_bin: int
    multiplier: Decimal
    resolved_utc: str
    payment_id: Optional[str] = None

    def canonical_payload(self) -> dict[str, Any]:
        return {
            "round_id": self.round_id,
            "seed_id": self.seed_id,
            "nonce": self.nonce,
            "bet_amount": str(self.bet_amount),
            "result_bin": self.result_bin,
            "multiplier": str(self.multiplier),
        }

    def round_hash(self) -> str:
        """SHA-256 over the canonical JSON of the round's auditable fields."""
        canonical = json.dumps(
            self.canonical_payload(), sort_keys=True, ensure_ascii=False,
        ).encode("utf-8")
        return f"sha256:{hashlib.sha256(canonical).hexdigest()}"
