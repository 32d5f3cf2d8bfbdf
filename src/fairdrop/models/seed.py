"""Seed model — one commitment epoch of the randomness source.

A seed's secret is committed to (its SHA-256 hash is published) before
any round is resolved against it. The secret is disclosed only when the
seed is revealed, which happens exactly once and only for a seed that
is no longer active.

Lifecycle:
    ACTIVE → REVEALED   (rotation; irreversible)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from fairdrop.errors import StateError


class SeedStatus(str, enum.Enum):
    """Lifecycle state of a seed."""
    ACTIVE = "active"
    REVEALED = "revealed"


@dataclass
class Seed:
    """A server seed and its public commitment.

    The commitment hash is fixed at creation. Mutable only through
    reveal().
    """
    seed_id: str
    secret: str = field(repr=False)
    commitment_hash: str
    activated_utc: datetime
    status: SeedStatus = SeedStatus.ACTIVE
    revealed_utc: Optional[datetime] = None
    rounds_root: Optional[str] = None
    round_count: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == SeedStatus.ACTIVE

    def reveal(
        self,
        now: datetime,
        rounds_root: str,
        round_count: int,
    ) -> None:
        """Transition ACTIVE → REVEALED. A second reveal is an error."""
        if self.status == SeedStatus.REVEALED:
            raise StateError(f"Seed {self.seed_id} is already revealed")
        self.status = SeedStatus.REVEALED
        self.revealed_utc = now
        self.rounds_root = rounds_root
        self.round_count = round_count

    def revelation(self) -> SeedRevelation:
        """Public view of a revealed seed, including its secret."""
        if self.status != SeedStatus.REVEALED:
            raise StateError(
                f"Seed {self.seed_id} is still active; its secret is not public"
            )
        return SeedRevelation(
            seed_id=self.seed_id,
            secret=self.secret,
            commitment_hash=self.commitment_hash,
            activated_utc=self.activated_utc,
            revealed_utc=self.revealed_utc,
            rounds_root=self.rounds_root,
            round_count=self.round_count,
        )


@dataclass(frozen=True)
class SeedRevelation:
    """Everything a player needs to audit the rounds of a past seed."""
    seed_id: str
    secret: str
    commitment_hash: str
    activated_utc: datetime
    revealed_utc: Optional[datetime]
    rounds_root: Optional[str]
    round_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "seed_id": self.seed_id,
            "secret": self.secret,
            "commitment_hash": self.commitment_hash,
            "activated_utc": _fmt(self.activated_utc),
            "revealed_utc": _fmt(self.revealed_utc),
            "rounds_root": self.rounds_root,
            "round_count": self.round_count,
        }


def _fmt(ts: Optional[datetime]) -> Optional[str]:
    return ts.strftime("%Y-%m-%dT%H:%M:%SZ") if ts is not None else None
