"""Seed commitment manager — commit/reveal lifecycle of the server seed.

A seed is an epoch of the randomness source. While a seed is active only
its commitment hash is public; rounds are resolved against its secret.
Rotation reveals the active seed and activates a fresh one.

Invariants enforced:
- At most one seed is active at any time (the store refuses a second).
- commitment_hash == sha256(secret) at creation and after reveal.
- A seed is revealed exactly once, and only as it stops being active.
- A reveal is journalled before the secret is returned to any caller.
- Rotation and round resolution are mutually exclusive: rounds resolve
  inside active_round(), which holds the same lock rotate() takes.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional
from uuid import uuid4

from fairdrop.crypto.commitment import commitment_hash, generate_secret, matches_commitment
from fairdrop.crypto.round_tree import RoundTree
from fairdrop.errors import StateError
from fairdrop.models.seed import Seed, SeedRevelation, SeedStatus
from fairdrop.persistence.ledger_store import LedgerStore
from fairdrop.policy.resolver import RotationPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RotationResult:
    """Outcome of one rotation: the revealed epoch and its successor."""
    revealed: SeedRevelation
    new_seed_id: str
    new_commitment_hash: str

    @property
    def revealed_secret(self) -> str:
        return self.revealed.secret

    def to_dict(self) -> dict[str, Any]:
        return {
            "revealed": self.revealed.to_dict(),
            "new_seed_id": self.new_seed_id,
            "new_commitment_hash": self.new_commitment_hash,
        }


class SeedCommitmentManager:
    """Manages the seed lifecycle: create → commit → resolve rounds → reveal.

    Usage:
        manager = SeedCommitmentManager(store)
        commitment = manager.get_public_commitment()

        with manager.active_round() as seed:
            outcome = resolver.resolve(seed, nonce, round_id)

        result = manager.rotate()
        result.revealed_secret  # now public
    """

    def __init__(
        self,
        store: LedgerStore,
        rotation: Optional[RotationPolicy] = None,
        secret_factory: Callable[[], str] = generate_secret,
    ) -> None:
        self._store = store
        self._rotation = rotation or RotationPolicy(after_rounds=None)
        self._secret_factory = secret_factory
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_seed(self, now: Optional[datetime] = None) -> Seed:
        """Generate and activate a new seed.

        A seed that is still active is force-revealed first, so two
        seeds are never active together.
        """
        with self._lock:
            if now is None:
                now = datetime.now(timezone.utc)
            previous = self._store.active_seed()
            if previous is not None:
                logger.warning("Force-revealing active seed %s before creating a new one", previous.seed_id)
                self._reveal(previous, now)
            return self._activate_new(now)

    def ensure_active_seed(self, now: Optional[datetime] = None) -> Seed:
        """Return the active seed, creating the first one if none exists."""
        with self._lock:
            seed = self._store.active_seed()
            if seed is None:
                seed = self._activate_new(now or datetime.now(timezone.utc))
            return seed

    def rotate(self, now: Optional[datetime] = None) -> RotationResult:
        """Reveal the active seed and activate a fresh one.

        The only irreversible operation of the manager. No round can
        resolve while it runs.
        """
        with self._lock:
            if now is None:
                now = datetime.now(timezone.utc)
            current = self.ensure_active_seed(now)
            revealed = self._reveal(current, now)
            successor = self._activate_new(now)
            logger.info(
                "Rotated seed %s -> %s (%d rounds, root %s)",
                revealed.seed_id, successor.seed_id,
                revealed.round_count, revealed.rounds_root,
            )
            return RotationResult(
                revealed=revealed.revelation(),
                new_seed_id=successor.seed_id,
                new_commitment_hash=successor.commitment_hash,
            )

    def rotate_if_due(self, now: Optional[datetime] = None) -> Optional[RotationResult]:
        """Rotate when the rotation policy says the active seed is used up."""
        with self._lock:
            seed = self._store.active_seed()
            if seed is None:
                return None
            if not self._rotation.due(len(self._store.rounds_for_seed(seed.seed_id))):
                return None
            return self.rotate(now)

    @contextmanager
    def active_round(self) -> Iterator[Seed]:
        """Hold the rotation lock while a round is resolved and recorded."""
        with self._lock:
            yield self.ensure_active_seed()

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    def get_public_commitment(self) -> str:
        """Commitment hash of the active seed. Never exposes the secret."""
        return self.ensure_active_seed().commitment_hash

    def active_seed_id(self) -> str:
        return self.ensure_active_seed().seed_id

    def revealed_seeds(self) -> list[SeedRevelation]:
        return [s.revelation() for s in self._store.seeds(SeedStatus.REVEALED)]

    def history(self) -> list[dict[str, Any]]:
        """Rotation history without secrets of the active seed."""
        out = []
        for seed in self._store.seeds():
            out.append({
                "seed_id": seed.seed_id,
                "commitment_hash": seed.commitment_hash,
                "status": seed.status.value,
                "activated_utc": seed.activated_utc.isoformat(),
                "revealed_utc": seed.revealed_utc.isoformat() if seed.revealed_utc else None,
            })
        return out

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _activate_new(self, now: datetime) -> Seed:
        secret = self._secret_factory()
        seed = Seed(
            seed_id=f"seed_{uuid4().hex[:12]}",
            secret=secret,
            commitment_hash=commitment_hash(secret),
            activated_utc=now,
        )
        stored = self._store.add_seed(seed)
        logger.info("Activated seed %s with commitment %s", stored.seed_id, stored.commitment_hash)
        return stored

    def _reveal(self, seed: Seed, now: datetime) -> Seed:
        if not matches_commitment(seed.secret, seed.commitment_hash):
            logger.error("Seed %s secret does not match its commitment", seed.seed_id)
            raise StateError(f"Seed {seed.seed_id} secret does not match its commitment")
        rounds = self._store.rounds_for_seed(seed.seed_id)
        tree = RoundTree(r.round_hash() for r in rounds)
        return self._store.reveal_seed(
            seed.seed_id,
            revealed_utc=now,
            rounds_root=tree.root,
            round_count=tree.leaf_count,
        )
