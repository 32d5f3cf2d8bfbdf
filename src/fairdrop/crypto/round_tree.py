"""Round tree — a Merkle tree over the rounds resolved under one seed.

When a seed is revealed its round tree root is published alongside the
secret. A player holding one round and its inclusion proof can confirm
the round was part of the epoch the house committed to, without reading
the house's database.

Leaves are round hashes ("sha256:<hex>"). Leaves are sorted before
construction so the root does not depend on resolution order. An odd
node at any level is paired with itself.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any

from fairdrop.crypto.commitment import HASH_PREFIX


@dataclass(frozen=True)
class InclusionProof:
    """Sibling path from one leaf to the root."""
    leaf_hash: str
    path: list[tuple[str, str]]  # (sibling_hash, "L" | "R")
    root: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "leaf_hash": self.leaf_hash,
            "path": [[sibling, side] for sibling, side in self.path],
            "root": self.root,
        }


class RoundTree:
    """Deterministic SHA-256 Merkle tree over round hashes.

    Usage:
        tree = RoundTree(round.round_hash() for round in rounds)
        root = tree.root
        proof = tree.inclusion_proof(rounds[0].round_hash())
        assert verify_inclusion(proof)
    """

    def __init__(self, leaves=()) -> None:
        sorted_leaves = sorted(_with_prefix(leaf) for leaf in leaves)
        self._levels: list[list[str]] = [sorted_leaves]
        current = sorted_leaves
        while len(current) > 1:
            parents: list[str] = []
            for i in range(0, len(current), 2):
                left = current[i]
                right = current[i + 1] if i + 1 < len(current) else left
                parents.append(_hash_pair(left, right))
            self._levels.append(parents)
            current = parents

    @property
    def leaf_count(self) -> int:
        return len(self._levels[0])

    @property
    def root(self) -> str:
        """Root hash. An empty tree has the hash of empty input as root."""
        if not self._levels[0]:
            return _with_prefix(hashlib.sha256(b"").hexdigest())
        return self._levels[-1][0]

    def inclusion_proof(self, leaf_hash: str) -> InclusionProof | None:
        """Proof for one leaf, or None if the leaf is not in the tree."""
        leaf_hash = _with_prefix(leaf_hash)
        leaves = self._levels[0]
        if leaf_hash not in leaves:
            return None

        index = leaves.index(leaf_hash)
        path: list[tuple[str, str]] = []
        for level in self._levels[:-1]:
            if index % 2 == 0:
                sibling = level[index + 1] if index + 1 < len(level) else level[index]
                path.append((sibling, "R"))
            else:
                path.append((level[index - 1], "L"))
            index //= 2
        return InclusionProof(leaf_hash=leaf_hash, path=path, root=self.root)


def verify_inclusion(proof: InclusionProof, expected_root: str | None = None) -> bool:
    """Recompute the root from a proof. Needs nothing but the proof itself."""
    current = _with_prefix(proof.leaf_hash)
    for sibling, side in proof.path:
        if side == "L":
            current = _hash_pair(sibling, current)
        elif side == "R":
            current = _hash_pair(current, sibling)
        else:
            return False
    root = _with_prefix(expected_root or proof.root)
    return current == root


def _with_prefix(value: str) -> str:
    return value if value.startswith(HASH_PREFIX) else f"{HASH_PREFIX}{value}"


def _hash_pair(left: str, right: str) -> str:
    combined = f"{left.removeprefix(HASH_PREFIX)}{right.removeprefix(HASH_PREFIX)}"
    return _with_prefix(hashlib.sha256(combined.encode("utf-8")).hexdigest())
