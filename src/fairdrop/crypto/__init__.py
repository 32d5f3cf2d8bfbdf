"""Cryptographic primitives — commitments, derived rolls, round trees."""

from fairdrop.crypto.commitment import commitment_hash, derive_digest, generate_secret
from fairdrop.crypto.round_tree import InclusionProof, RoundTree, verify_inclusion

__all__ = [
    "InclusionProof",
    "RoundTree",
    "commitment_hash",
    "derive_digest",
    "generate_secret",
    "verify_inclusion",
]
