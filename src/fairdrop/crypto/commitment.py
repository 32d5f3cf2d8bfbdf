"""Commitment primitives — secret generation, commitment hash, derived rolls.

commitment_hash(secret) is published before a secret influences any
round. derive_digest(secret, nonce, round_id) is the only source of
outcome randomness: HMAC-SHA256 keyed by the secret over "nonce:round_id".

Anyone holding a revealed secret can recompute every value here with
the standard library alone.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from decimal import Decimal

HASH_PREFIX = "sha256:"

# Entropy of a generated secret (bytes). 32 bytes = 256 bits.
SECRET_BYTES = 32

# Width of the roll taken from the digest: 13 hex chars = 52 bits, the
# integer range a float mantissa holds exactly.
ROLL_HEX_CHARS = 13
ROLL_SCALE = 16 ** ROLL_HEX_CHARS


def generate_secret() -> str:
    """Return a fresh 256-bit secret, hex encoded."""
    return secrets.token_hex(SECRET_BYTES)


def commitment_hash(secret: str) -> str:
    """SHA-256 of the secret's UTF-8 bytes, with the sha256: prefix."""
    digest = hashlib.sha256(secret.encode("utf-8")).hexdigest()
    return f"{HASH_PREFIX}{digest}"


def matches_commitment(secret: str, committed: str) -> bool:
    """Check a revealed secret against a published commitment."""
    return hmac.compare_digest(commitment_hash(secret), committed)


def round_message(nonce: int, round_id: str) -> bytes:
    return f"{nonce}:{round_id}".encode("utf-8")


def derive_digest(secret: str, nonce: int, round_id: str) -> str:
    """HMAC-SHA256(secret, "nonce:round_id") as hex."""
    return hmac.new(
        secret.encode("utf-8"), round_message(nonce, round_id), hashlib.sha256,
    ).hexdigest()


def roll_integer(digest: str) -> int:
    """Leading ROLL_HEX_CHARS of the digest as an integer in [0, ROLL_SCALE)."""
    return int(digest[:ROLL_HEX_CHARS], 16)


def unit_interval(digest: str) -> Decimal:
    """Map a digest to a uniform value in [0, 1)."""
    return Decimal(roll_integer(digest)) / Decimal(ROLL_SCALE)


def digest_stream(digest: str):
    """Yield an endless sequence of bits derived from the digest.

    Used by presentation code that needs more randomness than one roll.
    Blocks are chained as sha256(digest || counter) so the stream is
    reproducible from the same inputs as the roll.
    """
    counter = 0
    while True:
        block = hashlib.sha256(f"{digest}:{counter}".encode("utf-8")).digest()
        for byte in block:
            for shift in range(7, -1, -1):
                yield (byte >> shift) & 1
        counter += 1
