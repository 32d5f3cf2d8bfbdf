"""Commitment anchoring — publishes a seed commitment hash on an EVM chain.

Publishing the commitment in a transaction gives it a public timestamp
that the house cannot rewrite: anyone can later check that the hash a
player saw before betting was on-chain before the seed was revealed.

This is NOT a smart contract. The transaction is a 0-value self-send
whose data field is the raw 32-byte SHA-256 digest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fairdrop.crypto.commitment import HASH_PREFIX
from fairdrop.errors import ValidationError

logger = logging.getLogger(__name__)

SEPOLIA_CHAIN_ID = 11155111

EXPLORERS = {
    SEPOLIA_CHAIN_ID: "https://sepolia.etherscan.io/tx/",
    1: "https://etherscan.io/tx/",
}


@dataclass(frozen=True)
class AnchorRecord:
    """A record of a confirmed commitment anchor."""
    seed_id: str
    commitment_hash: str
    tx_hash: str
    block_number: int
    chain_id: int
    timestamp_utc: str
    explorer_url: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "seed_id": self.seed_id,
            "commitment_hash": self.commitment_hash,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "chain_id": self.chain_id,
            "timestamp_utc": self.timestamp_utc,
            "explorer_url": self.explorer_url,
        }


def commitment_payload(commitment: str) -> bytes:
    """Raw digest bytes of a "sha256:<hex>" commitment."""
    raw_hex = commitment.removeprefix(HASH_PREFIX)
    if len(raw_hex) != 64:
        raise ValidationError(f"Not a SHA-256 commitment: {commitment!r}")
    try:
        return bytes.fromhex(raw_hex)
    except ValueError as exc:
        raise ValidationError(f"Not a SHA-256 commitment: {commitment!r}") from exc


def build_anchor_transaction(
    commitment: str,
    address: str,
    nonce: int,
    chain_id: int = SEPOLIA_CHAIN_ID,
    gas: int = 30_000,
    gas_price_wei: int = 2_000_000_000,
) -> dict[str, Any]:
    """Unsigned self-send transaction carrying the commitment digest."""
    return {
        "to": address,
        "value": 0,
        "gas": gas,
        "gasPrice": gas_price_wei,
        "nonce": nonce,
        "chainId": chain_id,
        "data": commitment_payload(commitment),
    }


def explorer_url(tx_hash: str, chain_id: int) -> str:
    base = EXPLORERS.get(chain_id)
    return f"{base}{tx_hash}" if base else ""


def anchor_commitment(
    seed_id: str,
    commitment: str,
    rpc_url: str,
    private_key: str,
    chain_id: int = SEPOLIA_CHAIN_ID,
    gas: int = 30_000,
    gas_price_gwei: str = "2",
    receipt_timeout: int = 300,
) -> AnchorRecord:
    """Sign, send and wait for one confirmation of an anchor transaction."""
    from web3 import HTTPProvider, Web3
    from eth_account import Account

    w3 = Web3(HTTPProvider(rpc_url))
    acct = Account.from_key(private_key)

    tx = build_anchor_transaction(
        commitment,
        address=acct.address,
        nonce=w3.eth.get_transaction_count(acct.address),
        chain_id=chain_id,
        gas=gas,
        gas_price_wei=w3.to_wei(gas_price_gwei, "gwei"),
    )
    signed = acct.sign_transaction(tx)
    tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
    logger.info("Sent anchor tx %s for seed %s", tx_hash.hex(), seed_id)

    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=receipt_timeout)
    logger.info("Anchor for seed %s confirmed in block %s", seed_id, receipt.blockNumber)

    return AnchorRecord(
        seed_id=seed_id,
        commitment_hash=commitment,
        tx_hash=tx_hash.hex(),
        block_number=receipt.blockNumber,
        chain_id=chain_id,
        timestamp_utc=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        explorer_url=explorer_url(tx_hash.hex(), chain_id),
    )
