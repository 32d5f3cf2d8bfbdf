"""JSON codecs for journalled records.

Decimals travel as strings and datetimes as ISO-8601 so a record read
back from the journal is equal to the one written.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from fairdrop.models.account import UserAccount
from fairdrop.models.bet import Bet, BetState
from fairdrop.models.round import Round
from fairdrop.models.seed import Seed, SeedStatus


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _parse_dec(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def seed_to_dict(seed: Seed) -> dict[str, Any]:
    return {
        "seed_id": seed.seed_id,
        "secret": seed.secret,
        "commitment_hash": seed.commitment_hash,
        "status": seed.status.value,
        "activated_utc": _ts(seed.activated_utc),
        "revealed_utc": _ts(seed.revealed_utc),
        "rounds_root": seed.rounds_root,
        "round_count": seed.round_count,
    }


def seed_from_dict(data: dict[str, Any]) -> Seed:
    return Seed(
        seed_id=data["seed_id"],
        secret=data["secret"],
        commitment_hash=data["commitment_hash"],
        status=SeedStatus(data["status"]),
        activated_utc=_parse_ts(data["activated_utc"]),
        revealed_utc=_parse_ts(data.get("revealed_utc")),
        rounds_root=data.get("rounds_root"),
        round_count=data.get("round_count", 0),
    )


def round_to_dict(round_: Round) -> dict[str, Any]:
    data = round_.canonical_payload()
    data["resolved_utc"] = round_.resolved_utc
    data["payment_id"] = round_.payment_id
    return data


def round_from_dict(data: dict[str, Any]) -> Round:
    return Round(
        round_id=data["round_id"],
        seed_id=data["seed_id"],
        nonce=data["nonce"],
        bet_amount=Decimal(data["bet_amount"]),
        result_bin=data["result_bin"],
        multiplier=Decimal(data["multiplier"]),
        resolved_utc=data["resolved_utc"],
        payment_id=data.get("payment_id"),
    )


def bet_to_dict(bet: Bet) -> dict[str, Any]:
    return {
        "payment_id": bet.payment_id,
        "user_id": bet.user_id,
        "bet_amount": _dec(bet.bet_amount),
        "txid": bet.txid,
        "state": bet.state.value,
        "created_utc": _ts(bet.created_utc),
        "verified_utc": _ts(bet.verified_utc),
        "resolved_utc": _ts(bet.resolved_utc),
        "settled_utc": _ts(bet.settled_utc),
        "failed_utc": _ts(bet.failed_utc),
        "seed_id": bet.seed_id,
        "round_id": bet.round_id,
        "nonce": bet.nonce,
        "result_bin": bet.result_bin,
        "multiplier": _dec(bet.multiplier),
        "winnings": _dec(bet.winnings),
        "failure_reason": bet.failure_reason,
        "completion_acknowledged": bet.completion_acknowledged,
    }


def bet_from_dict(data: dict[str, Any]) -> Bet:
    return Bet(
        payment_id=data["payment_id"],
        user_id=data["user_id"],
        bet_amount=Decimal(data["bet_amount"]),
        txid=data["txid"],
        state=BetState(data["state"]),
        created_utc=_parse_ts(data.get("created_utc")),
        verified_utc=_parse_ts(data.get("verified_utc")),
        resolved_utc=_parse_ts(data.get("resolved_utc")),
        settled_utc=_parse_ts(data.get("settled_utc")),
        failed_utc=_parse_ts(data.get("failed_utc")),
        seed_id=data.get("seed_id"),
        round_id=data.get("round_id"),
        nonce=data.get("nonce"),
        result_bin=data.get("result_bin"),
        multiplier=_parse_dec(data.get("multiplier")),
        winnings=_parse_dec(data.get("winnings")),
        failure_reason=data.get("failure_reason"),
        completion_acknowledged=data.get("completion_acknowledged"),
    )


def account_to_dict(account: UserAccount) -> dict[str, Any]:
    return {
        "user_id": account.user_id,
        "username": account.username,
        "created_utc": _ts(account.created_utc),
    }
