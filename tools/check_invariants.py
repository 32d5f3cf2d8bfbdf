#!/usr/bin/env python3
"""FairDrop invariant checks against the shipped game parameters.

Reads config/game_params.json directly, without importing fairdrop, so
the checks stay independent of the code they guard.
"""

import json
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
PARAMS_PATH = ROOT / "config" / "game_params.json"

MAX_PAYMENT_TIMEOUT_SECONDS = 60


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def to_decimal(raw, label: str, errors: list[str]):
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        errors.append(f"{label} is not a number: {raw!r}")
        return None
    if not value.is_finite():
        errors.append(f"{label} must be finite")
        return None
    return value


def check_bins(bins: list, errors: list[str]) -> Decimal:
    """Validate the bin table and return its expected return per unit staked."""
    if len(bins) < 2:
        errors.append("bins must define at least two payout bins")
        return Decimal("0")

    total_weight = Decimal("0")
    expected = Decimal("0")
    for index, entry in enumerate(bins):
        multiplier = to_decimal(entry.get("multiplier"), f"bins[{index}].multiplier", errors)
        weight = to_decimal(entry.get("weight"), f"bins[{index}].weight", errors)
        if multiplier is None or weight is None:
            continue
        if multiplier < 0:
            errors.append(f"bins[{index}].multiplier must be >= 0")
        if weight < 0:
            errors.append(f"bins[{index}].weight must be >= 0")
        total_weight += weight
        expected += weight * multiplier

    # Exact comparison: weights are decimal strings, never floats.
    if total_weight != Decimal("1"):
        errors.append(f"bin weights must sum to exactly 1, got {total_weight}")
    if expected > Decimal("1"):
        errors.append(f"house edge must be non-negative (expected return {expected} > 1)")
    return expected


def check(params_path: Path = PARAMS_PATH) -> int:
    params = load_json(params_path)
    errors: list[str] = []

    # --- Payout table ---
    expected = check_bins(params.get("bins") or [], errors)

    margin = to_decimal(params.get("house_edge_margin", "0"), "house_edge_margin", errors)
    if margin is not None:
        if not Decimal("0") <= margin < Decimal("1"):
            errors.append(f"house_edge_margin must be in [0, 1), got {margin}")
        elif expected * (Decimal("1") - margin) >= Decimal("1"):
            errors.append("effective return to player must stay below 1")

    # --- Monetary precision and bet limits ---
    places = params.get("money_decimal_places")
    if not isinstance(places, int) or isinstance(places, bool) or not 0 <= places <= 8:
        errors.append(f"money_decimal_places must be an int in [0, 8], got {places!r}")
        places = None

    min_bet = to_decimal(params.get("min_bet"), "min_bet", errors)
    max_bet = to_decimal(params.get("max_bet"), "max_bet", errors)
    if min_bet is not None and max_bet is not None:
        if min_bet <= 0:
            errors.append("min_bet must be > 0")
        if max_bet < min_bet:
            errors.append("max_bet must be >= min_bet")
        if places is not None and min_bet < Decimal(1).scaleb(-places):
            errors.append("min_bet is below the monetary precision")

    # --- Seed rotation ---
    after_rounds = (params.get("rotation") or {}).get("after_rounds")
    if after_rounds is not None and (
        not isinstance(after_rounds, int) or isinstance(after_rounds, bool) or after_rounds <= 0
    ):
        errors.append(f"rotation.after_rounds must be null or a positive int, got {after_rounds!r}")

    # --- Payment verification must be bounded ---
    timeout = (params.get("payment") or {}).get("timeout_seconds")
    if not isinstance(timeout, (int, float)) or not 0 < timeout <= MAX_PAYMENT_TIMEOUT_SECONDS:
        errors.append(
            f"payment.timeout_seconds must be in (0, {MAX_PAYMENT_TIMEOUT_SECONDS}], got {timeout!r}"
        )

    # --- Retry and leaderboard ---
    retry = params.get("retry") or {}
    attempts = retry.get("attempts", 0)
    if not isinstance(attempts, int) or attempts < 1:
        errors.append("retry.attempts must be >= 1")
    if retry.get("max_delay_seconds", 0) < retry.get("base_delay_seconds", 0):
        errors.append("retry.max_delay_seconds must be >= retry.base_delay_seconds")

    size = (params.get("leaderboard") or {}).get("size", 0)
    if not isinstance(size, int) or size < 1:
        errors.append("leaderboard.size must be >= 1")

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    sys.exit(check())
