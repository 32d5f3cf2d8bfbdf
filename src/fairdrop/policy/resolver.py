"""Policy resolver — loads and validates the game's executable parameters.

All game economics live in config/game_params.json: the payout bins,
the house edge margin applied to winnings, monetary precision, rotation
policy, payment timeouts and retry policy. Code never hard-codes them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from fairdrop.engine.outcome import BinTable, PayoutBin
from fairdrop.errors import ValidationError
from fairdrop.models.money import parse_amount, quantum


PARAMS_FILE = "game_params.json"


@dataclass(frozen=True)
class RotationPolicy:
    """When the active seed is rotated without an operator asking."""
    after_rounds: Optional[int]

    def due(self, rounds_on_seed: int) -> bool:
        return self.after_rounds is not None and rounds_on_seed >= self.after_rounds


@dataclass(frozen=True)
class PaymentPolicy:
    timeout_seconds: float
    completion_required: bool


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    base_delay_seconds: float
    max_delay_seconds: float


class PolicyResolver:
    """Typed access to the game parameters.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        table = resolver.bin_table()
        margin = resolver.house_edge_margin()
    """

    def __init__(self, params: dict[str, Any]) -> None:
        self._params = params
        self._bin_table = self._build_bin_table(params)
        self._margin = parse_amount(params.get("house_edge_margin", "0"), "house_edge_margin")
        if not Decimal("0") <= self._margin < Decimal("1"):
            raise ValidationError(
                f"house_edge_margin must be in [0, 1), got {self._margin}"
            )
        places = params.get("money_decimal_places", 4)
        if not isinstance(places, int) or places < 0:
            raise ValidationError(f"money_decimal_places must be a non-negative int, got {places!r}")
        self._places = places
        self._min_bet = parse_amount(params.get("min_bet", "0.01"), "min_bet")
        self._max_bet = parse_amount(params.get("max_bet", "1000"), "max_bet")
        if self._min_bet <= 0 or self._max_bet < self._min_bet:
            raise ValidationError("bet limits must satisfy 0 < min_bet <= max_bet")
        if self._min_bet < quantum(places):
            raise ValidationError("min_bet is below the monetary precision")

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = Path(config_dir) / PARAMS_FILE
        try:
            params = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ValidationError(f"Missing game parameters: {path}") from exc
        return cls(params)

    @staticmethod
    def _build_bin_table(params: dict[str, Any]) -> BinTable:
        raw_bins = params.get("bins")
        if not raw_bins:
            raise ValidationError("game parameters define no bins")
        bins = []
        for index, entry in enumerate(raw_bins):
            bins.append(PayoutBin(
                index=index,
                multiplier=parse_amount(entry.get("multiplier"), f"bins[{index}].multiplier"),
                weight=parse_amount(entry.get("weight"), f"bins[{index}].weight"),
            ))
        return BinTable(bins)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def bin_table(self) -> BinTable:
        return self._bin_table

    def house_edge_margin(self) -> Decimal:
        return self._margin

    def money_places(self) -> int:
        return self._places

    def bet_limits(self) -> tuple[Decimal, Decimal]:
        return self._min_bet, self._max_bet

    def rotation_policy(self) -> RotationPolicy:
        rotation = self._params.get("rotation", {})
        after = rotation.get("after_rounds")
        if after is not None and (not isinstance(after, int) or after <= 0):
            raise ValidationError(f"rotation.after_rounds must be a positive int, got {after!r}")
        return RotationPolicy(after_rounds=after)

    def payment_policy(self) -> PaymentPolicy:
        payment = self._params.get("payment", {})
        timeout = float(payment.get("timeout_seconds", 10))
        if timeout <= 0:
            raise ValidationError("payment.timeout_seconds must be positive")
        return PaymentPolicy(
            timeout_seconds=timeout,
            completion_required=bool(payment.get("completion_required", True)),
        )

    def retry_policy(self) -> RetryPolicy:
        retry = self._params.get("retry", {})
        return RetryPolicy(
            attempts=max(1, int(retry.get("attempts", 3))),
            base_delay_seconds=float(retry.get("base_delay_seconds", 0.05)),
            max_delay_seconds=float(retry.get("max_delay_seconds", 1.0)),
        )

    def leaderboard_size(self) -> int:
        return int(self._params.get("leaderboard", {}).get("size", 10))
