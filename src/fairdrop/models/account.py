"""Player account totals and the leaderboard projection.

UserAccount totals are monotonically non-decreasing and are only ever
changed by the store's atomic increment. LeaderboardEntry is a derived,
eventually-consistent view; it is never the source of truth.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from fairdrop.errors import ValidationError

USERNAME_MAX_LENGTH = 32

_WHITESPACE = re.compile(r"\s+")


def sanitize_username(raw: Optional[str], fallback: str = "") -> str:
    """Trim, collapse inner whitespace and cap at USERNAME_MAX_LENGTH."""
    name = _WHITESPACE.sub(" ", raw or "").strip() or fallback
    if not name:
        raise ValidationError("username must not be empty")
    return name[:USERNAME_MAX_LENGTH]


@dataclass
class UserAccount:
    """Aggregate totals for one player, keyed by the identity provider's id."""
    user_id: str
    username: str
    total_wagered: Decimal = Decimal("0")
    total_winnings: Decimal = Decimal("0")
    bets_settled: int = 0
    created_utc: Optional[datetime] = None

    @property
    def net_profit(self) -> Decimal:
        return self.total_winnings - self.total_wagered

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "total_wagered": str(self.total_wagered),
            "total_winnings": str(self.total_winnings),
            "net_profit": str(self.net_profit),
            "bets_settled": self.bets_settled,
        }


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    user_id: str
    total_winnings: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "user_id": self.user_id,
            "total_winnings": str(self.total_winnings),
        }
