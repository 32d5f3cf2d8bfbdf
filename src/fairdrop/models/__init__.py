"""Core data models for fairdrop."""

from fairdrop.models.account import LeaderboardEntry, UserAccount
from fairdrop.models.bet import BET_TRANSITIONS, Bet, BetState
from fairdrop.models.round import Round, RoundOutcome
from fairdrop.models.seed import Seed, SeedRevelation, SeedStatus

__all__ = [
    "BET_TRANSITIONS",
    "Bet",
    "BetState",
    "LeaderboardEntry",
    "Round",
    "RoundOutcome",
    "Seed",
    "SeedRevelation",
    "SeedStatus",
    "UserAccount",
]
