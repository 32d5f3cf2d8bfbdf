"""Outcome engine — bin selection and presentation paths."""

from fairdrop.engine.outcome import BinTable, OutcomeResolver, PayoutBin, compute_winnings
from fairdrop.engine.trajectory import DropPath, DropPathPlanner

__all__ = [
    "BinTable",
    "DropPath",
    "DropPathPlanner",
    "OutcomeResolver",
    "PayoutBin",
    "compute_winnings",
]
