"""Drop path planner — renders a predetermined outcome as a peg-by-peg path.

The presentation layer must never generate outcome randomness. It asks
the planner for a path that ends in the bin the resolver already chose.
The planner draws its choices from a stream derived from the same round
digest, so the animation a player sees is reproducible from the revealed
secret too.

On a board with R peg rows and R + 1 bins, a path is R moves of "L" or
"R"; the ball lands in bin k exactly when the path contains k "R" moves.
Among all such paths the planner picks one uniformly at random.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from fairdrop.crypto.commitment import digest_stream
from fairdrop.errors import ValidationError


@dataclass(frozen=True)
class DropPath:
    """A renderable trajectory for one round."""
    result_bin: int
    moves: tuple[str, ...]

    @property
    def columns(self) -> tuple[int, ...]:
        """Gap index after each peg row (0 = leftmost)."""
        position = 0
        out = []
        for move in self.moves:
            if move == "R":
                position += 1
            out.append(position)
        return tuple(out)

    def to_dict(self) -> dict:
        return {
            "result_bin": self.result_bin,
            "moves": "".join(self.moves),
            "columns": list(self.columns),
        }


class DropPathPlanner:
    """Plans paths on a board with a fixed number of peg rows."""

    def __init__(self, rows: int) -> None:
        if rows < 1:
            raise ValidationError("A board needs at least one peg row")
        self._rows = rows

    @property
    def rows(self) -> int:
        return self._rows

    def plan(self, digest: str, result_bin: int) -> DropPath:
        if not 0 <= result_bin <= self._rows:
            raise ValidationError(
                f"Bin {result_bin} does not exist on a {self._rows}-row board"
            )
        bits = digest_stream(digest)
        rights_left = result_bin
        moves = []
        for rows_left in range(self._rows, 0, -1):
            # P(right) = rights_left / rows_left gives a uniform choice
            # over all paths ending in result_bin.
            if _uniform_below(bits, rows_left) < rights_left:
                moves.append("R")
                rights_left -= 1
            else:
                moves.append("L")
        return DropPath(result_bin=result_bin, moves=tuple(moves))


def _uniform_below(bits: Iterator[int], bound: int) -> int:
    """Unbiased integer in [0, bound) by rejection sampling over the bit stream."""
    if bound == 1:
        return 0
    width = (bound - 1).bit_length()
    while True:
        value = 0
        for _ in range(width):
            value = (value << 1) | next(bits)
        if value < bound:
            return value
