"""Tests for the drop path planner — proves paths always land in the resolved bin."""

import pytest

from fairdrop.crypto.commitment import derive_digest
from fairdrop.engine.trajectory import DropPath, DropPathPlanner
from fairdrop.errors import ValidationError


class TestPlan:
    @pytest.mark.parametrize("result_bin", [0, 1, 2, 3, 4])
    def test_path_ends_in_bin(self, result_bin: int) -> None:
        planner = DropPathPlanner(rows=4)
        for nonce in range(20):
            path = planner.plan(derive_digest("seed-A", nonce, "r"), result_bin)
            assert len(path.moves) == 4
            assert path.moves.count("R") == result_bin
            assert path.columns[-1] == result_bin

    def test_reproducible(self) -> None:
        planner = DropPathPlanner(rows=8)
        digest = derive_digest("seed-A", 1, "r1")
        assert planner.plan(digest, 5) == planner.plan(digest, 5)

    def test_explores_all_paths(self) -> None:
        """Bin 2 on four rows has C(4, 2) = 6 paths; all of them occur."""
        planner = DropPathPlanner(rows=4)
        seen = {
            planner.plan(derive_digest("seed-A", nonce, "r"), 2).moves
            for nonce in range(300)
        }
        assert len(seen) == 6

    def test_edge_bins_have_one_path(self) -> None:
        planner = DropPathPlanner(rows=4)
        digest = derive_digest("seed-A", 1, "r1")
        assert planner.plan(digest, 0).moves == ("L",) * 4
        assert planner.plan(digest, 4).moves == ("R",) * 4

    def test_rejects_unknown_bin(self) -> None:
        with pytest.raises(ValidationError, match="does not exist"):
            DropPathPlanner(rows=4).plan("00" * 32, 5)

    def test_needs_a_row(self) -> None:
        with pytest.raises(ValidationError):
            DropPathPlanner(rows=0)


class TestDropPath:
    def test_to_dict(self) -> None:
        path = DropPath(result_bin=2, moves=("L", "R", "R", "L"))
        assert path.to_dict() == {
            "result_bin": 2,
            "moves": "LRRL",
            "columns": [0, 1, 2, 2],
        }
