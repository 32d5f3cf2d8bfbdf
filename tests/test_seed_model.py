"""Tests for the seed model — proves the secret stays private until reveal."""

import pytest
from datetime import datetime, timezone

from fairdrop.crypto.commitment import commitment_hash
from fairdrop.errors import StateError
from fairdrop.models.seed import Seed, SeedStatus


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _seed() -> Seed:
    return Seed(
        seed_id="seed_a",
        secret="seed-A",
        commitment_hash=commitment_hash("seed-A"),
        activated_utc=_now(),
    )


class TestSeed:
    def test_new_seed_is_active(self) -> None:
        seed = _seed()
        assert seed.is_active
        assert seed.revealed_utc is None

    def test_secret_not_in_repr(self) -> None:
        assert "seed-A" not in repr(_seed())

    def test_active_seed_has_no_revelation(self) -> None:
        with pytest.raises(StateError, match="still active"):
            _seed().revelation()

    def test_reveal(self) -> None:
        seed = _seed()
        seed.reveal(_now(), rounds_root="sha256:" + "0" * 64, round_count=3)
        assert seed.status == SeedStatus.REVEALED
        revelation = seed.revelation()
        assert revelation.secret == "seed-A"
        assert revelation.commitment_hash == commitment_hash("seed-A")
        assert revelation.round_count == 3

    def test_reveal_is_once_only(self) -> None:
        seed = _seed()
        seed.reveal(_now(), rounds_root="sha256:x", round_count=0)
        with pytest.raises(StateError, match="already revealed"):
            seed.reveal(_now(), rounds_root="sha256:x", round_count=0)

    def test_revelation_to_dict(self) -> None:
        seed = _seed()
        seed.reveal(_now(), rounds_root="sha256:r", round_count=1)
        data = seed.revelation().to_dict()
        assert data["secret"] == "seed-A"
        assert data["revealed_utc"] == "2026-03-01T12:00:00Z"
        assert data["rounds_root"] == "sha256:r"
