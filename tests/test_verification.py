"""Tests for verification — proves revealed seeds reproduce every recorded round."""

import itertools
import pytest
from decimal import Decimal
from pathlib import Path

from fairdrop.crypto.commitment import commitment_hash
from fairdrop.crypto.round_tree import verify_inclusion
from fairdrop.errors import ValidationError
from fairdrop.models.bet import BetState
from fairdrop.policy.resolver import PolicyResolver
from fairdrop.service import FairDropService
from fairdrop.settlement.payments import PaymentVerification
from fairdrop.verification import VerificationService, verify_outcome


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


class PaidGateway:
    def verify_payment(self, payment_id: str, timeout: float) -> PaymentVerification:
        return PaymentVerification.verified(Decimal("10"))

    def complete_payment(self, payment_id: str, txid: str, timeout: float) -> bool:
        return True


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def service(resolver: PolicyResolver):
    counter = itertools.count()
    svc = FairDropService(
        resolver,
        gateway=PaidGateway(),
        secret_factory=lambda: f"seed-{next(counter)}",
        sleep=lambda _: None,
    )
    yield svc
    svc.close()


def _play(service: FairDropService, count: int) -> list[dict]:
    results = []
    for n in range(count):
        result = service.handle_payment_webhook({
            "paymentId": f"pay_{n}", "txid": f"tx_{n}", "user": "uid_1", "betAmount": "10",
        })
        assert result.success, result.errors
        results.append(result.data)
    return results


class TestVerifyRound:
    def test_settled_rounds_verify_after_rotation(self, resolver, service) -> None:
        played = _play(service, 3)
        service.rotate()
        verifier = VerificationService(resolver, service.store)
        for bet in played:
            assert verifier.verify_round(bet["seed_id"], bet["nonce"], bet["round_id"], bet["result_bin"])

    def test_wrong_bin_rejected(self, resolver, service) -> None:
        bet = _play(service, 1)[0]
        service.rotate()
        verifier = VerificationService(resolver, service.store)
        wrong = (bet["result_bin"] + 1) % resolver.bin_table().size
        assert not verifier.verify_round(bet["seed_id"], bet["nonce"], bet["round_id"], wrong)

    def test_active_seed_cannot_be_verified(self, resolver, service) -> None:
        bet = _play(service, 1)[0]
        verifier = VerificationService(resolver, service.store)
        with pytest.raises(ValidationError, match="still active"):
            verifier.verify_round(bet["seed_id"], bet["nonce"], bet["round_id"], bet["result_bin"])

    def test_unknown_seed(self, resolver, service) -> None:
        verifier = VerificationService(resolver, service.store)
        with pytest.raises(ValidationError, match="Unknown seed"):
            verifier.verify_round("seed_missing", 0, "r1", 0)
        with pytest.raises(ValidationError, match="required"):
            verifier.verify_round("", 0, "r1", 0)

    def test_standalone_check_needs_only_public_material(self, resolver, service) -> None:
        bet = _play(service, 1)[0]
        revealed = service.rotate().data["revealed"]
        table = resolver.bin_table()
        assert revealed["secret"] == "seed-0"
        assert revealed["commitment_hash"] == commitment_hash("seed-0")
        assert verify_outcome(
            revealed["secret"], revealed["commitment_hash"], table,
            bet["nonce"], bet["round_id"], bet["result_bin"],
        )
        assert not verify_outcome(
            "seed-X", revealed["commitment_hash"], table,
            bet["nonce"], bet["round_id"], bet["result_bin"],
        )


class TestAudit:
    def test_settled_bets_audit_clean(self, resolver, service) -> None:
        _play(service, 4)
        service.rotate()
        audits = VerificationService(resolver, service.store).verify_settled_bets()
        assert len(audits) == 4
        assert all(a.ok for a in audits)
        assert audits[0].to_dict()["ok"] is True

    def test_bets_on_active_seed_skipped(self, resolver, service) -> None:
        _play(service, 2)
        assert VerificationService(resolver, service.store).verify_settled_bets() == []

    def test_audit_requires_settled_bet(self, resolver, service) -> None:
        _play(service, 1)
        bet = service.store.get_bet("pay_0")
        bet.state = BetState.FAILED
        with pytest.raises(ValidationError, match="not settled"):
            VerificationService(resolver, service.store).audit_bet(bet)

    def test_tampered_winnings_detected(self, resolver, service) -> None:
        _play(service, 1)
        service.rotate()
        bet = service.store.get_bet("pay_0")
        bet.winnings = bet.winnings + Decimal("1")
        audit = VerificationService(resolver, service.store).audit_bet(bet)
        assert audit.commitment_valid
        assert not audit.winnings_valid
        assert not audit.ok


class TestInclusionProof:
    def test_round_is_in_published_root(self, resolver, service) -> None:
        played = _play(service, 3)
        revealed = service.rotate().data["revealed"]
        verifier = VerificationService(resolver, service.store)
        proof = verifier.inclusion_proof(played[1]["round_id"])
        assert proof.root == revealed["rounds_root"]
        assert verify_inclusion(proof, revealed["rounds_root"])

    def test_unknown_round(self, resolver, service) -> None:
        with pytest.raises(ValidationError, match="Unknown round"):
            VerificationService(resolver, service.store).inclusion_proof("r_missing")

    def test_round_on_active_seed(self, resolver, service) -> None:
        bet = _play(service, 1)[0]
        with pytest.raises(ValidationError, match="still active"):
            VerificationService(resolver, service.store).inclusion_proof(bet["round_id"])


class TestPublicSurface:
    def test_commitment_and_revelations(self, resolver, service) -> None:
        verifier = VerificationService(resolver, service.store)
        assert verifier.commitment() == commitment_hash("seed-0")
        assert verifier.revealed_seeds() == []
        service.rotate()
        assert verifier.commitment() == commitment_hash("seed-1")
        assert [r.secret for r in verifier.revealed_seeds()] == ["seed-0"]
