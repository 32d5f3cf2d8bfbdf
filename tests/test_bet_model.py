"""Tests for the bet state machine — proves illegal transitions fail closed."""

import pytest
from decimal import Decimal

from fairdrop.errors import StateError
from fairdrop.models.bet import BET_TRANSITIONS, TERMINAL_STATES, Bet, BetState


def _bet(state: BetState = BetState.PAYMENT_PENDING) -> Bet:
    return Bet(
        payment_id="pay_1", user_id="uid_1",
        bet_amount=Decimal("10"), txid="tx_1", state=state,
    )


class TestTransitions:
    def test_happy_path(self) -> None:
        bet = _bet()
        for state in (
            BetState.PAYMENT_VERIFIED,
            BetState.OUTCOME_RESOLVED,
            BetState.SETTLED,
        ):
            bet.transition_to(state)
        assert bet.state == BetState.SETTLED
        assert bet.is_terminal

    @pytest.mark.parametrize("state", [
        BetState.PAYMENT_PENDING,
        BetState.PAYMENT_VERIFIED,
        BetState.OUTCOME_RESOLVED,
    ])
    def test_failed_reachable_from_every_non_terminal(self, state: BetState) -> None:
        bet = _bet(state)
        bet.transition_to(BetState.FAILED)
        assert bet.state == BetState.FAILED

    def test_cannot_skip_resolution(self) -> None:
        bet = _bet(BetState.PAYMENT_VERIFIED)
        with pytest.raises(StateError, match="payment_verified → settled"):
            bet.transition_to(BetState.SETTLED)

    def test_cannot_settle_unverified(self) -> None:
        with pytest.raises(StateError):
            _bet().transition_to(BetState.OUTCOME_RESOLVED)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_terminal_states_are_final(self, terminal: BetState) -> None:
        assert BET_TRANSITIONS[terminal] == frozenset()
        bet = _bet(terminal)
        with pytest.raises(StateError, match="Allowed: none"):
            bet.transition_to(BetState.PAYMENT_PENDING)

    def test_failed_transition_leaves_state(self) -> None:
        bet = _bet()
        with pytest.raises(StateError):
            bet.transition_to(BetState.SETTLED)
        assert bet.state == BetState.PAYMENT_PENDING


class TestCopyAndSummary:
    def test_copy_is_independent(self) -> None:
        bet = _bet()
        clone = bet.copy()
        clone.transition_to(BetState.PAYMENT_VERIFIED)
        assert bet.state == BetState.PAYMENT_PENDING

    def test_summary_uses_strings_for_money(self) -> None:
        bet = _bet(BetState.SETTLED)
        bet.multiplier = Decimal("5")
        bet.winnings = Decimal("49.5000")
        summary = bet.summary()
        assert summary["state"] == "settled"
        assert summary["bet_amount"] == "10"
        assert summary["winnings"] == "49.5000"
        assert summary["failure_reason"] is None
