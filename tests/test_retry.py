"""Tests for retry with backoff — only transient store failures are retried."""

import pytest

from fairdrop.errors import PersistenceError, ValidationError
from fairdrop.policy.resolver import RetryPolicy
from fairdrop.settlement.retry import backoff_delay, with_retry


POLICY = RetryPolicy(attempts=3, base_delay_seconds=0.05, max_delay_seconds=1.0)


class Flaky:
    def __init__(self, failures: int, exc: Exception = None) -> None:
        self.failures = failures
        self.calls = 0
        self.exc = exc or PersistenceError("store unavailable")

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return "ok"


class TestWithRetry:
    def test_succeeds_first_time(self) -> None:
        sleeps: list[float] = []
        assert with_retry(Flaky(0), POLICY, "step", sleep=sleeps.append) == "ok"
        assert sleeps == []

    def test_retries_persistence_errors(self) -> None:
        sleeps: list[float] = []
        op = Flaky(2)
        assert with_retry(op, POLICY, "step", sleep=sleeps.append) == "ok"
        assert op.calls == 3
        assert len(sleeps) == 2

    def test_gives_up_after_attempts(self) -> None:
        op = Flaky(5)
        with pytest.raises(PersistenceError):
            with_retry(op, POLICY, "step", sleep=lambda _: None)
        assert op.calls == 3

    def test_other_errors_not_retried(self) -> None:
        op = Flaky(1, ValidationError("bad"))
        with pytest.raises(ValidationError):
            with_retry(op, POLICY, "step", sleep=lambda _: None)
        assert op.calls == 1

    def test_logs_each_retry(self, caplog) -> None:
        with caplog.at_level("WARNING", logger="fairdrop.settlement.retry"):
            with_retry(Flaky(1), POLICY, "settle bet", sleep=lambda _: None)
        assert "settle bet hit a store failure" in caplog.text


class TestBackoff:
    def test_grows_and_caps(self) -> None:
        first = backoff_delay(POLICY, 1)
        assert 0.05 <= first <= 0.10
        assert 0.10 <= backoff_delay(POLICY, 2) <= 0.15
        assert backoff_delay(POLICY, 10) == 1.0
