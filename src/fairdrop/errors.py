"""Error taxonomy for the settlement pipeline.

Every failure raised by fairdrop derives from SettlementError so callers
can separate pipeline failures from programming errors:

- ValidationError: malformed input, rejected before any state change.
- ExternalVerificationError: the payment provider is unreachable or
  reports a payment that is not completed. The bet fails; no funds move.
- StateError: an invariant violation (resolving against a revealed seed,
  two active seeds, an illegal bet transition). Never swallowed.
- PersistenceError: a transient store failure. Retried with backoff at
  the step that failed; the paymentId gate keeps retries idempotent.
"""

from __future__ import annotations


class SettlementError(Exception):
    """Base class for all settlement pipeline failures."""

    retryable = False


class ValidationError(SettlementError):
    """Raised when input is rejected before any state change."""


class ExternalVerificationError(SettlementError):
    """Raised when the payment collaborator cannot confirm a payment."""


class StateError(SettlementError):
    """Raised when an operation would violate a lifecycle invariant."""


class PersistenceError(SettlementError):
    """Raised on a transient store failure. Safe to retry."""

    retryable = True
