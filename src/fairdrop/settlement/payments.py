"""Payment collaborator boundary — verification results and the Pi client.

The settlement coordinator never branches on provider callbacks. Every
provider answer is reduced to one explicit result:

    PaymentVerification.verified(amount)   payment completed on the provider
    PaymentVerification.pending(reason)    not completed yet; try again later
    PaymentVerification.failed(reason)     unreachable, cancelled, unknown

Any gateway implementing the PaymentGateway protocol can be plugged in.
Adding a provider requires zero changes to the coordinator.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Protocol, runtime_checkable

import requests

logger = logging.getLogger(__name__)

DEFAULT_PI_API_URL = "https://api.minepi.com/v2"


class VerificationStatus(str, enum.Enum):
    VERIFIED = "verified"
    PENDING = "pending"
    FAILED = "failed"


@dataclass(frozen=True)
class PaymentVerification:
    """The provider's answer about one payment."""
    status: VerificationStatus
    amount: Optional[Decimal] = None
    reason: str = ""
    user_id: Optional[str] = None
    txid: Optional[str] = None

    @classmethod
    def verified(
        cls,
        amount: Decimal,
        user_id: Optional[str] = None,
        txid: Optional[str] = None,
    ) -> PaymentVerification:
        return cls(VerificationStatus.VERIFIED, amount=amount, user_id=user_id, txid=txid)

    @classmethod
    def pending(cls, reason: str = "payment not completed") -> PaymentVerification:
        return cls(VerificationStatus.PENDING, reason=reason)

    @classmethod
    def failed(cls, reason: str) -> PaymentVerification:
        return cls(VerificationStatus.FAILED, reason=reason)

    @property
    def is_verified(self) -> bool:
        return self.status == VerificationStatus.VERIFIED


@runtime_checkable
class PaymentGateway(Protocol):
    """Contract the settlement coordinator consumes."""

    def verify_payment(self, payment_id: str, timeout: float) -> PaymentVerification:
        """Ask the provider whether the payment is completed, and for how much."""
        ...

    def complete_payment(self, payment_id: str, txid: str, timeout: float) -> bool:
        """Acknowledge the payment to the provider. True on success."""
        ...


class PiPaymentClient:
    """HTTP client for the Pi Network payments API.

    Network and protocol failures are reported as failed verifications,
    never raised, so the coordinator has a single place to decide the
    bet's fate.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_PI_API_URL,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})
        if api_key:
            self._session.headers.update({"Authorization": f"Key {api_key}"})
        else:
            logger.warning("PI_API_KEY is not set; payment API calls are unauthenticated")

    def verify_payment(self, payment_id: str, timeout: float) -> PaymentVerification:
        try:
            response = self._session.get(
                f"{self._base_url}/payments/{payment_id}", timeout=timeout,
            )
        except requests.Timeout:
            logger.warning("Payment verification timed out for %s", payment_id)
            return PaymentVerification.failed("verification timed out")
        except requests.RequestException as exc:
            logger.warning("Payment verification failed for %s: %s", payment_id, exc)
            return PaymentVerification.failed(f"payment provider unreachable: {exc}")

        if response.status_code == 404:
            return PaymentVerification.failed("unknown payment")
        if response.status_code >= 400:
            return PaymentVerification.failed(
                f"payment provider returned HTTP {response.status_code}"
            )
        try:
            body = response.json()
        except ValueError:
            return PaymentVerification.failed("payment provider returned malformed JSON")
        return interpret_payment(body)

    def complete_payment(self, payment_id: str, txid: str, timeout: float) -> bool:
        try:
            response = self._session.post(
                f"{self._base_url}/payments/{payment_id}/complete",
                json={"txid": txid},
                timeout=timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Payment completion failed for %s: %s", payment_id, exc)
            return False
        if response.status_code >= 400:
            logger.warning(
                "Payment completion for %s rejected with HTTP %s",
                payment_id, response.status_code,
            )
            return False
        return True


def interpret_payment(body: dict[str, Any]) -> PaymentVerification:
    """Reduce a provider payment document to a PaymentVerification.

    Accepts both a flat status string ("completed") and the structured
    status flags of the Pi payments API.
    """
    if not isinstance(body, dict):
        return PaymentVerification.failed("payment document is not an object")
    try:
        amount = Decimal(str(body["amount"]))
    except (KeyError, InvalidOperation, ValueError):
        return PaymentVerification.failed("payment document has no valid amount")
    if not amount.is_finite():
        return PaymentVerification.failed("payment document has no valid amount")

    transaction = body.get("transaction") or {}
    txid = transaction.get("txid") if isinstance(transaction, dict) else None
    user_id = body.get("user_uid")
    status = body.get("status")

    if isinstance(status, str):
        if status == "completed":
            return PaymentVerification.verified(amount, user_id=user_id, txid=txid)
        if status in ("cancelled", "failed", "expired"):
            return PaymentVerification.failed(f"payment {status}")
        return PaymentVerification.pending(f"payment status is {status!r}")

    if isinstance(status, dict):
        if status.get("cancelled") or status.get("user_cancelled"):
            return PaymentVerification.failed("payment cancelled")
        if status.get("transaction_verified"):
            return PaymentVerification.verified(amount, user_id=user_id, txid=txid)
        return PaymentVerification.pending("transaction not verified on chain yet")

    return PaymentVerification.failed("payment document has no status")
