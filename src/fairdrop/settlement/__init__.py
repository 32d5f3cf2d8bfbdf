"""Settlement — payment verification, the bet lifecycle and derived views."""

from fairdrop.settlement.coordinator import (
    SettlementCoordinator,
    SettlementOutcome,
    SettlementRequest,
)
from fairdrop.settlement.leaderboard import LeaderboardProjector
from fairdrop.settlement.payments import (
    PaymentGateway,
    PaymentVerification,
    PiPaymentClient,
    VerificationStatus,
)

__all__ = [
    "LeaderboardProjector",
    "PaymentGateway",
    "PaymentVerification",
    "PiPaymentClient",
    "SettlementCoordinator",
    "SettlementOutcome",
    "SettlementRequest",
    "VerificationStatus",
]
