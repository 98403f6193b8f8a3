"""Order submission and its reward side effects."""

from .errors import (
    CheckoutError,
    EmptyCartError,
    NotAuthenticatedError,
    NotesTooLongError,
    PaymentSessionCreationError,
    RewardNoLongerAvailableError,
    ZeroTotalOnlinePaymentError,
)
from .orchestrator import CheckoutResult, OrderSubmissionOrchestrator
from .rewards import RewardEffect, RewardEffectApplier, RewardEffectStatus

__all__ = [
    "CheckoutError",
    "CheckoutResult",
    "EmptyCartError",
    "NotAuthenticatedError",
    "NotesTooLongError",
    "OrderSubmissionOrchestrator",
    "PaymentSessionCreationError",
    "RewardEffect",
    "RewardEffectApplier",
    "RewardEffectStatus",
    "RewardNoLongerAvailableError",
    "ZeroTotalOnlinePaymentError",
]
