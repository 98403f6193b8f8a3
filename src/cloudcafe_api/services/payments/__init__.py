"""Hosted payment sessions and outcome reconciliation."""

from .reconciler import (
    PaymentOrderAccessError,
    PaymentOrderNotFoundError,
    PaymentOutcomeReconciler,
    PaymentOutcomeView,
    WebhookResult,
    WebhookSourceRejectedError,
)
from .worldpay import (
    HostedPaymentSession,
    PaymentGatewayError,
    WorldpayClient,
    build_transaction_reference,
    parse_transaction_reference,
)

__all__ = [
    "HostedPaymentSession",
    "PaymentGatewayError",
    "PaymentOrderAccessError",
    "PaymentOrderNotFoundError",
    "PaymentOutcomeReconciler",
    "PaymentOutcomeView",
    "WebhookResult",
    "WebhookSourceRejectedError",
    "WorldpayClient",
    "build_transaction_reference",
    "parse_transaction_reference",
]
