from __future__ import annotations

from cloudcafe_api.services.payments.worldpay import WorldpayClient


def get_payment_gateway() -> WorldpayClient:
    """Gateway used by checkout; overridden in tests with a mock transport."""

    return WorldpayClient()


__all__ = ["get_payment_gateway"]
