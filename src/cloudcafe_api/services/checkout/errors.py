"""Checkout failures surfaced to customers."""

from __future__ import annotations


class CheckoutError(RuntimeError):
    code = "checkout_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotAuthenticatedError(CheckoutError):
    code = "not_authenticated"
    status_code = 401

    def __init__(self) -> None:
        super().__init__("You must be signed in to place an order")


class EmptyCartError(CheckoutError):
    code = "empty_cart"

    def __init__(self) -> None:
        super().__init__("Your cart is empty")


class NotesTooLongError(CheckoutError):
    code = "notes_too_long"

    def __init__(self, limit: int) -> None:
        super().__init__(f"Order notes must be {limit} characters or fewer")
        self.limit = limit


class ZeroTotalOnlinePaymentError(CheckoutError):
    code = "zero_total_online_payment"

    def __init__(self) -> None:
        super().__init__("Orders with nothing to pay must be placed for in-store payment")


class RewardNoLongerAvailableError(CheckoutError):
    code = "reward_no_longer_available"
    status_code = 409

    def __init__(self) -> None:
        super().__init__("Your free drink has already been redeemed. Please review your cart.")


class PaymentSessionCreationError(CheckoutError):
    code = "payment_session_failed"
    status_code = 502

    def __init__(self, reason: str) -> None:
        super().__init__("We couldn't start the payment. Please try again.")
        self.reason = reason


__all__ = [
    "CheckoutError",
    "EmptyCartError",
    "NotAuthenticatedError",
    "NotesTooLongError",
    "PaymentSessionCreationError",
    "RewardNoLongerAvailableError",
    "ZeroTotalOnlinePaymentError",
]
