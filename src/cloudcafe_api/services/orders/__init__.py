from .history import OrderAccessDeniedError, OrderHistoryService
from .state_machine import (
    InvalidOrderTransitionError,
    OrderNotFoundError,
    OrderStateError,
    OrderStateMachine,
)

__all__ = [
    "InvalidOrderTransitionError",
    "OrderAccessDeniedError",
    "OrderHistoryService",
    "OrderNotFoundError",
    "OrderStateError",
    "OrderStateMachine",
]
