"""SQLAlchemy models package."""

from .cart import Cart  # noqa: F401
from .order import (  # noqa: F401
    Order,
    OrderItem,
    OrderStatusEnum,
    PaymentMethodEnum,
    PaymentStatusEnum,
)
from .payment_event import PaymentEventOutcomeEnum, PaymentWebhookEvent  # noqa: F401
from .rewards import RewardLedger, RewardTransaction  # noqa: F401
from .shop_config import ShopConfig  # noqa: F401
from .user import STAFF_ROLES, User, UserRoleEnum  # noqa: F401
