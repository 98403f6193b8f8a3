"""Pure domain logic for carts and the stamp card."""

from .cart import (  # noqa: F401
    DEFAULT_ELIGIBLE_CATEGORIES,
    CartItem,
    CartItemNotFoundError,
    CartSession,
    parse_price,
)
from .rewards import (  # noqa: F401
    STAMPS_PER_REWARD,
    AlreadyAtMaxError,
    LedgerState,
    NoRewardToRedeemError,
    RewardAlreadyPendingError,
    RewardDecision,
    RewardOutcome,
    RewardStateError,
    RewardTransactionType,
    add_single_stamp,
    apply_stamps,
    redeem,
)
