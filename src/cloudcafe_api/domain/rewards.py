"""Stamp-card state machine.

A ledger is either in ``NoReward`` (collecting stamps) or ``RewardPending``
(one free drink outstanding, stamps reset to zero). Every caller that touches a
ledger, whether the staff terminal, in-store checkout or the payment
reconciler, routes through the functions below so the threshold logic lives in
exactly one place. Nothing here performs I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

STAMPS_PER_REWARD = 10


class LedgerPhase(str, Enum):
    NO_REWARD = "NoReward"
    REWARD_PENDING = "RewardPending"


class RewardTransactionType(str, Enum):
    STAMP_EARNED = "stamp_earned"
    REWARD_EARNED = "reward_earned"
    REWARD_REDEEMED = "reward_redeemed"


class RewardOutcome(str, Enum):
    STAMPS_ADDED = "stamps_added"
    REWARD_UNLOCKED = "reward_unlocked"
    REWARD_REDEEMED = "reward_redeemed"


class RewardStateError(RuntimeError):
    """Base class for rejected ledger transitions.

    These mean the caller acted on a stale snapshot; re-fetch and retry once.
    """

    code = "reward_state_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RewardAlreadyPendingError(RewardStateError):
    code = "reward_already_pending"

    def __init__(self) -> None:
        super().__init__("Customer has a pending reward - redeem it before earning more stamps")


class NoRewardToRedeemError(RewardStateError):
    code = "no_reward_to_redeem"

    def __init__(self) -> None:
        super().__init__("No pending reward to redeem")


class AlreadyAtMaxError(RewardStateError):
    code = "already_at_max"

    def __init__(self, threshold: int) -> None:
        super().__init__(f"Customer already has {threshold} stamps")


class InvalidStampCountError(RewardStateError):
    code = "invalid_stamp_count"

    def __init__(self, count: int) -> None:
        super().__init__(f"Stamp count must be positive, got {count}")


class LedgerInvariantError(ValueError):
    """Raised when a persisted ledger violates the stamp-card invariants."""


@dataclass(frozen=True, slots=True)
class LedgerState:
    stamps: int = 0
    pending_reward: bool = False

    @property
    def phase(self) -> LedgerPhase:
        return LedgerPhase.REWARD_PENDING if self.pending_reward else LedgerPhase.NO_REWARD

    def validate(self, threshold: int = STAMPS_PER_REWARD) -> "LedgerState":
        if self.pending_reward and self.stamps != 0:
            raise LedgerInvariantError(
                f"pending reward must carry zero stamps, found {self.stamps}"
            )
        if not 0 <= self.stamps < threshold:
            raise LedgerInvariantError(
                f"stamps must be within [0, {threshold - 1}], found {self.stamps}"
            )
        return self


@dataclass(frozen=True, slots=True)
class TransactionDraft:
    type: RewardTransactionType
    amount: int


@dataclass(frozen=True, slots=True)
class RewardDecision:
    ledger: LedgerState
    transactions: Tuple[TransactionDraft, ...]
    outcome: RewardOutcome
    threshold: int = STAMPS_PER_REWARD

    @property
    def message(self) -> str:
        if self.outcome is RewardOutcome.REWARD_UNLOCKED:
            return "Stamp added! Reward unlocked!"
        if self.outcome is RewardOutcome.REWARD_REDEEMED:
            return "Reward redeemed successfully!"
        return f"Stamp added! ({self.ledger.stamps}/{self.threshold})"


def apply_stamps(
    ledger: LedgerState,
    count: int,
    *,
    threshold: int = STAMPS_PER_REWARD,
) -> RewardDecision:
    """Earn ``count`` stamps, converting to a pending reward at the threshold."""

    if ledger.pending_reward:
        raise RewardAlreadyPendingError()
    if count <= 0:
        raise InvalidStampCountError(count)

    new_stamps = ledger.stamps + count
    earned = TransactionDraft(RewardTransactionType.STAMP_EARNED, count)
    if new_stamps >= threshold:
        return RewardDecision(
            ledger=LedgerState(stamps=0, pending_reward=True),
            transactions=(earned, TransactionDraft(RewardTransactionType.REWARD_EARNED, 1)),
            outcome=RewardOutcome.REWARD_UNLOCKED,
            threshold=threshold,
        )

    return RewardDecision(
        ledger=LedgerState(stamps=new_stamps, pending_reward=False),
        transactions=(earned,),
        outcome=RewardOutcome.STAMPS_ADDED,
        threshold=threshold,
    )


def add_single_stamp(ledger: LedgerState, *, threshold: int = STAMPS_PER_REWARD) -> RewardDecision:
    """Staff-terminal stamp: one stamp per scan."""

    if ledger.pending_reward:
        raise RewardAlreadyPendingError()
    # Unreachable while the invariant holds; a corrupted row must not overflow.
    if ledger.stamps >= threshold:
        raise AlreadyAtMaxError(threshold)
    return apply_stamps(ledger, 1, threshold=threshold)


def redeem(ledger: LedgerState) -> RewardDecision:
    """Consume the outstanding reward."""

    if not ledger.pending_reward:
        raise NoRewardToRedeemError()
    return RewardDecision(
        ledger=LedgerState(stamps=0, pending_reward=False),
        transactions=(TransactionDraft(RewardTransactionType.REWARD_REDEEMED, 1),),
        outcome=RewardOutcome.REWARD_REDEEMED,
    )


__all__ = [
    "STAMPS_PER_REWARD",
    "AlreadyAtMaxError",
    "InvalidStampCountError",
    "LedgerInvariantError",
    "LedgerPhase",
    "LedgerState",
    "NoRewardToRedeemError",
    "RewardAlreadyPendingError",
    "RewardDecision",
    "RewardOutcome",
    "RewardStateError",
    "RewardTransactionType",
    "TransactionDraft",
    "add_single_stamp",
    "apply_stamps",
    "redeem",
]
