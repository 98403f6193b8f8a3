from __future__ import annotations

import pytest

from cloudcafe_api.domain.rewards import (
    AlreadyAtMaxError,
    InvalidStampCountError,
    LedgerInvariantError,
    LedgerPhase,
    LedgerState,
    NoRewardToRedeemError,
    RewardAlreadyPendingError,
    RewardOutcome,
    RewardTransactionType,
    TransactionDraft,
    add_single_stamp,
    apply_stamps,
    redeem,
)


def test_apply_stamps_below_threshold_accumulates():
    decision = apply_stamps(LedgerState(stamps=3), 2)

    assert decision.ledger == LedgerState(stamps=5, pending_reward=False)
    assert decision.transactions == (TransactionDraft(RewardTransactionType.STAMP_EARNED, 2),)
    assert decision.outcome is RewardOutcome.STAMPS_ADDED
    assert decision.message == "Stamp added! (5/10)"


def test_ninth_to_tenth_stamp_unlocks_reward():
    decision = apply_stamps(LedgerState(stamps=9), 1)

    assert decision.ledger == LedgerState(stamps=0, pending_reward=True)
    assert decision.ledger.phase is LedgerPhase.REWARD_PENDING
    assert decision.transactions == (
        TransactionDraft(RewardTransactionType.STAMP_EARNED, 1),
        TransactionDraft(RewardTransactionType.REWARD_EARNED, 1),
    )
    assert decision.outcome is RewardOutcome.REWARD_UNLOCKED


def test_ten_stamps_in_one_call_convert_directly():
    decision = apply_stamps(LedgerState(stamps=0), 10)

    assert decision.ledger == LedgerState(stamps=0, pending_reward=True)
    assert [entry.type for entry in decision.transactions] == [
        RewardTransactionType.STAMP_EARNED,
        RewardTransactionType.REWARD_EARNED,
    ]


def test_overflow_past_threshold_discards_excess():
    decision = apply_stamps(LedgerState(stamps=8), 5)

    assert decision.ledger == LedgerState(stamps=0, pending_reward=True)
    assert decision.transactions[0].amount == 5


def test_apply_stamps_rejected_while_reward_pending():
    with pytest.raises(RewardAlreadyPendingError) as excinfo:
        apply_stamps(LedgerState(stamps=0, pending_reward=True), 1)

    assert excinfo.value.code == "reward_already_pending"


@pytest.mark.parametrize("count", [0, -2])
def test_apply_stamps_requires_positive_count(count):
    with pytest.raises(InvalidStampCountError):
        apply_stamps(LedgerState(stamps=1), count)


def test_custom_threshold_is_respected():
    decision = apply_stamps(LedgerState(stamps=4), 1, threshold=5)

    assert decision.ledger.pending_reward is True
    assert decision.threshold == 5


def test_single_stamp_guard_on_corrupted_ledger():
    with pytest.raises(AlreadyAtMaxError):
        add_single_stamp(LedgerState(stamps=10))


def test_single_stamp_delegates_to_apply_stamps():
    decision = add_single_stamp(LedgerState(stamps=9))

    assert decision.outcome is RewardOutcome.REWARD_UNLOCKED
    assert decision.message == "Stamp added! Reward unlocked!"


def test_redeem_consumes_pending_reward():
    decision = redeem(LedgerState(stamps=0, pending_reward=True))

    assert decision.ledger == LedgerState(stamps=0, pending_reward=False)
    assert decision.transactions == (TransactionDraft(RewardTransactionType.REWARD_REDEEMED, 1),)
    assert decision.message == "Reward redeemed successfully!"


def test_redeem_without_pending_reward_fails():
    with pytest.raises(NoRewardToRedeemError):
        redeem(LedgerState(stamps=4))


@pytest.mark.parametrize(
    "state",
    [LedgerState(stamps=3, pending_reward=True), LedgerState(stamps=10), LedgerState(stamps=-1)],
)
def test_validate_rejects_broken_ledgers(state):
    with pytest.raises(LedgerInvariantError):
        state.validate()
