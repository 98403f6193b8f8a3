from __future__ import annotations

import pytest
from sqlalchemy import update

from cloudcafe_api.domain.rewards import (
    LedgerState,
    RewardAlreadyPendingError,
    RewardTransactionType,
    apply_stamps,
    redeem,
)
from cloudcafe_api.models import RewardLedger
from cloudcafe_api.observability.rewards import get_rewards_store
from cloudcafe_api.services.rewards import LedgerConflictError, RewardLedgerService

from factories import create_user, fetch_ledger, fetch_transactions


class RacingLedgerService(RewardLedgerService):
    """Bumps the stored version behind the caller's back ``races`` times."""

    def __init__(self, db_session, *, races: int, **kwargs) -> None:
        super().__init__(db_session, **kwargs)
        self.races = races

    async def get_or_create(self, user_id):
        ledger = await super().get_or_create(user_id)
        if self.races > 0:
            self.races -= 1
            await self._db.execute(
                update(RewardLedger)
                .where(RewardLedger.user_id == user_id)
                .values(version=RewardLedger.version + 1)
                .execution_options(synchronize_session=False)
            )
        return ledger


@pytest.mark.asyncio
async def test_get_or_create_creates_zeroed_ledger_once(session_factory):
    user = await create_user(session_factory, email="new@example.com")

    async with session_factory() as session:
        service = RewardLedgerService(session)
        first = await service.get_or_create(user.id)
        second = await service.get_or_create(user.id)
        await session.commit()

        assert first.id == second.id
        assert first.state() == LedgerState(stamps=0, pending_reward=False)
        assert first.version == 1


@pytest.mark.asyncio
async def test_mutate_persists_state_and_transactions(session_factory):
    user = await create_user(session_factory, email="stamps@example.com", stamps=8)

    async with session_factory() as session:
        service = RewardLedgerService(session)
        mutation = await service.mutate(
            user.id,
            lambda state: apply_stamps(state, 2),
            source="order",
        )
        await session.commit()

    assert mutation.ledger.state() == LedgerState(stamps=0, pending_reward=True)
    assert mutation.ledger.version == 2

    ledger = await fetch_ledger(session_factory, user.id)
    assert ledger.state() == LedgerState(stamps=0, pending_reward=True)

    transactions = await fetch_transactions(session_factory, user.id)
    assert sorted((entry.type, entry.amount) for entry in transactions) == [
        (RewardTransactionType.REWARD_EARNED, 1),
        (RewardTransactionType.STAMP_EARNED, 2),
    ]

    snapshot = get_rewards_store().snapshot()
    assert snapshot.transitions["reward_unlocked"] == 1
    assert snapshot.transitions["source:order"] == 1


@pytest.mark.asyncio
async def test_rejected_decision_leaves_ledger_untouched(session_factory):
    user = await create_user(session_factory, email="pending@example.com", stamps=0, pending_reward=True)

    async with session_factory() as session:
        service = RewardLedgerService(session)
        with pytest.raises(RewardAlreadyPendingError):
            await service.mutate(user.id, lambda state: apply_stamps(state, 1), source="staff_terminal")
        await session.rollback()

    ledger = await fetch_ledger(session_factory, user.id)
    assert ledger.version == 1
    assert ledger.pending_reward is True
    assert await fetch_transactions(session_factory, user.id) == []
    assert get_rewards_store().snapshot().rejections == {"reward_already_pending": 1}


@pytest.mark.asyncio
async def test_lost_race_is_retried_against_fresh_state(session_factory):
    user = await create_user(session_factory, email="race@example.com", stamps=0, pending_reward=True)

    async with session_factory() as session:
        service = RacingLedgerService(session, races=2, max_retries=3)
        mutation = await service.mutate(user.id, redeem, source="staff_terminal")
        await session.commit()

    assert mutation.ledger.state() == LedgerState(stamps=0, pending_reward=False)
    assert mutation.ledger.version == 4
    assert get_rewards_store().snapshot().ledger_conflicts == 2

    transactions = await fetch_transactions(session_factory, user.id)
    assert [entry.type for entry in transactions] == [RewardTransactionType.REWARD_REDEEMED]


@pytest.mark.asyncio
async def test_persistent_conflict_raises(session_factory):
    user = await create_user(session_factory, email="contended@example.com", stamps=3)

    async with session_factory() as session:
        service = RacingLedgerService(session, races=5, max_retries=2)
        with pytest.raises(LedgerConflictError) as excinfo:
            await service.mutate(user.id, lambda state: apply_stamps(state, 1), source="order")
        await session.rollback()

    assert excinfo.value.attempts == 2
    assert excinfo.value.code == "ledger_conflict"
    ledger = await fetch_ledger(session_factory, user.id)
    assert ledger.stamps == 3


@pytest.mark.asyncio
async def test_snapshot_reports_progress_and_qr_payload(session_factory):
    user = await create_user(session_factory, email="snap@example.com", stamps=7)

    async with session_factory() as session:
        service = RewardLedgerService(session)
        snapshot = service.snapshot(await service.get_or_create(user.id))

    assert snapshot.stamps == 7
    assert snapshot.stamps_to_next_reward == 3
    assert snapshot.threshold == 10
    assert snapshot.qr_payload == f"cloudcafe:{user.id}"
