"""Member stamp-card endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcafe_api.api.dependencies.session import require_member_session
from cloudcafe_api.db.session import get_session
from cloudcafe_api.models.rewards import RewardTransaction
from cloudcafe_api.models.user import User
from cloudcafe_api.services.rewards import RewardLedgerService, RewardSnapshot


router = APIRouter(prefix="/rewards", tags=["rewards"])


class RewardCardResponse(BaseModel):
    userId: UUID
    stamps: int
    pendingReward: bool
    threshold: int
    stampsToNextReward: int
    qrPayload: str
    updatedAt: Optional[datetime]


class RewardTransactionResponse(BaseModel):
    id: UUID
    type: str
    amount: int
    orderId: Optional[UUID]
    adminId: Optional[UUID]
    createdAt: Optional[datetime]


def serialize_snapshot(snapshot: RewardSnapshot) -> RewardCardResponse:
    return RewardCardResponse(
        userId=snapshot.user_id,
        stamps=snapshot.stamps,
        pendingReward=snapshot.pending_reward,
        threshold=snapshot.threshold,
        stampsToNextReward=snapshot.stamps_to_next_reward,
        qrPayload=snapshot.qr_payload,
        updatedAt=snapshot.updated_at,
    )


def serialize_transaction(entry: RewardTransaction) -> RewardTransactionResponse:
    return RewardTransactionResponse(
        id=entry.id,
        type=entry.type.value,
        amount=entry.amount,
        orderId=entry.order_id,
        adminId=entry.admin_id,
        createdAt=entry.created_at,
    )


@router.get("/me", response_model=RewardCardResponse)
async def get_my_reward_card(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> RewardCardResponse:
    """Return the member's stamp card, creating an empty one on first visit."""

    service = RewardLedgerService(db)
    ledger = await service.get_or_create(user.id)
    await db.commit()
    return serialize_snapshot(service.snapshot(ledger))


@router.get("/me/transactions", response_model=List[RewardTransactionResponse])
async def list_my_reward_transactions(
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> List[RewardTransactionResponse]:
    entries = await RewardLedgerService(db).list_transactions(user.id, limit=limit)
    return [serialize_transaction(entry) for entry in entries]
