"""Process-local counters for rewards and payments."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from cloudcafe_api.api.dependencies.session import require_staff_session
from cloudcafe_api.observability.payments import get_payment_store
from cloudcafe_api.observability.rewards import get_rewards_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get("", dependencies=[Depends(require_staff_session)], summary="Rewards and payments snapshot")
async def get_observability_snapshot() -> dict[str, object]:
    return {
        "rewards": get_rewards_store().snapshot().as_dict(),
        "payments": get_payment_store().snapshot().as_dict(),
    }
