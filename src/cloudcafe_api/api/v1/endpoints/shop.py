from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcafe_api.db.session import get_session
from cloudcafe_api.services.shop import ShopService, ShopStatus


router = APIRouter(prefix="/shop", tags=["shop"])


class ShopStatusResponse(BaseModel):
    busyMode: bool
    collectionMinutes: int


def serialize_shop_status(status: ShopStatus) -> ShopStatusResponse:
    return ShopStatusResponse(busyMode=status.busy_mode, collectionMinutes=status.collection_minutes)


@router.get("/status", response_model=ShopStatusResponse)
async def get_shop_status(db: AsyncSession = Depends(get_session)) -> ShopStatusResponse:
    return serialize_shop_status(await ShopService(db).status())
