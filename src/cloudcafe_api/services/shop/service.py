"""Shop-wide switches such as busy mode."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcafe_api.core.settings import settings
from cloudcafe_api.models.shop_config import ShopConfig
from cloudcafe_api.models.user import User

BUSY_MODE_KEY = "busy_mode"


@dataclass(frozen=True)
class ShopStatus:
    busy_mode: bool
    collection_minutes: int


class ShopService:
    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def is_busy(self) -> bool:
        row = await self._db.get(ShopConfig, BUSY_MODE_KEY)
        if row is None or row.value is None:
            return False
        return bool(row.value)

    async def status(self) -> ShopStatus:
        busy = await self.is_busy()
        minutes = settings.collection_minutes_busy if busy else settings.collection_minutes_normal
        return ShopStatus(busy_mode=busy, collection_minutes=minutes)

    async def set_busy_mode(self, enabled: bool, *, staff: User | None = None) -> ShopStatus:
        row = await self._db.get(ShopConfig, BUSY_MODE_KEY)
        if row is None:
            row = ShopConfig(key=BUSY_MODE_KEY, value=enabled)
            self._db.add(row)
        else:
            row.value = enabled
        await self._db.commit()
        logger.info(
            "Busy mode updated",
            busy_mode=enabled,
            staff_id=str(staff.id) if staff else None,
        )
        return await self.status()


__all__ = ["BUSY_MODE_KEY", "ShopService", "ShopStatus"]
