from .service import BUSY_MODE_KEY, ShopService, ShopStatus

__all__ = ["BUSY_MODE_KEY", "ShopService", "ShopStatus"]
