from sqlalchemy import JSON, Column, DateTime, String, func

from cloudcafe_api.db.base import Base


class ShopConfig(Base):
    """Key/value switches shared by every till and client."""

    __tablename__ = "shop_config"

    key = Column(String(64), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
