from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from cloudcafe_api.db.base import Base


class UserRoleEnum(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"


STAFF_ROLES = frozenset({UserRoleEnum.STAFF.value, UserRoleEnum.ADMIN.value})


class User(Base):
    """Local mirror of an identity-provider account."""

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, nullable=False, unique=True, index=True)
    display_name = Column(String, nullable=True)
    role = Column(
        String(length=16),
        nullable=False,
        default=UserRoleEnum.CUSTOMER.value,
        server_default=UserRoleEnum.CUSTOMER.value,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
