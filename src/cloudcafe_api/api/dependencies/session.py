"""Session-aware dependencies for member and staff APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcafe_api.api.errors import api_error
from cloudcafe_api.db.session import get_session
from cloudcafe_api.models.user import User


async def _load_session_user(session_user: str, db: AsyncSession) -> User:
    try:
        user_id = UUID(session_user)
    except ValueError as error:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "invalid_session_user",
            "Invalid session user identifier",
        ) from error

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise api_error(
            status.HTTP_401_UNAUTHORIZED,
            "unknown_session_user",
            "Session user not found",
        )
    return user


async def optional_member_session(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> User | None:
    """Resolve the forwarded user when present; anonymous callers get ``None``."""

    if not session_user:
        return None
    return await _load_session_user(session_user, db)


async def require_member_session(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the authenticated user from forwarded session headers."""

    if not session_user:
        raise api_error(
            status.HTTP_401_UNAUTHORIZED,
            "not_authenticated",
            "Missing session user context",
        )
    return await _load_session_user(session_user, db)


async def require_staff_session(user: User = Depends(require_member_session)) -> User:
    if not user.is_staff:
        raise api_error(
            status.HTTP_403_FORBIDDEN,
            "staff_only",
            "Staff access required",
        )
    return user


__all__ = ["optional_member_session", "require_member_session", "require_staff_session"]
