"""Session-aware dependencies resolving the calling user from forwarded headers."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dealclaim_api.db.session import get_session
from dealclaim_api.models.user import User, UserRoleEnum
from dealclaim_api.models.vendor import Vendor


async def require_member_session(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the authenticated user from forwarded session headers."""

    if not session_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )

    try:
        user_id = UUID(session_user)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session user identifier",
        ) from error

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session user not found",
        )

    return user


async def require_vendor_session(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> Vendor:
    """The calling user's vendor profile; 403 for non-vendors."""

    vendor = None
    if user.role == UserRoleEnum.VENDOR.value:
        vendor = await db.get(Vendor, user.id)
    if vendor is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Vendor access required",
        )
    return vendor


async def require_admin_session(user: User = Depends(require_member_session)) -> User:
    if user.role != UserRoleEnum.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
