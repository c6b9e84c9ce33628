from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID

from core.config import settings
from core.database import get_db
from core.exceptions import AuthenticationException, AuthorizationException
from models.user import User


async def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the caller from the identity header set by the upstream auth gateway.
    """
    if not x_user_id:
        raise AuthenticationException(message="Missing user identity")
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise AuthenticationException(message="Invalid user identity")

    user = await db.get(User, user_id)
    if not user:
        raise AuthenticationException(message="Invalid user identity")
    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    """Get current active user"""
    if not current_user.is_active:
        raise AuthorizationException(message="Inactive user")
    return current_user


async def require_admin(current_user: User = Depends(get_current_active_user)) -> User:
    """Require admin role"""
    if current_user.role != "Admin":
        raise AuthorizationException(message="Admin access required")
    return current_user


def get_client_ip(request: Request) -> Optional[str]:
    """
    The socket peer, unless it is a trusted proxy: then the nearest
    X-Forwarded-For hop that is not itself a trusted proxy.
    """
    peer = request.client.host if request.client else None
    if peer is None or peer not in settings.TRUSTED_PROXIES:
        return peer

    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded:
        return peer
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in settings.TRUSTED_PROXIES:
            return hop
    return hops[0] if hops else peer
