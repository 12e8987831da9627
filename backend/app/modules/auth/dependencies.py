from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional

from app.core.database import get_db
from app.core.exceptions import AuthenticationError
from app.core.logging_config import set_user_id
from app.core.security import decode_token, security
from app.models.user import User


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get current authenticated user from the bearer token"""

    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Not authorized, no token")

    payload = decode_token(credentials.credentials)

    result = await db.execute(
        select(User).where(User.id == payload["sub"])
    )
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("Not authorized, user not found")

    set_user_id(user.id)
    request.state.user_id = user.id
    return user
