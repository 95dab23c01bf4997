"""Bearer authentication: resolve the caller named by an account-service token."""

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resumakr.auth.jwt import TokenRejected, verify_access_token
from resumakr.database import get_db
from resumakr.models.user import User

logger = logging.getLogger(__name__)

# Raises 403 on its own when the Authorization header is missing
_bearer_scheme = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """The user the bearer token's ``sub`` claim names.

    Raises:
        HTTPException 401: the token is rejected or names no local user.
    """
    try:
        claims = verify_access_token(credentials.credentials)
    except TokenRejected as e:
        logger.info("Rejected bearer token: %s", e.reason)
        raise _unauthorized(e.reason) from None

    result = await db.execute(select(User).where(User.id == claims.user_id))
    user = result.scalar_one_or_none()
    if user is None:
        logger.warning("Valid token for unknown user %s", claims.user_id)
        raise _unauthorized("Could not validate credentials")
    return user


async def get_current_active_user(
    user: User = Depends(get_current_user),
) -> User:
    """Deactivated accounts keep unexpired tokens; refuse them here with 403."""
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )
    return user
