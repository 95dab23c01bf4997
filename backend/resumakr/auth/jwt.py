"""Verification of access tokens minted by the account service.

This service never hands tokens to clients. The account service signs
short-lived access tokens with the shared ``JWT_SECRET_KEY``; here the
signature, expiry and ``type`` claim are checked and ``sub`` becomes a user
id. ``sign_access_token`` mints the same token shape for tests and operator
scripts.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from resumakr.config import settings

ACCESS_TOKEN_TYPE = "access"

_DECODE_OPTIONS = {"require_exp": True, "require_sub": True}


class TokenRejected(Exception):
    """The bearer token does not identify a caller. ``reason`` is safe to return."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class AccessClaims:
    user_id: uuid.UUID
    expires_at: datetime


def verify_access_token(token: str) -> AccessClaims:
    """Check an account-service access token and return who it names.

    Raises:
        TokenRejected: bad signature, expired, not an access token, or a
            ``sub`` that is not a user UUID.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options=_DECODE_OPTIONS,
        )
    except ExpiredSignatureError:
        raise TokenRejected("Token has expired") from None
    except JWTError:
        raise TokenRejected("Could not validate credentials") from None

    # Refresh tokens share the signing key but never authorize a request
    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise TokenRejected("Invalid token type")

    try:
        user_id = uuid.UUID(payload["sub"])
    except ValueError:
        raise TokenRejected("Could not validate credentials") from None

    return AccessClaims(
        user_id=user_id,
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


def sign_access_token(
    user_id: uuid.UUID | str,
    expires_in: timedelta | None = None,
    token_type: str = ACCESS_TOKEN_TYPE,
) -> str:
    """Mint a token the way the account service does."""
    now = datetime.now(timezone.utc)
    ttl = expires_in if expires_in is not None else timedelta(minutes=settings.jwt_access_token_expire_minutes)
    claims = {"sub": str(user_id), "type": token_type, "iat": now, "exp": now + ttl}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
