"""
FastAPI dependencies for the two ways callers authenticate.

Inference API (get_api_key):
  1. Extract Bearer token from Authorization header
  2. Look up api_keys by exact key match, active only
  3. Return the ApiKey row (carries user_id)

Dashboard API (get_current_user):
  1. Read the identity provider's session JWT (cookie, or Bearer header)
  2. Verify signature with python-jose
  3. Load the local User row, creating it on first sight

Security:
  • Raw keys are NEVER logged
  • Missing vs. rejected credentials are distinct errors, both 401
"""

from __future__ import annotations

import logging

from fastapi import Depends, Header, Request
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.errors import AuthenticationInvalid, AuthenticationMissing, SessionRequired
from app.auth.keygen import looks_like_api_key
from app.core.config import settings
from app.core.database import get_db_session
from app.models.api_key import ApiKey
from app.models.user import User

logger = logging.getLogger(__name__)


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from 'Bearer <token>', or None if absent/malformed."""
    if not authorization:
        return None

    parts = authorization.split(" ", maxsplit=1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None

    token = parts[1].strip()
    return token or None


async def find_active_key(session: AsyncSession, raw_key: str) -> ApiKey | None:
    """Exact-match lookup of an active key. None if unknown or disabled."""
    if not looks_like_api_key(raw_key):
        return None

    stmt = select(ApiKey).where(
        ApiKey.key == raw_key,
        ApiKey.is_active.is_(True),
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_api_key(
    authorization: str | None = Header(default=None, alias="Authorization"),
    session: AsyncSession = Depends(get_db_session),
) -> ApiKey:
    """
    FastAPI dependency: resolves a Bearer nai_ key to its ApiKey row.

    Raises:
        AuthenticationMissing: header absent or not a Bearer credential.
        AuthenticationInvalid: unknown key, or key disabled.
    """
    raw_key = extract_bearer_token(authorization)
    if raw_key is None:
        raise AuthenticationMissing()

    api_key = await find_active_key(session, raw_key)
    if api_key is None:
        raise AuthenticationInvalid()

    return api_key


def decode_session_token(token: str) -> dict:
    """Verify an identity-provider session JWT and return its claims."""
    if not settings.SESSION_JWT_KEY:
        raise SessionRequired("Session verification is not configured")

    try:
        claims = jwt.decode(
            token,
            settings.SESSION_JWT_KEY,
            algorithms=[settings.SESSION_JWT_ALGORITHM],
            options={"verify_aud": False},
        )
    except JWTError as exc:
        raise SessionRequired() from exc

    if not claims.get("sub"):
        raise SessionRequired()
    return claims


async def get_current_user(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> User:
    """
    FastAPI dependency: the signed-in dashboard user.

    The User row is created on first request so key ownership has something
    to point at.
    """
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not token:
        token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        raise SessionRequired()

    claims = decode_session_token(token)
    user_id = str(claims["sub"])

    user = await session.get(User, user_id)
    if user is None:
        user = User(
            id=user_id,
            email=claims.get("email") or "",
            name=(claims.get("name") or "").strip() or None,
        )
        session.add(user)
        await session.commit()
        logger.info("Created local user record for %s", user_id)

    return user
