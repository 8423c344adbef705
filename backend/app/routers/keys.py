"""
Key-management router: CRUD on the signed-in user's API keys.

Authenticated by the identity provider's session (get_current_user), not by
an API key. Every lookup is scoped to the caller: another user's key id is
indistinguishable from a missing one (404).

GET    /api/keys
POST   /api/keys
PATCH  /api/keys/{key_id}
DELETE /api/keys/{key_id}
"""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.keygen import generate_api_key
from app.core.database import get_db_session, transaction
from app.core.errors import NotFound, ValidationFailed
from app.models.api_key import ApiKey
from app.models.usage import UsageEvent
from app.models.user import User
from app.schemas.keys import (
    ApiKeyCreate,
    ApiKeyCreatedOut,
    ApiKeyCreatedResponse,
    ApiKeyListOut,
    ApiKeyOut,
    ApiKeyUpdate,
    ApiKeyUpdatedResponse,
    MessageOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["API Keys"])

DbSession = Annotated[AsyncSession, Depends(get_db_session)]
CurrentUser = Annotated[User, Depends(get_current_user)]


class KeyNotFound(NotFound):
    error = "API key not found"


class MissingKeyName(ValidationFailed):
    error = "API key name required"


async def _owned_key(session: AsyncSession, key_id: uuid.UUID, user: User) -> ApiKey:
    stmt = select(ApiKey).where(ApiKey.id == key_id, ApiKey.user_id == user.id)
    api_key = (await session.execute(stmt)).scalar_one_or_none()
    if api_key is None:
        raise KeyNotFound()
    return api_key


@router.get(
    "",
    response_model=ApiKeyListOut,
    summary="List the caller's API keys",
)
async def list_keys(session: DbSession, user: CurrentUser) -> ApiKeyListOut:
    stmt = (
        select(ApiKey)
        .where(ApiKey.user_id == user.id)
        .order_by(ApiKey.created_at.desc())
    )
    keys = (await session.execute(stmt)).scalars().all()
    return ApiKeyListOut(api_keys=[ApiKeyOut.model_validate(k) for k in keys])


@router.post(
    "",
    response_model=ApiKeyCreatedResponse,
    summary="Create an API key",
)
async def create_key(
    payload: ApiKeyCreate,
    session: DbSession,
    user: CurrentUser,
) -> ApiKeyCreatedResponse:
    name = (payload.name or "").strip()
    if not name:
        raise MissingKeyName()

    api_key = ApiKey(
        key=generate_api_key(),
        name=name,
        user_id=user.id,
        rate_limit=payload.rate_limit,
    )
    async with transaction(session):
        session.add(api_key)

    logger.info("User %s created API key %s", user.id, str(api_key.id)[:8])
    return ApiKeyCreatedResponse(api_key=ApiKeyCreatedOut.model_validate(api_key))


@router.patch(
    "/{key_id}",
    response_model=ApiKeyUpdatedResponse,
    summary="Enable/disable or rename an API key",
)
async def update_key(
    key_id: uuid.UUID,
    payload: ApiKeyUpdate,
    session: DbSession,
    user: CurrentUser,
) -> ApiKeyUpdatedResponse:
    api_key = await _owned_key(session, key_id, user)

    async with transaction(session):
        for field, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
            setattr(api_key, field, value)

    return ApiKeyUpdatedResponse(api_key=ApiKeyOut.model_validate(api_key))


@router.delete(
    "/{key_id}",
    response_model=MessageOut,
    summary="Delete an API key and its usage history",
)
async def delete_key(
    key_id: uuid.UUID,
    session: DbSession,
    user: CurrentUser,
) -> MessageOut:
    api_key = await _owned_key(session, key_id, user)

    # Usage rows first: SQLite leaves FK cascades off by default.
    async with transaction(session):
        await session.execute(delete(UsageEvent).where(UsageEvent.api_key_id == api_key.id))
        await session.delete(api_key)

    logger.info("User %s deleted API key %s", user.id, str(key_id)[:8])
    return MessageOut(message="API key deleted successfully")
