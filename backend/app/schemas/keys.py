"""
Pydantic v2 schemas for the key-management API.

Wire format is camelCase (the dashboard's convention); Python attributes stay
snake_case. from_attributes=True lets ApiKey ORM rows validate directly.
"""

from __future__ import annotations

import datetime
import uuid

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.api_key import DEFAULT_RATE_LIMIT


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ── Requests ────────────────────────────────────────────────
class ApiKeyCreate(_CamelModel):
    """
    Payload accepted by POST /api/keys.

    `name` is optional at the schema level so a missing name gets the
    dashboard's own 400 message instead of a 422.
    """

    name: str | None = Field(default=None, max_length=100)
    rate_limit: int = Field(default=DEFAULT_RATE_LIMIT, ge=0)


class ApiKeyUpdate(_CamelModel):
    """PATCH body. Only supplied fields change; `key` is never writable."""

    is_active: bool | None = None
    name: str | None = Field(default=None, min_length=1, max_length=100)
    rate_limit: int | None = Field(default=None, ge=0)


# ── Responses ───────────────────────────────────────────────
class ApiKeyOut(_CamelModel):
    id: uuid.UUID
    name: str
    key: str
    is_active: bool
    rate_limit: int
    created_at: datetime.datetime
    last_used_at: datetime.datetime | None


class ApiKeyCreatedOut(_CamelModel):
    id: uuid.UUID
    name: str
    key: str
    rate_limit: int


class ApiKeyListOut(_CamelModel):
    api_keys: list[ApiKeyOut]


class ApiKeyCreatedResponse(_CamelModel):
    message: str = "API key created successfully"
    api_key: ApiKeyCreatedOut


class ApiKeyUpdatedResponse(_CamelModel):
    message: str = "API key updated successfully"
    api_key: ApiKeyOut


class MessageOut(_CamelModel):
    message: str
