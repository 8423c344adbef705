"""
API key model: bearer credential for the inference API.

Notes:
  • `key` is the full nai_ token. Lookup is an exact match on it, and the
    dashboard shows it back to its owner, so it is stored as issued.
  • `key` is unique and never rewritten after creation.
  • `is_active` gates every proxy call; disabling a key keeps its history.
  • `rate_limit` is recorded for display only (nothing enforces it).
"""

import uuid
import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.sql import func, true
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

DEFAULT_RATE_LIMIT = 100


class ApiKey(Base):
    """An API key owned by one user."""

    __tablename__ = "api_keys"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    key: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )
    rate_limit: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_RATE_LIMIT,
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.datetime.now(datetime.timezone.utc),
        server_default=func.now(),
    )
    last_used_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<ApiKey id={self.id!s:.8} name={self.name!r} "
            f"active={self.is_active}>"
        )
