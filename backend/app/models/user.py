"""
User model: local mirror of an identity-provider account.

The identity provider owns credentials and sessions. This row only exists so
API keys have an owner to hang off; it is created lazily the first time a
signed-in user hits the dashboard API.
"""

import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class User(Base):
    """One dashboard user, keyed by the identity provider's subject id."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(255), primary_key=True,
    )
    email: Mapped[str] = mapped_column(
        Text, nullable=False, default="",
    )
    name: Mapped[str | None] = mapped_column(
        Text, nullable=True,
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id!r} email={self.email!r}>"
