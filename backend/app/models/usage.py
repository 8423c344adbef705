"""
SQLAlchemy model for the `usage_events` table.

Each row is the outcome of one proxied inference call that got past key
validation, successful or not. The table is append-only: rows are never
updated, and only disappear when their API key is deleted.

Design notes:
  • One ledger for everything. The richer request attributes (error_type,
    user_agent, ip_address) are optional columns rather than a second table.
  • Indexes on (api_key_id, timestamp) back the dashboard's per-user,
    per-range reads.
"""

import datetime
import uuid

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


class UsageEvent(Base):
    """One proxied API call with its latency and token count."""

    __tablename__ = "usage_events"

    # ── Primary key ─────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── Owner ───────────────────────────────────────────────
    api_key_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("api_keys.id", ondelete="CASCADE"),
        nullable=False,
    )

    # ── Timestamp ───────────────────────────────────────────
    timestamp: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.datetime.now(datetime.timezone.utc),
        server_default=func.now(),
    )

    # ── Call outcome ────────────────────────────────────────
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False, default="POST")
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False, default=200)
    response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # ── Optional request detail ─────────────────────────────
    error_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # ── Table-level constraints ─────────────────────────────
    __table_args__ = (
        CheckConstraint("tokens >= 0", name="ck_tokens_non_neg"),
        CheckConstraint("response_time_ms >= 0", name="ck_response_time_non_neg"),
        CheckConstraint(
            "status IN ('success', 'error')",
            name="ck_status_valid",
        ),
        Index("ix_usage_events_api_key_id_timestamp", "api_key_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageEvent id={self.id!s:.8} endpoint={self.endpoint} "
            f"status={self.status} ms={self.response_time_ms}>"
        )
