import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, false, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from account_lifecycle.db.base import Base

_OPEN_REQUEST_PREDICATE = text("is_restored = false AND purged_at IS NULL")


class AccountDeletionRequest(Base):
    """One row per initiated deletion.

    State machine: open -> restored, or open -> claimed -> purged. A failed
    sweep attempt drops the claim again. ``user_id`` intentionally has no
    foreign key so the row outlives the identity as an audit record.
    """

    __tablename__ = "account_deletion_requests"
    __table_args__ = (
        Index("ix_account_deletion_requests_sweep", "is_restored", "scheduled_for_deletion_at"),
        Index(
            "uq_account_deletion_requests_open_user",
            "user_id",
            unique=True,
            postgresql_where=_OPEN_REQUEST_PREDICATE,
            sqlite_where=_OPEN_REQUEST_PREDICATE,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    scheduled_for_deletion_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    restoration_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    is_restored: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)
    restored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claimed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    purged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
