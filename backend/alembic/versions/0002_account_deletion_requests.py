"""account deletion requests

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-01
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None

_OPEN_REQUEST = sa.text("is_restored = false AND purged_at IS NULL")


def upgrade() -> None:
    op.create_table(
        "account_deletion_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("scheduled_for_deletion_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("restoration_token", sa.String(length=128), nullable=False),
        sa.Column("is_restored", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("restored_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_by", sa.String(length=64), nullable=True),
        sa.Column("purged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
    )
    op.create_index("ix_account_deletion_requests_user_id", "account_deletion_requests", ["user_id"])
    op.create_index(
        "ix_account_deletion_requests_restoration_token",
        "account_deletion_requests",
        ["restoration_token"],
        unique=True,
    )
    op.create_index(
        "ix_account_deletion_requests_sweep",
        "account_deletion_requests",
        ["is_restored", "scheduled_for_deletion_at"],
    )
    op.create_index(
        "uq_account_deletion_requests_open_user",
        "account_deletion_requests",
        ["user_id"],
        unique=True,
        postgresql_where=_OPEN_REQUEST,
        sqlite_where=_OPEN_REQUEST,
    )


def downgrade() -> None:
    op.drop_index("uq_account_deletion_requests_open_user", table_name="account_deletion_requests")
    op.drop_index("ix_account_deletion_requests_sweep", table_name="account_deletion_requests")
    op.drop_index("ix_account_deletion_requests_restoration_token", table_name="account_deletion_requests")
    op.drop_index("ix_account_deletion_requests_user_id", table_name="account_deletion_requests")
    op.drop_table("account_deletion_requests")
