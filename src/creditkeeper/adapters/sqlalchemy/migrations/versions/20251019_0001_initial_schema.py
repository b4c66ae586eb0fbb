"""Initial schema: profiles, grants and session tokens.

Revision ID: 0001_initial
Revises:
Create Date: 2025-10-19 09:00:00
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

from creditkeeper.adapters.sqlalchemy.mappings import UTCDateTime

revision: str = "0001_initial"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "profile",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("credits_current", sa.Integer(), nullable=False),
        sa.Column("credits_max", sa.Integer(), nullable=False),
        sa.Column("onboarding_completed", sa.Boolean(), nullable=False),
        sa.Column("plan_id", sa.String(), nullable=True),
        sa.Column("period_end", UTCDateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_profile")),
    )
    op.create_table(
        "profile_grant",
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("profile_id", sa.String(), nullable=False),
        sa.Column("credit_delta", sa.Integer(), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("PERIOD", "TOP_UP", name="grant_kind", native_enum=False),
            nullable=False,
        ),
        sa.Column("product_id", sa.String(), nullable=True),
        sa.Column("granted_at", UTCDateTime(), nullable=False),
        sa.PrimaryKeyConstraint("transaction_id", name=op.f("pk_profile_grant")),
    )
    op.create_index("ix_profile_grant_profile_id", "profile_grant", ["profile_id"])
    op.create_table(
        "session_token",
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("issued_at", UTCDateTime(), nullable=False),
        sa.Column("expires_at", UTCDateTime(), nullable=True),
        sa.PrimaryKeyConstraint("token", name=op.f("pk_session_token")),
    )
    op.create_index(
        op.f("ix_session_token_user_id"), "session_token", ["user_id"], unique=False
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_session_token_user_id"), table_name="session_token")
    op.drop_table("session_token")
    op.drop_index("ix_profile_grant_profile_id", table_name="profile_grant")
    op.drop_table("profile_grant")
    op.drop_table("profile")
