"""Initial schema — users, votes and matches.

Revision ID: 001_initial
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. users ────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("email", sa.String(254), nullable=False),
        sa.Column("password_hash", sa.String, nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("date_of_birth", sa.Date, nullable=True),
        sa.Column("age", sa.Integer, nullable=True),
        sa.Column("profile_picture", sa.String, nullable=True),
        sa.Column("bio", sa.Text, nullable=True),
        sa.Column("location", sa.String, nullable=True),
        sa.Column(
            "photos",
            sa.JSON().with_variant(postgresql.JSONB, "postgresql"),
            nullable=True,
            comment="Array of photo URLs",
        ),
        sa.Column(
            "is_active",
            sa.Boolean,
            server_default=sa.true(),
            nullable=False,
        ),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # ── 2. votes ────────────────────────────────────────────────────
    op.create_table(
        "votes",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "viewer_id",
            sa.Uuid,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "viewed_user_id",
            sa.Uuid,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "choice",
            sa.String(16),
            nullable=False,
            comment="date / friends / reject",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("viewer_id", "viewed_user_id", name="uq_vote_pair"),
        sa.CheckConstraint(
            "choice IN ('date', 'friends', 'reject')", name="ck_vote_choice"
        ),
        sa.CheckConstraint("viewer_id <> viewed_user_id", name="ck_vote_no_self"),
    )
    op.create_index(
        "ix_votes_viewed_user_choice", "votes", ["viewed_user_id", "choice"]
    )

    # ── 3. matches ──────────────────────────────────────────────────
    op.create_table(
        "matches",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "user_a_id",
            sa.Uuid,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_b_id",
            sa.Uuid,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_low_id", sa.Uuid, nullable=False),
        sa.Column("user_high_id", sa.Uuid, nullable=False),
        sa.Column(
            "match_type",
            sa.String(16),
            nullable=False,
            comment="date / friends",
        ),
        sa.Column(
            "status",
            sa.String(16),
            server_default="active",
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("user_a_id <> user_b_id", name="ck_match_no_self"),
        sa.CheckConstraint(
            "match_type IN ('date', 'friends')", name="ck_match_type"
        ),
        sa.CheckConstraint(
            "status IN ('active', 'expired')", name="ck_match_status"
        ),
    )
    op.create_index(
        "uq_match_active_pair",
        "matches",
        ["user_low_id", "user_high_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )
    op.create_index("ix_matches_user_a_status", "matches", ["user_a_id", "status"])
    op.create_index("ix_matches_user_b_status", "matches", ["user_b_id", "status"])


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_index("ix_matches_user_b_status", table_name="matches")
    op.drop_index("ix_matches_user_a_status", table_name="matches")
    op.drop_index("uq_match_active_pair", table_name="matches")
    op.drop_table("matches")

    op.drop_index("ix_votes_viewed_user_choice", table_name="votes")
    op.drop_table("votes")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
