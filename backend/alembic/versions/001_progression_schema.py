"""Progression engine schema

Revision ID: 001_progression
Revises:
Create Date: 2026-10-19

Creates the following tables:
- user_progress: Per-user daily mastery counter and credited days
- streak_ledgers: Per-user current/longest streak
- freeze_states: Per-user set of stacks with overdue tests
- stack_mastery: Per-stack mastery and test lifecycle
- card_ratings: Per-card 1-5 rating and daily contribution
- stack_tests: Mastery test record per stack

Every mutable table carries a `version` column used for optimistic
concurrency control.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001_progression"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create user_progress table
    op.create_table(
        "user_progress",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column(
            "cards_mastered_today", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("last_mastery_date", sa.Date(), nullable=True),
        sa.Column(
            "streak_awarded_today",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("last_credited_date", sa.Date(), nullable=True),
        sa.Column("previous_credited_date", sa.Date(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("user_id"),
        sa.CheckConstraint(
            "cards_mastered_today >= 0", name="ck_user_progress_counter_non_negative"
        ),
    )

    # Create streak_ledgers table
    op.create_table(
        "streak_ledgers",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("user_id"),
        sa.CheckConstraint(
            "longest_streak >= current_streak", name="ck_streak_longest_ge_current"
        ),
    )

    # Create freeze_states table
    op.create_table(
        "freeze_states",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column(
            "frozen_stack_ids",
            postgresql.JSON(astext_type=sa.Text()),
            nullable=False,
            server_default="[]",
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("user_id"),
    )

    # Create stack_mastery table
    op.create_table(
        "stack_mastery",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(500), nullable=True),
        sa.Column(
            "status", sa.String(20), nullable=False, server_default="in_progress"
        ),
        sa.Column("mastered_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cards", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("mastery_reached_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("test_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_test_score", sa.Float(), nullable=True),
        sa.Column("completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stack_mastery_user_id", "stack_mastery", ["user_id"])
    op.create_index("ix_stack_mastery_test_deadline", "stack_mastery", ["test_deadline"])

    # Create card_ratings table
    op.create_table(
        "card_ratings",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("stack_id", sa.String(64), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("contributed_on", sa.Date(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["stack_id"], ["stack_mastery.id"], ondelete="CASCADE"
        ),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_card_ratings_rating"),
    )
    op.create_index("ix_card_ratings_stack_id", "card_ratings", ["stack_id"])

    # Create stack_tests table
    op.create_table(
        "stack_tests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("stack_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "can_unfreeze_streak",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_score", sa.Float(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["stack_id"], ["stack_mastery.id"], ondelete="CASCADE"
        ),
        sa.UniqueConstraint("stack_id", name="uq_stack_tests_stack_id"),
    )
    op.create_index("ix_stack_tests_user_id", "stack_tests", ["user_id"])


def downgrade() -> None:
    op.drop_table("stack_tests")
    op.drop_table("card_ratings")
    op.drop_table("stack_mastery")
    op.drop_table("freeze_states")
    op.drop_table("streak_ledgers")
    op.drop_table("user_progress")
