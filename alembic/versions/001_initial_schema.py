"""Initial schema: users, plans, memberships.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("email_verified", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("password_hash", sa.String(128), nullable=False),
        sa.Column("first_name", sa.String(64), nullable=False),
        sa.Column("last_name", sa.String(64), nullable=False),
        sa.Column("stripe_customer_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("stripe_customer_id"),
    )

    # --- plans ---
    op.create_table(
        "plans",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("cycle_frequency", sa.String(16), nullable=False),
        sa.Column("per_cycle_cost", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("price_id", sa.String(64), nullable=True),
        sa.Column("unit_amount", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("per_cycle_cost > 0", name="ck_plans_per_cycle_cost_positive"),
        sa.CheckConstraint(
            "cycle_frequency IN ('weekly', 'monthly', 'yearly')",
            name="ck_plans_cycle_frequency",
        ),
    )

    # --- memberships ---
    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("plan_id", sa.String(64), sa.ForeignKey("plans.id", ondelete="CASCADE"), nullable=False),
        sa.Column("quantity", sa.Integer(), server_default="0", nullable=False),
        sa.Column("is_owner", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("status", sa.String(32), server_default="not_joined", nullable=False),
        sa.Column("pending_quantity", sa.Integer(), nullable=True),
        sa.Column("subscription_id", sa.String(64), nullable=True),
        sa.Column("subscription_item_id", sa.String(64), nullable=True),
        sa.Column("setup_intent_id", sa.String(64), nullable=True),
        sa.Column("price_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "plan_id", name="uq_memberships_user_plan"),
        sa.UniqueConstraint("subscription_id"),
        sa.UniqueConstraint("setup_intent_id"),
        sa.CheckConstraint("quantity >= 0", name="ck_memberships_quantity_non_negative"),
    )
    op.create_index(
        "uq_memberships_plan_owner",
        "memberships",
        ["plan_id"],
        unique=True,
        postgresql_where=sa.text("is_owner"),
        sqlite_where=sa.text("is_owner"),
    )


def downgrade() -> None:
    op.drop_index("uq_memberships_plan_owner", table_name="memberships")
    op.drop_table("memberships")
    op.drop_table("plans")
    op.drop_table("users")
