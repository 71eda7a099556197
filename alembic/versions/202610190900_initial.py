"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None

budget_mode = sa.Enum("simple", "categorized", name="budgetmode")
user_role = sa.Enum("user", "admin", name="userrole")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("identity", sa.String(length=120), nullable=False, unique=True),
        sa.Column("name", sa.String(length=120)),
        sa.Column("monthly_budget", sa.Integer(), nullable=False),
        sa.Column("budget_mode", budget_mode, nullable=False),
        sa.Column("role", user_role, nullable=False),
        *_timestamps(),
        sa.CheckConstraint("monthly_budget >= 0", name="ck_users_budget_positive"),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("allocation", sa.Float(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint(
            "allocation >= 0 AND allocation <= 100",
            name="ck_categories_allocation_range",
        ),
    )
    op.create_index("ix_categories_user", "categories", ["user_id"])

    op.create_table(
        "monthly_histories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("total_budget", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_rollover", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("budget_mode", budget_mode, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_history_user_month"),
    )

    op.create_table(
        "weeks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "monthly_history_id",
            sa.Integer(),
            sa.ForeignKey("monthly_histories.id"),
            nullable=False,
        ),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("weekly_budget", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("spent_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rollover_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint(
            "monthly_history_id", "week_number", name="uq_week_history_number"
        ),
    )
    op.create_index(
        "ix_weeks_user_dates", "weeks", ["user_id", "start_date", "end_date"]
    )

    op.create_table(
        "week_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("week_id", sa.Integer(), sa.ForeignKey("weeks.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("allocated_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("spent_amount", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("week_id", "category_id", name="uq_week_category"),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("week_id", sa.Integer(), sa.ForeignKey("weeks.id"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])
    op.create_index(
        "ix_expenses_week_category", "expenses", ["week_id", "category_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_expenses_week_category", table_name="expenses")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("week_categories")
    op.drop_index("ix_weeks_user_dates", table_name="weeks")
    op.drop_table("weeks")
    op.drop_table("monthly_histories")
    op.drop_index("ix_categories_user", table_name="categories")
    op.drop_table("categories")
    op.drop_table("users")
    budget_mode.drop(op.get_bind(), checkfirst=True)
    user_role.drop(op.get_bind(), checkfirst=True)
