"""initial ledger schema

Revision ID: 202601150900
Revises:
Create Date: 2026-01-15 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601150900"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPE = sa.Enum("income", "expense", name="transactiontype")
BUDGET_PERIOD = sa.Enum("monthly", "weekly", name="budgetperiod")
FREQUENCY = sa.Enum("daily", "weekly", "biweekly", "monthly", name="frequency")


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=80), nullable=False, unique=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("icon", sa.String(length=16), nullable=False),
        sa.Column("color", sa.String(length=7), nullable=False),
        sa.UniqueConstraint("type", "name", name="uq_category_type_name"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("description", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_user_created", "transactions", ["user_id", "created_at"]
    )
    op.create_index(
        "ix_transactions_user_category_type",
        "transactions",
        ["user_id", "category_id", "type", "created_at"],
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("limit_cents", sa.Integer(), nullable=False),
        sa.Column("period", BUDGET_PERIOD, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "category_id", name="uq_budget_user_category"),
        sa.CheckConstraint("limit_cents > 0", name="ck_budget_limit_positive"),
    )

    op.create_table(
        "savings_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("target_cents", sa.Integer(), nullable=False),
        sa.Column("current_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deadline", sa.DateTime(), nullable=False),
        sa.Column("frequency", FREQUENCY, nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "is_money_used", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("target_cents > 0", name="ck_goal_target_positive"),
        sa.CheckConstraint(
            "current_cents >= 0 AND current_cents <= target_cents",
            name="ck_goal_current_bounded",
        ),
    )
    op.create_index(
        "ix_savings_goals_user_deleted", "savings_goals", ["user_id", "is_deleted"]
    )

    op.create_table(
        "lifetime_savings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "total_saved_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("goals_completed", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "recurring_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("type", TRANSACTION_TYPE, nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("frequency", FREQUENCY, nullable=False),
        sa.Column("next_run", sa.Date(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_recurring_amount_positive"),
    )
    op.create_index(
        "ix_recurring_active_next_run",
        "recurring_transactions",
        ["active", "next_run"],
    )


def downgrade():
    op.drop_index("ix_recurring_active_next_run", table_name="recurring_transactions")
    op.drop_table("recurring_transactions")
    op.drop_table("lifetime_savings")
    op.drop_index("ix_savings_goals_user_deleted", table_name="savings_goals")
    op.drop_table("savings_goals")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_user_category_type", table_name="transactions")
    op.drop_index("ix_transactions_user_created", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
    op.drop_table("users")
