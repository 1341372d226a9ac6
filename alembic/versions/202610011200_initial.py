"""initial finance schema

Revision ID: 202610011200
Revises:
Create Date: 2026-10-01 12:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610011200"
down_revision = None
branch_labels = None
depends_on = None


CATEGORY_VALUES = (
    "FOOD_DINING",
    "TRANSPORTATION",
    "SHOPPING",
    "ENTERTAINMENT",
    "BILLS_UTILITIES",
    "HEALTHCARE",
    "TRAVEL",
    "EDUCATION",
    "BUSINESS",
    "PERSONAL_CARE",
    "GIFTS_DONATIONS",
    "INVESTMENTS",
    "SALARY",
    "FREELANCE",
    "BUSINESS_INCOME",
    "RENTAL_INCOME",
    "DIVIDEND_INCOME",
    "OTHER_INCOME",
    "OTHER_EXPENSE",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _owner() -> sa.Column:
    return sa.Column(
        "user_id",
        sa.Integer(),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(length=100)),
        sa.Column("last_name", sa.String(length=100)),
        sa.Column("google_id", sa.String(length=255), unique=True),
        sa.Column("avatar_url", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "CHECKING",
                "SAVINGS",
                "CREDIT_CARD",
                "INVESTMENT",
                "LOAN",
                "OTHER",
                name="accounttype",
            ),
            nullable=False,
        ),
        sa.Column(
            "opening_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user_id", "accounts", ["user_id"])
    op.create_index("ix_accounts_user_active", "accounts", ["user_id", "is_active"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "type",
            sa.Enum("INCOME", "EXPENSE", "TRANSFER", name="transactiontype"),
            nullable=False,
        ),
        sa.Column(
            "category",
            sa.Enum(*CATEGORY_VALUES, name="transactioncategory"),
            nullable=False,
        ),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_type_date", "transactions", ["user_id", "type", "date"]
    )
    op.create_index("ix_transactions_account", "transactions", ["account_id"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "category",
            sa.Enum(*CATEGORY_VALUES, name="transactioncategory"),
            nullable=False,
        ),
        sa.Column("limit_cents", sa.Integer(), nullable=False),
        sa.Column(
            "period",
            sa.Enum("WEEKLY", "MONTHLY", "QUARTERLY", "YEARLY", name="budgetperiod"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("limit_cents >= 0", name="ck_budget_limit_non_negative"),
    )
    op.create_index("ix_budgets_user_id", "budgets", ["user_id"])
    op.create_index(
        "ix_budgets_user_dates", "budgets", ["user_id", "start_date", "end_date"]
    )

    op.create_table(
        "investments",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("quantity", sa.Numeric(18, 8), nullable=False),
        sa.Column("purchase_price_cents", sa.Integer(), nullable=False),
        sa.Column("current_price_cents", sa.Integer(), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "STOCK",
                "ETF",
                "MUTUAL_FUND",
                "BOND",
                "CRYPTO",
                "REAL_ESTATE",
                "COMMODITY",
                "OTHER",
                name="investmenttype",
            ),
            nullable=False,
        ),
        sa.Column("purchase_date", sa.Date(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_investments_user_id", "investments", ["user_id"])

    op.create_table(
        "alerts",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "BUDGET_LIMIT",
                "UNUSUAL_SPENDING",
                "INVESTMENT_CHANGE",
                "BILL_REMINDER",
                "GOAL_ACHIEVEMENT",
                "MARKET_OPPORTUNITY",
                name="alerttype",
            ),
            nullable=False,
        ),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("trigger_at", sa.DateTime()),
        *_timestamps(),
    )
    op.create_index("ix_alerts_user_id", "alerts", ["user_id"])

    op.create_table(
        "ai_insights",
        sa.Column("id", sa.Integer(), primary_key=True),
        _owner(),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "SPENDING_PATTERN",
                "BUDGET_RECOMMENDATION",
                "INVESTMENT_ADVICE",
                "SAVING_OPPORTUNITY",
                "RISK_ASSESSMENT",
                "MARKET_ANALYSIS",
                name="insighttype",
            ),
            nullable=False,
        ),
        sa.Column("confidence", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_relevant", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_ai_insights_user_id", "ai_insights", ["user_id"])
    op.create_index(
        "ix_ai_insights_user_created", "ai_insights", ["user_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_ai_insights_user_created", table_name="ai_insights")
    op.drop_index("ix_ai_insights_user_id", table_name="ai_insights")
    op.drop_table("ai_insights")
    op.drop_index("ix_alerts_user_id", table_name="alerts")
    op.drop_table("alerts")
    op.drop_index("ix_investments_user_id", table_name="investments")
    op.drop_table("investments")
    op.drop_index("ix_budgets_user_dates", table_name="budgets")
    op.drop_index("ix_budgets_user_id", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_account", table_name="transactions")
    op.drop_index("ix_transactions_user_type_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_index("ix_transactions_user_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_accounts_user_active", table_name="accounts")
    op.drop_index("ix_accounts_user_id", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("users")
