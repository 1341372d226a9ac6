from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def _value_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


class AccountType(str, Enum):
    checking = "CHECKING"
    savings = "SAVINGS"
    credit_card = "CREDIT_CARD"
    investment = "INVESTMENT"
    loan = "LOAN"
    other = "OTHER"


class TransactionType(str, Enum):
    income = "INCOME"
    expense = "EXPENSE"
    transfer = "TRANSFER"


class TransactionCategory(str, Enum):
    food_dining = "FOOD_DINING"
    transportation = "TRANSPORTATION"
    shopping = "SHOPPING"
    entertainment = "ENTERTAINMENT"
    bills_utilities = "BILLS_UTILITIES"
    healthcare = "HEALTHCARE"
    travel = "TRAVEL"
    education = "EDUCATION"
    business = "BUSINESS"
    personal_care = "PERSONAL_CARE"
    gifts_donations = "GIFTS_DONATIONS"
    investments = "INVESTMENTS"
    salary = "SALARY"
    freelance = "FREELANCE"
    business_income = "BUSINESS_INCOME"
    rental_income = "RENTAL_INCOME"
    dividend_income = "DIVIDEND_INCOME"
    other_income = "OTHER_INCOME"
    other_expense = "OTHER_EXPENSE"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


INCOME_CATEGORIES = frozenset(
    {
        TransactionCategory.salary,
        TransactionCategory.freelance,
        TransactionCategory.business_income,
        TransactionCategory.rental_income,
        TransactionCategory.dividend_income,
        TransactionCategory.other_income,
    }
)
EXPENSE_CATEGORIES = frozenset(set(TransactionCategory) - INCOME_CATEGORIES)


def categories_for_type(txn_type: TransactionType) -> frozenset:
    if txn_type == TransactionType.income:
        return INCOME_CATEGORIES
    if txn_type == TransactionType.expense:
        return EXPENSE_CATEGORIES
    # transfers move money between the user's own containers
    return frozenset(TransactionCategory)


TRANSACTION_CATEGORY_ENUM = _value_enum(TransactionCategory, "transactioncategory")


class BudgetPeriod(str, Enum):
    weekly = "WEEKLY"
    monthly = "MONTHLY"
    quarterly = "QUARTERLY"
    yearly = "YEARLY"


class InvestmentType(str, Enum):
    stock = "STOCK"
    etf = "ETF"
    mutual_fund = "MUTUAL_FUND"
    bond = "BOND"
    crypto = "CRYPTO"
    real_estate = "REAL_ESTATE"
    commodity = "COMMODITY"
    other = "OTHER"


class AlertType(str, Enum):
    budget_limit = "BUDGET_LIMIT"
    unusual_spending = "UNUSUAL_SPENDING"
    investment_change = "INVESTMENT_CHANGE"
    bill_reminder = "BILL_REMINDER"
    goal_achievement = "GOAL_ACHIEVEMENT"
    market_opportunity = "MARKET_OPPORTUNITY"


class InsightType(str, Enum):
    spending_pattern = "SPENDING_PATTERN"
    budget_recommendation = "BUDGET_RECOMMENDATION"
    investment_advice = "INVESTMENT_ADVICE"
    saving_opportunity = "SAVING_OPPORTUNITY"
    risk_assessment = "RISK_ASSESSMENT"
    market_analysis = "MARKET_ANALYSIS"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


def _owner_fk() -> Mapped[int]:
    return mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    google_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text)

    accounts: Mapped[list["Account"]] = relationship(
        "Account", back_populates="user", cascade="all, delete-orphan"
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = _owner_fk()
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[AccountType] = mapped_column(
        _value_enum(AccountType, "accounttype"), nullable=False
    )
    opening_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    user: Mapped["User"] = relationship("User", back_populates="accounts")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )

    __table_args__ = (Index("ix_accounts_user_active", "user_id", "is_active"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = _owner_fk()
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        _value_enum(TransactionType, "transactiontype"), nullable=False
    )
    category: Mapped[TransactionCategory] = mapped_column(
        TRANSACTION_CATEGORY_ENUM, nullable=False
    )
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        Index("ix_transactions_account", "account_id"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = _owner_fk()
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[TransactionCategory] = mapped_column(
        TRANSACTION_CATEGORY_ENUM, nullable=False
    )
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    period: Mapped[BudgetPeriod] = mapped_column(
        _value_enum(BudgetPeriod, "budgetperiod"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("limit_cents >= 0", name="ck_budget_limit_non_negative"),
        Index("ix_budgets_user_dates", "user_id", "start_date", "end_date"),
    )


class Investment(Base, TimestampMixin):
    __tablename__ = "investments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = _owner_fk()
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False)
    purchase_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[InvestmentType] = mapped_column(
        _value_enum(InvestmentType, "investmenttype"), nullable=False
    )
    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)


class Alert(Base, TimestampMixin):
    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = _owner_fk()
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[AlertType] = mapped_column(
        _value_enum(AlertType, "alerttype"), nullable=False
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    trigger_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class AIInsight(Base, TimestampMixin):
    __tablename__ = "ai_insights"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = _owner_fk()
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[InsightType] = mapped_column(
        _value_enum(InsightType, "insighttype"), nullable=False
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_relevant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("ix_ai_insights_user_created", "user_id", "created_at"),)
