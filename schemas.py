import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    AccountType,
    AlertType,
    BudgetPeriod,
    InsightType,
    InvestmentType,
    TransactionCategory,
    TransactionType,
)


class IdentityProfile(BaseModel):
    """Profile handed over by the external identity provider after login."""

    provider_id: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    avatar_url: Optional[str] = None


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: AccountType
    opening_balance_cents: int = 0
    currency: str = Field(default="USD", min_length=3, max_length=3)


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: int
    amount_cents: int
    type: TransactionType
    category: TransactionCategory
    description: str = Field(..., min_length=1, max_length=200)
    date: date


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: Optional[int] = None
    amount_cents: Optional[int] = None
    type: Optional[TransactionType] = None
    category: Optional[TransactionCategory] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    date: Optional[dt.date] = None


SortKey = Literal["date", "amount", "type", "account"]
SortDir = Literal["asc", "desc"]


class TransactionQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, gt=0, le=100)
    category: Optional[TransactionCategory] = None
    type: Optional[TransactionType] = None
    account_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search: Optional[str] = Field(default=None, max_length=200)
    sort: SortKey = "date"
    direction: SortDir = "desc"


class BudgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    category: TransactionCategory
    limit_cents: int = Field(..., gt=0)
    period: BudgetPeriod
    start_date: date
    end_date: date


class InvestmentIn(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=120)
    quantity: Decimal = Field(..., gt=0, max_digits=18, decimal_places=8)
    purchase_price_cents: int = Field(..., ge=0)
    current_price_cents: int = Field(..., ge=0)
    type: InvestmentType
    purchase_date: date


class PriceUpdateIn(BaseModel):
    current_price_cents: int = Field(..., ge=0)


class AlertIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    type: AlertType
    trigger_at: Optional[datetime] = None


class InsightOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    title: str
    content: str
    type: InsightType
    confidence: float = Field(..., ge=0.0, le=1.0)
    is_relevant: bool = True
    created_at: datetime
