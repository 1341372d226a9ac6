from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterator, Optional

from sqlalchemy import String, case, cast, func, or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, contains_eager, joinedload

from cache import CacheKind, UpdateBroker, UpdateEvent, UserCache, get_broker, get_cache
from config import get_settings
from models import (
    EXPENSE_CATEGORIES,
    Account,
    AccountType,
    Alert,
    Budget,
    Investment,
    Transaction,
    TransactionCategory,
    TransactionType,
    User,
    categories_for_type,
)
from periods import local_today, month_to_date, resolve_range, rolling_window
from schemas import (
    AccountIn,
    AlertIn,
    BudgetIn,
    IdentityProfile,
    InvestmentIn,
    TransactionIn,
    TransactionQuery,
    TransactionUpdate,
)


logger = logging.getLogger(__name__)

CATEGORY_PALETTE = (
    "#FF6B6B",
    "#4ECDC4",
    "#45B7D1",
    "#96CEB4",
    "#FFEAA7",
    "#DDA0DD",
    "#98D8C8",
    "#F7DC6F",
    "#BB8FCE",
    "#85C1E9",
)

DEFAULT_ACCOUNTS = (
    ("Primary Checking", AccountType.checking),
    ("Savings Account", AccountType.savings),
)


class NotFound(ValueError):
    kind = "not_found"


class InvalidInput(ValueError):
    kind = "validation"

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class LedgerConflict(RuntimeError):
    kind = "conflict"
    retryable = True


@contextmanager
def ledger_transaction(session: Session) -> Iterator[None]:
    """Commit everything done inside the block as one unit, or nothing at all."""
    try:
        yield
        session.commit()
    except (IntegrityError, OperationalError) as exc:
        session.rollback()
        raise LedgerConflict("Ledger update aborted by the datastore") from exc
    except Exception:
        session.rollback()
        raise


def balance_delta(txn_type: TransactionType, amount_cents: int) -> int:
    if txn_type == TransactionType.income:
        return amount_cents
    return -abs(amount_cents)


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _normalize_amount(amount_cents: int) -> int:
    magnitude = abs(int(amount_cents))
    if magnitude == 0:
        raise InvalidInput("Amount must be non-zero", field="amount_cents")
    return magnitude


def _normalize_description(description: str) -> str:
    text = description.strip()
    if not text:
        raise InvalidInput("Description must not be blank", field="description")
    return text


def _check_category(txn_type: TransactionType, category: TransactionCategory) -> None:
    if category not in categories_for_type(txn_type):
        raise InvalidInput(
            f"Category {category.value} is not valid for {txn_type.value} transactions",
            field="category",
        )


def transaction_to_dict(txn: Transaction) -> dict[str, object]:
    account = txn.account
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "account": account.name if account else None,
        "account_type": account.type.value if account else None,
        "amount_cents": txn.amount_cents,
        "signed_amount_cents": balance_delta(txn.type, txn.amount_cents),
        "amount": str(cents_to_decimal(txn.amount_cents)),
        "type": txn.type.value,
        "category": txn.category.value,
        "description": txn.description,
        "date": txn.date.isoformat(),
        "created_at": txn.created_at.isoformat() if txn.created_at else None,
    }


def account_to_dict(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "balance_cents": account.balance_cents,
        "balance": str(cents_to_decimal(account.balance_cents)),
        "currency": account.currency,
        "is_active": account.is_active,
    }


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def login_with_profile(self, profile: IdentityProfile) -> User:
        """
        Resolve the local user for an identity-provider login.

        Known provider ids are returned as-is, an email match gets the
        provider id linked to it, and anyone else is created together with
        the default checking and savings accounts.
        """
        user = self.session.scalar(
            select(User).where(User.google_id == profile.provider_id)
        )
        if user:
            logger.info(f"identity_login: user_id={user.id}")
            return user

        email = profile.email.strip().lower()
        with ledger_transaction(self.session):
            user = self.session.scalar(
                select(User).where(func.lower(User.email) == email)
            )
            if user:
                user.google_id = profile.provider_id
                for field in ("first_name", "last_name", "avatar_url"):
                    value = getattr(profile, field)
                    if value is not None:
                        setattr(user, field, value)
                created = False
            else:
                user = User(
                    email=email,
                    google_id=profile.provider_id,
                    first_name=profile.first_name,
                    last_name=profile.last_name,
                    avatar_url=profile.avatar_url,
                )
                self.session.add(user)
                self.session.flush()
                for name, account_type in DEFAULT_ACCOUNTS:
                    self.session.add(
                        Account(
                            user_id=user.id,
                            name=name,
                            type=account_type,
                            opening_balance_cents=0,
                            balance_cents=0,
                            currency="USD",
                        )
                    )
                created = True
        self.session.refresh(user)
        logger.info(
            f"identity_{'created' if created else 'linked'}: user_id={user.id}"
        )
        return user


class AccountService:
    def __init__(
        self, session: Session, user_id: int, cache: Optional[UserCache] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache if cache is not None else get_cache()

    def list_active(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id, Account.is_active.is_(True))
            .order_by(Account.created_at.asc(), Account.id.asc())
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int, *, active_only: bool = True) -> Account:
        stmt = select(Account).where(
            Account.id == account_id, Account.user_id == self.user_id
        )
        if active_only:
            stmt = stmt.where(Account.is_active.is_(True))
        account = self.session.scalar(stmt)
        if not account:
            raise NotFound("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            opening_balance_cents=data.opening_balance_cents,
            balance_cents=data.opening_balance_cents,
            currency=data.currency.upper(),
        )
        with ledger_transaction(self.session):
            self.session.add(account)
        self.session.refresh(account)
        self.cache.invalidate_user(self.user_id)
        logger.info(f"account_created: user_id={self.user_id} account_id={account.id}")
        return account

    def deactivate(self, account_id: int) -> None:
        account = self.get(account_id, active_only=False)
        if not account.is_active:
            return
        with ledger_transaction(self.session):
            account.is_active = False
        self.cache.invalidate_user(self.user_id)
        logger.info(f"account_deactivated: user_id={self.user_id} account_id={account_id}")

    def reconcile(self, account_id: int) -> dict[str, int]:
        """Compare the stored balance with the one implied by the ledger."""
        account = self.get(account_id, active_only=False)
        applied = self.session.execute(
            select(
                func.coalesce(
                    func.sum(
                        case(
                            (
                                Transaction.type == TransactionType.income,
                                Transaction.amount_cents,
                            ),
                            else_=-Transaction.amount_cents,
                        )
                    ),
                    0,
                )
            ).where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account.id,
            )
        ).scalar_one()
        expected = account.opening_balance_cents + int(applied or 0)
        return {
            "expected_cents": expected,
            "actual_cents": account.balance_cents,
            "drift_cents": account.balance_cents - expected,
        }


@dataclass
class TransactionPage:
    items: list[Transaction]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def meta(self) -> dict[str, object]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
        }


class TransactionService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        cache: Optional[UserCache] = None,
        broker: Optional[UpdateBroker] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache if cache is not None else get_cache()
        self.broker = broker if broker is not None else get_broker()

    def has_any(self) -> bool:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.user_id == self.user_id
        )
        return (self.session.execute(stmt).scalar_one() or 0) > 0

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def _get_for_update(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
            .with_for_update()
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def _active_account(self, account_id: int) -> Account:
        account = self.session.scalar(
            select(Account).where(
                Account.id == account_id,
                Account.user_id == self.user_id,
                Account.is_active.is_(True),
            )
        )
        if not account:
            raise NotFound("Account not found")
        return account

    def _apply_delta(self, account_id: int, delta_cents: int) -> None:
        # relative increment so concurrent writers never overwrite each other
        result = self.session.execute(
            update(Account)
            .where(Account.id == account_id, Account.user_id == self.user_id)
            .values(balance_cents=Account.balance_cents + delta_cents)
        )
        if result.rowcount != 1:
            raise NotFound("Account not found")

    def _after_mutation(self, event: UpdateEvent, payload: dict) -> None:
        self.cache.invalidate_user(self.user_id)
        self.broker.publish(self.user_id, event, payload)

    def create(self, data: TransactionIn) -> Transaction:
        amount_cents = _normalize_amount(data.amount_cents)
        _check_category(data.type, data.category)
        description = _normalize_description(data.description)
        with ledger_transaction(self.session):
            account = self._active_account(data.account_id)
            txn = Transaction(
                user_id=self.user_id,
                account_id=account.id,
                amount_cents=amount_cents,
                type=data.type,
                category=data.category,
                description=description,
                date=data.date,
            )
            self.session.add(txn)
            self.session.flush()
            delta = balance_delta(txn.type, txn.amount_cents)
            self._apply_delta(account.id, delta)
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user_id={self.user_id} id={txn.id} "
            f"account_id={txn.account_id} delta_cents={delta}"
        )
        self._after_mutation(UpdateEvent.new_transaction, transaction_to_dict(txn))
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None
        }
        with ledger_transaction(self.session):
            txn = self._get_for_update(transaction_id)

            new_type = changes.get("type", txn.type)
            new_category = changes.get("category", txn.category)
            _check_category(new_type, new_category)
            new_amount = (
                _normalize_amount(changes["amount_cents"])
                if "amount_cents" in changes
                else txn.amount_cents
            )
            new_account_id = changes.get("account_id", txn.account_id)
            if new_account_id != txn.account_id:
                self._active_account(new_account_id)

            old_account_id = txn.account_id
            old_delta = balance_delta(txn.type, txn.amount_cents)
            new_delta = balance_delta(new_type, new_amount)
            if (old_account_id, old_delta) != (new_account_id, new_delta):
                self._apply_delta(old_account_id, -old_delta)
                self._apply_delta(new_account_id, new_delta)

            txn.account_id = new_account_id
            txn.type = new_type
            txn.category = new_category
            txn.amount_cents = new_amount
            if "description" in changes:
                txn.description = _normalize_description(changes["description"])
            if "date" in changes:
                txn.date = changes["date"]
        self.session.refresh(txn)
        logger.info(
            f"transaction_updated: user_id={self.user_id} id={txn.id} "
            f"from_account={old_account_id} to_account={new_account_id} "
            f"old_delta_cents={old_delta} new_delta_cents={new_delta}"
        )
        self._after_mutation(UpdateEvent.transaction_updated, transaction_to_dict(txn))
        return txn

    def delete(self, transaction_id: int) -> None:
        with ledger_transaction(self.session):
            txn = self._get_for_update(transaction_id)
            reversal = -balance_delta(txn.type, txn.amount_cents)
            account_id = txn.account_id
            self._apply_delta(account_id, reversal)
            self.session.delete(txn)
        logger.info(
            f"transaction_deleted: user_id={self.user_id} id={transaction_id} "
            f"account_id={account_id} delta_cents={reversal}"
        )
        self._after_mutation(
            UpdateEvent.transaction_deleted,
            {"id": transaction_id, "account_id": account_id},
        )

    def list_page(self, query: TransactionQuery) -> TransactionPage:
        conditions = [Transaction.user_id == self.user_id]
        if query.category:
            conditions.append(Transaction.category == query.category)
        if query.type:
            conditions.append(Transaction.type == query.type)
        if query.account_id:
            conditions.append(Transaction.account_id == query.account_id)
        if query.start_date:
            conditions.append(Transaction.date >= query.start_date)
        if query.end_date:
            conditions.append(Transaction.date <= query.end_date)
        if query.search and query.search.strip():
            term = query.search.strip().lower().replace("_", " ")
            term = term.replace("\\", "\\\\").replace("%", "\\%")
            like = f"%{term}%"
            conditions.append(
                or_(
                    func.lower(Transaction.description).like(like, escape="\\"),
                    func.lower(
                        func.replace(cast(Transaction.category, String), "_", " ")
                    ).like(like, escape="\\"),
                    func.lower(Account.name).like(like, escape="\\"),
                )
            )

        total = int(
            self.session.execute(
                select(func.count(Transaction.id))
                .select_from(Transaction)
                .join(Account, Account.id == Transaction.account_id)
                .where(*conditions)
            ).scalar_one()
            or 0
        )

        signed_amount = case(
            (Transaction.type == TransactionType.income, Transaction.amount_cents),
            else_=-Transaction.amount_cents,
        )
        sort_columns = {
            "date": Transaction.date,
            "amount": signed_amount,
            "type": Transaction.type,
            "account": Account.name,
        }
        column = sort_columns[query.sort]
        primary = column.asc() if query.direction == "asc" else column.desc()
        stmt = (
            select(Transaction)
            .join(Account, Account.id == Transaction.account_id)
            .options(contains_eager(Transaction.account))
            .where(*conditions)
            .order_by(primary, Transaction.id.asc())
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        )
        items = self.session.scalars(stmt).all()
        return TransactionPage(
            items=list(items), total=total, page=query.page, limit=query.limit
        )

    def recent(self, limit: int = 10) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()


class BudgetService:
    def __init__(
        self, session: Session, user_id: int, cache: Optional[UserCache] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache if cache is not None else get_cache()

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.start_date.desc(), Budget.id.asc())
        )
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFound("Budget not found")
        return budget

    def create(self, data: BudgetIn) -> Budget:
        if data.category not in EXPENSE_CATEGORIES:
            raise InvalidInput(
                "Budgets can only be set for expense categories", field="category"
            )
        if data.start_date > data.end_date:
            raise InvalidInput("Start date must be before end date", field="start_date")
        budget = Budget(
            user_id=self.user_id,
            name=data.name.strip(),
            category=data.category,
            limit_cents=data.limit_cents,
            period=data.period,
            start_date=data.start_date,
            end_date=data.end_date,
        )
        with ledger_transaction(self.session):
            self.session.add(budget)
        self.session.refresh(budget)
        self.cache.invalidate_user(self.user_id)
        return budget

    def deactivate(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        with ledger_transaction(self.session):
            budget.is_active = False
        self.cache.invalidate_user(self.user_id)

    def _active_budgets(self, today: date) -> list[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.is_active.is_(True),
            Budget.start_date <= today,
            Budget.end_date >= today,
        )
        return self.session.scalars(stmt).all()

    def spent_cents(self, budget: Budget) -> int:
        """Spending is derived from the ledger, never stored on the budget."""
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                    Transaction.user_id == self.user_id,
                    Transaction.type == TransactionType.expense,
                    Transaction.category == budget.category,
                    Transaction.date.between(budget.start_date, budget.end_date),
                )
            ).scalar_one()
            or 0
        )

    @staticmethod
    def ratio(spent_cents: int, limit_cents: int) -> float:
        if limit_cents <= 0:
            return 0.0
        return spent_cents / limit_cents

    def progress(self, today: Optional[date] = None) -> list[dict[str, object]]:
        today = today or local_today()
        rows = []
        for budget in self.list_all():
            spent = self.spent_cents(budget)
            rows.append(
                {
                    "id": budget.id,
                    "name": budget.name,
                    "category": budget.category.value,
                    "period": budget.period.value,
                    "start_date": budget.start_date.isoformat(),
                    "end_date": budget.end_date.isoformat(),
                    "limit_cents": budget.limit_cents,
                    "spent_cents": spent,
                    "remaining_cents": budget.limit_cents - spent,
                    "utilization": self.ratio(spent, budget.limit_cents),
                    "is_current": budget.is_active
                    and budget.start_date <= today <= budget.end_date,
                }
            )
        return rows

    def utilization(self, today: Optional[date] = None) -> float:
        today = today or local_today()
        budgets = self._active_budgets(today)
        if not budgets:
            return 0.0
        ratios = [self.ratio(self.spent_cents(b), b.limit_cents) for b in budgets]
        return sum(ratios) / len(ratios)


class InvestmentService:
    def __init__(
        self, session: Session, user_id: int, cache: Optional[UserCache] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache if cache is not None else get_cache()

    def list_all(self) -> list[Investment]:
        stmt = (
            select(Investment)
            .where(Investment.user_id == self.user_id)
            .order_by(Investment.symbol.asc(), Investment.id.asc())
        )
        return self.session.scalars(stmt).all()

    def create(self, data: InvestmentIn) -> Investment:
        investment = Investment(
            user_id=self.user_id,
            symbol=data.symbol.strip().upper(),
            name=data.name.strip(),
            quantity=data.quantity,
            purchase_price_cents=data.purchase_price_cents,
            current_price_cents=data.current_price_cents,
            type=data.type,
            purchase_date=data.purchase_date,
        )
        with ledger_transaction(self.session):
            self.session.add(investment)
        self.session.refresh(investment)
        self.cache.invalidate_user(self.user_id)
        return investment

    def update_price(self, investment_id: int, current_price_cents: int) -> Investment:
        investment = self.session.get(Investment, investment_id)
        if not investment or investment.user_id != self.user_id:
            raise NotFound("Investment not found")
        if current_price_cents < 0:
            raise InvalidInput("Price cannot be negative", field="current_price_cents")
        with ledger_transaction(self.session):
            investment.current_price_cents = current_price_cents
        self.cache.invalidate_user(self.user_id)
        return investment

    def valuation(self) -> dict[str, int]:
        value = Decimal(0)
        cost = Decimal(0)
        for investment in self.list_all():
            quantity = Decimal(investment.quantity)
            value += quantity * investment.current_price_cents
            cost += quantity * investment.purchase_price_cents
        value_cents = _round_cents(value)
        return {
            "value_cents": value_cents,
            "cost_cents": _round_cents(cost),
            "gain_loss_cents": value_cents - _round_cents(cost),
        }


class AlertService:
    def __init__(
        self, session: Session, user_id: int, cache: Optional[UserCache] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache if cache is not None else get_cache()

    def create(self, data: AlertIn) -> Alert:
        alert = Alert(
            user_id=self.user_id,
            title=data.title.strip(),
            message=data.message,
            type=data.type,
            trigger_at=data.trigger_at,
        )
        with ledger_transaction(self.session):
            self.session.add(alert)
        self.session.refresh(alert)
        self.cache.invalidate(CacheKind.dashboard_stats, self.user_id)
        return alert

    def list_active(self) -> list[Alert]:
        stmt = (
            select(Alert)
            .where(Alert.user_id == self.user_id, Alert.is_active.is_(True))
            .order_by(Alert.created_at.desc(), Alert.id.desc())
        )
        return self.session.scalars(stmt).all()

    def mark_read(self, alert_id: int) -> None:
        alert = self.session.get(Alert, alert_id)
        if not alert or alert.user_id != self.user_id:
            raise NotFound("Alert not found")
        with ledger_transaction(self.session):
            alert.is_read = True
        self.cache.invalidate(CacheKind.dashboard_stats, self.user_id)

    def active_unread_count(self) -> int:
        stmt = select(func.count(Alert.id)).where(
            Alert.user_id == self.user_id,
            Alert.is_active.is_(True),
            Alert.is_read.is_(False),
        )
        return int(self.session.execute(stmt).scalar_one() or 0)


class MetricsService:
    def __init__(
        self, session: Session, user_id: int, cache: Optional[UserCache] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache if cache is not None else get_cache()

    def _income_expense(self, start: date, end: date) -> tuple[int, int, int]:
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.income,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.expense,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("expenses"),
            func.count(Transaction.id).label("count"),
        ).where(
            Transaction.user_id == self.user_id,
            Transaction.date.between(start, end),
        )
        row = self.session.execute(stmt).one()
        return int(row.income or 0), int(row.expenses or 0), int(row.count or 0)

    def dashboard_stats(self, today: Optional[date] = None) -> dict[str, object]:
        """
        Summary figures for the dashboard.

        ``monthly_*`` values cover the rolling window (last N calendar days
        including today); ``current_month_*`` values cover the calendar
        month to date. Money is reported in cents.
        """
        settings = get_settings()
        today = today or local_today()
        rolling = rolling_window(settings.rolling_window_days, today=today)
        month = month_to_date(today=today)

        accounts = AccountService(self.session, self.user_id, self.cache).list_active()
        total_balance = sum(a.balance_cents for a in accounts)

        income, expenses, rolling_count = self._income_expense(rolling.start, rolling.end)
        month_income, month_expenses, month_count = self._income_expense(
            month.start, month.end
        )

        valuation = InvestmentService(self.session, self.user_id, self.cache).valuation()
        utilization = BudgetService(self.session, self.user_id, self.cache).utilization(
            today
        )
        alerts = AlertService(self.session, self.user_id, self.cache).active_unread_count()

        stats = {
            "total_balance_cents": total_balance,
            "monthly_income_cents": income,
            "monthly_expenses_cents": expenses,
            "monthly_net_cents": income - expenses,
            "current_month_income_cents": month_income,
            "current_month_expenses_cents": month_expenses,
            "current_month_net_cents": month_income - month_expenses,
            "investment_value_cents": valuation["value_cents"],
            "investment_gain_loss_cents": valuation["gain_loss_cents"],
            "budget_utilization": utilization,
            "active_alerts": alerts,
            "accounts_count": len(accounts),
            "transactions_this_month": month_count,
            "transactions_rolling_window": rolling_count,
            "rolling_window": rolling.as_dict(),
            "current_month": month.as_dict(),
        }
        logger.info(
            f"dashboard_stats: user_id={self.user_id} balance_cents={total_balance} "
            f"rolling_expenses_cents={expenses} month_expenses_cents={month_expenses}"
        )
        return stats

    def category_breakdown(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        *,
        today: Optional[date] = None,
    ) -> dict[str, object]:
        try:
            period = resolve_range(start, end, today=today)
        except ValueError as exc:
            raise InvalidInput(str(exc), field="start_date") from exc

        rows = self.session.execute(
            select(
                Transaction.category,
                func.sum(Transaction.amount_cents).label("total"),
                func.count(Transaction.id).label("count"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.category)
        ).all()

        grouped = sorted(
            ((row.category, int(row.total or 0), int(row.count or 0)) for row in rows),
            key=lambda item: (-item[1], item[0].value),
        )
        total = sum(amount for _, amount, _ in grouped)
        categories = []
        for index, (category, amount, count) in enumerate(grouped):
            categories.append(
                {
                    "category": category.value,
                    "label": category.label,
                    "amount_cents": amount,
                    "transaction_count": count,
                    "percentage": (amount / total) if total else 0.0,
                    "color": CATEGORY_PALETTE[index % len(CATEGORY_PALETTE)],
                }
            )
        return {
            "categories": categories,
            "total_amount_cents": total,
            "date_range": period.as_dict(),
        }

    def recent_transactions(self, limit: int = 10) -> list[dict[str, object]]:
        txns = TransactionService(self.session, self.user_id, self.cache).recent(limit)
        return [transaction_to_dict(t) for t in txns]

    def cached_dashboard_stats(self) -> dict[str, object]:
        return self.cache.get_or_compute(
            CacheKind.dashboard_stats, self.user_id, self.dashboard_stats
        )

    def cached_category_breakdown(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> dict[str, object]:
        try:
            period = resolve_range(start, end)
        except ValueError as exc:
            raise InvalidInput(str(exc), field="start_date") from exc
        suffix = f"{period.start.isoformat()}_{period.end.isoformat()}"
        return self.cache.get_or_compute(
            CacheKind.category_breakdown,
            self.user_id,
            lambda: self.category_breakdown(period.start, period.end),
            suffix=suffix,
        )

    def cached_recent_transactions(self, limit: int = 10) -> list[dict[str, object]]:
        return self.cache.get_or_compute(
            CacheKind.transaction_history,
            self.user_id,
            lambda: self.recent_transactions(limit),
            suffix=f"recent_{limit}",
        )
