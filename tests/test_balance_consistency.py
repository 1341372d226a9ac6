import random
from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from cache import CacheKind, UpdateBroker, UpdateEvent, UserCache
from database import Base
from models import Account, AccountType, Transaction, TransactionCategory, TransactionType, User
from schemas import AccountIn, TransactionIn, TransactionUpdate
from services import (
    AccountService,
    InvalidInput,
    LedgerConflict,
    NotFound,
    TransactionService,
    balance_delta,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_user(session, email: str = "owner@example.com") -> User:
    user = User(email=email, first_name="Sam")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def make_account(
    session, user: User, cache: UserCache, name: str = "Checking", opening: int = 0
) -> Account:
    return AccountService(session, user.id, cache).create(
        AccountIn(name=name, type=AccountType.checking, opening_balance_cents=opening)
    )


def expense(account: Account, amount_cents: int, **overrides) -> TransactionIn:
    data = {
        "account_id": account.id,
        "amount_cents": amount_cents,
        "type": TransactionType.expense,
        "category": TransactionCategory.food_dining,
        "description": "Groceries",
        "date": date(2026, 3, 10),
    }
    data.update(overrides)
    return TransactionIn(**data)


def balance_of(session, account: Account) -> int:
    session.expire_all()
    return session.get(Account, account.id).balance_cents


def test_balance_delta_sign_follows_type() -> None:
    assert balance_delta(TransactionType.income, 500) == 500
    assert balance_delta(TransactionType.expense, 500) == -500
    assert balance_delta(TransactionType.expense, -500) == -500
    assert balance_delta(TransactionType.transfer, 500) == -500


def test_create_expense_debits_account() -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account = make_account(session, user, cache, opening=100_000)

    txn = TransactionService(session, user.id, cache).create(expense(account, 3_000))

    assert txn.amount_cents == 3_000
    assert balance_of(session, account) == 97_000
    assert AccountService(session, user.id, cache).reconcile(account.id)["drift_cents"] == 0


def test_negative_input_is_stored_as_magnitude() -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account = make_account(session, user, cache)
    service = TransactionService(session, user.id, cache)

    spent = service.create(expense(account, -3_000))
    earned = service.create(
        expense(
            account,
            -500,
            type=TransactionType.income,
            category=TransactionCategory.salary,
            description="Refund",
        )
    )

    assert spent.amount_cents == 3_000
    assert earned.amount_cents == 500
    assert balance_of(session, account) == -2_500


def test_zero_amount_is_rejected_without_side_effects() -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account = make_account(session, user, cache, opening=1_000)

    with pytest.raises(InvalidInput) as excinfo:
        TransactionService(session, user.id, cache).create(expense(account, 0))

    assert excinfo.value.field == "amount_cents"
    assert balance_of(session, account) == 1_000
    assert session.scalar(select(func.count(Transaction.id))) == 0


def test_blank_description_is_rejected_without_side_effects() -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account = make_account(session, user, cache, opening=1_000)
    service = TransactionService(session, user.id, cache)

    with pytest.raises(InvalidInput) as excinfo:
        service.create(expense(account, 300, description="   "))

    assert excinfo.value.field == "description"
    assert balance_of(session, account) == 1_000
    assert session.scalar(select(func.count(Transaction.id))) == 0

    txn = service.create(expense(account, 300))
    with pytest.raises(InvalidInput):
        service.update(txn.id, TransactionUpdate(amount_cents=500, description=" \t "))

    session.expire_all()
    assert session.get(Transaction, txn.id).description == "Groceries"
    assert balance_of(session, account) == 700


def test_category_must_belong_to_type() -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account = make_account(session, user, cache)

    with pytest.raises(InvalidInput) as excinfo:
        TransactionService(session, user.id, cache).create(
            expense(account, 1_000, type=TransactionType.income)
        )

    assert excinfo.value.field == "category"


def test_transfer_accepts_any_category() -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account = make_account(session, user, cache, opening=10_000)

    TransactionService(session, user.id, cache).create(
        expense(
            account,
            2_500,
            type=TransactionType.transfer,
            category=TransactionCategory.investments,
            description="To brokerage",
        )
    )

    assert balance_of(session, account) == 7_500


def test_unknown_or_foreign_account_is_not_found() -> None:
    session = make_session()
    cache = UserCache()
    owner = make_user(session)
    other = make_user(session, "other@example.com")
    foreign = make_account(session, other, cache, name="Theirs", opening=5_000)

    service = TransactionService(session, owner.id, cache)
    with pytest.raises(NotFound):
        service.create(expense(foreign, 1_000))
    with pytest.raises(NotFound):
        service.create(expense(foreign, 1_000, account_id=999))

    assert balance_of(session, foreign) == 5_000


def test_deactivated_account_rejects_new_transactions() -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account = make_account(session, user, cache)
    AccountService(session, user.id, cache).deactivate(account.id)

    with pytest.raises(NotFound):
        TransactionService(session, user.id, cache).create(expense(account, 1_000))


def test_moving_transaction_between_accounts() -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account_a = make_account(session, user, cache, name="A", opening=13_000)
    account_b = make_account(session, user, cache, name="B", opening=5_000)
    service = TransactionService(session, user.id, cache)

    txn = service.create(expense(account_a, 3_000))
    assert balance_of(session, account_a) == 10_000
    assert balance_of(session, account_b) == 5_000

    moved = service.update(txn.id, TransactionUpdate(account_id=account_b.id))

    assert moved.account_id == account_b.id
    assert balance_of(session, account_a) == 13_000
    assert balance_of(session, account_b) == 2_000


def test_update_reapplies_new_amount_and_type() -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account = make_account(session, user, cache, opening=10_000)
    service = TransactionService(session, user.id, cache)
    txn = service.create(expense(account, 3_000))

    service.update(
        txn.id,
        TransactionUpdate(
            amount_cents=5_000,
            type=TransactionType.income,
            category=TransactionCategory.freelance,
        ),
    )

    assert balance_of(session, account) == 15_000


def test_update_of_text_fields_leaves_balance_alone() -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account = make_account(session, user, cache, opening=10_000)
    service = TransactionService(session, user.id, cache)
    txn = service.create(expense(account, 3_000))

    updated = service.update(
        txn.id, TransactionUpdate(description="Dinner out", date=date(2026, 3, 11))
    )

    assert updated.description == "Dinner out"
    assert updated.date == date(2026, 3, 11)
    assert balance_of(session, account) == 7_000


def test_update_rejects_category_outside_type() -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account = make_account(session, user, cache, opening=10_000)
    service = TransactionService(session, user.id, cache)
    txn = service.create(expense(account, 3_000))

    with pytest.raises(InvalidInput):
        service.update(txn.id, TransactionUpdate(category=TransactionCategory.salary))

    assert balance_of(session, account) == 7_000


def test_delete_reverses_effect() -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account = make_account(session, user, cache, opening=10_000)
    service = TransactionService(session, user.id, cache)
    txn = service.create(expense(account, 3_000))

    service.delete(txn.id)

    assert balance_of(session, account) == 10_000
    assert session.get(Transaction, txn.id) is None
    with pytest.raises(NotFound):
        service.delete(txn.id)


def test_random_mutation_sequence_keeps_ledger_invariant() -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    accounts = [
        make_account(session, user, cache, name="Main", opening=50_000),
        make_account(session, user, cache, name="Spare", opening=-2_000),
    ]
    service = TransactionService(session, user.id, cache)
    reconciler = AccountService(session, user.id, cache)
    rng = random.Random(20260315)
    live: list[int] = []

    for _ in range(80):
        action = rng.choice(["create", "create", "update", "delete"])
        if action == "create" or not live:
            txn_type = rng.choice(list(TransactionType))
            category = (
                TransactionCategory.salary
                if txn_type == TransactionType.income
                else TransactionCategory.shopping
            )
            txn = service.create(
                expense(
                    rng.choice(accounts),
                    rng.randint(1, 20_000),
                    type=txn_type,
                    category=category,
                )
            )
            live.append(txn.id)
        elif action == "update":
            service.update(
                rng.choice(live),
                TransactionUpdate(
                    account_id=rng.choice(accounts).id,
                    amount_cents=rng.randint(1, 20_000),
                ),
            )
        else:
            victim = live.pop(rng.randrange(len(live)))
            service.delete(victim)

        for account in accounts:
            report = reconciler.reconcile(account.id)
            assert report["drift_cents"] == 0, report


def test_failure_between_reversal_and_reapply_rolls_back(monkeypatch) -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account_a = make_account(session, user, cache, name="A", opening=13_000)
    account_b = make_account(session, user, cache, name="B", opening=5_000)
    service = TransactionService(session, user.id, cache)
    txn = service.create(expense(account_a, 3_000))

    original = TransactionService._apply_delta
    calls = {"count": 0}

    def crash_on_reapply(self, account_id, delta_cents):
        calls["count"] += 1
        if calls["count"] == 2:
            raise RuntimeError("simulated crash after reversal")
        return original(self, account_id, delta_cents)

    monkeypatch.setattr(TransactionService, "_apply_delta", crash_on_reapply)

    with pytest.raises(RuntimeError):
        service.update(
            txn.id, TransactionUpdate(account_id=account_b.id, amount_cents=4_000)
        )

    assert calls["count"] == 2
    assert balance_of(session, account_a) == 10_000
    assert balance_of(session, account_b) == 5_000
    stored = session.get(Transaction, txn.id)
    assert stored.account_id == account_a.id
    assert stored.amount_cents == 3_000
    assert session.scalar(select(func.count(Transaction.id))) == 1


def test_failure_during_create_leaves_no_orphan_row(monkeypatch) -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account = make_account(session, user, cache, opening=1_000)

    def crash(self, account_id, delta_cents):
        raise RuntimeError("simulated crash")

    monkeypatch.setattr(TransactionService, "_apply_delta", crash)

    with pytest.raises(RuntimeError):
        TransactionService(session, user.id, cache).create(expense(account, 500))

    assert session.scalar(select(func.count(Transaction.id))) == 0
    assert balance_of(session, account) == 1_000


def test_datastore_abort_surfaces_as_retryable_conflict(monkeypatch) -> None:
    session = make_session()
    cache = UserCache()
    user = make_user(session)
    account = make_account(session, user, cache, opening=1_000)

    def abort(self, account_id, delta_cents):
        raise IntegrityError("UPDATE accounts", {}, Exception("constraint failed"))

    monkeypatch.setattr(TransactionService, "_apply_delta", abort)

    with pytest.raises(LedgerConflict) as excinfo:
        TransactionService(session, user.id, cache).create(expense(account, 500))

    assert excinfo.value.retryable is True
    assert excinfo.value.kind == "conflict"
    assert balance_of(session, account) == 1_000


def test_other_users_cannot_touch_transaction() -> None:
    session = make_session()
    cache = UserCache()
    owner = make_user(session)
    intruder = make_user(session, "intruder@example.com")
    account = make_account(session, owner, cache, opening=10_000)
    txn = TransactionService(session, owner.id, cache).create(expense(account, 1_000))

    service = TransactionService(session, intruder.id, cache)
    with pytest.raises(NotFound):
        service.get(txn.id)
    with pytest.raises(NotFound):
        service.update(txn.id, TransactionUpdate(amount_cents=1))
    with pytest.raises(NotFound):
        service.delete(txn.id)

    assert balance_of(session, account) == 9_000


def test_mutations_invalidate_user_cache_and_publish() -> None:
    session = make_session()
    cache = UserCache()
    broker = UpdateBroker()
    user = make_user(session)
    other = make_user(session, "other@example.com")
    account = make_account(session, user, cache, opening=10_000)
    events = []
    broker.subscribe(lambda user_id, event, payload: events.append((user_id, event)))

    cache.set(CacheKind.dashboard_stats, user.id, {"total_balance_cents": 1})
    cache.set(CacheKind.ai_insights, user.id, [{"title": "stale"}])
    cache.set(CacheKind.transaction_history, user.id, [], suffix="recent_10")
    cache.set(CacheKind.dashboard_stats, other.id, {"total_balance_cents": 2})

    service = TransactionService(session, user.id, cache, broker)
    txn = service.create(expense(account, 1_000))

    assert cache.get(CacheKind.dashboard_stats, user.id) is None
    assert cache.get(CacheKind.ai_insights, user.id) is None
    assert cache.get(CacheKind.transaction_history, user.id, "recent_10") is None
    assert cache.get(CacheKind.dashboard_stats, other.id) == {"total_balance_cents": 2}

    cache.set(CacheKind.dashboard_stats, user.id, {"total_balance_cents": 3})
    service.update(txn.id, TransactionUpdate(amount_cents=2_000))
    assert cache.get(CacheKind.dashboard_stats, user.id) is None

    service.delete(txn.id)

    assert events == [
        (user.id, UpdateEvent.new_transaction),
        (user.id, UpdateEvent.transaction_updated),
        (user.id, UpdateEvent.transaction_deleted),
    ]
