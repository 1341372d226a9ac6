from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cache import UserCache
from database import Base
from models import AccountType, TransactionCategory, TransactionType, User
from schemas import AccountIn, TransactionIn, TransactionQuery
from services import AccountService, TransactionService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session):
    cache = UserCache()
    user = User(email="owner@example.com")
    other = User(email="other@example.com")
    session.add_all([user, other])
    session.commit()

    accounts = AccountService(session, user.id, cache)
    checking = accounts.create(AccountIn(name="Everyday Checking", type=AccountType.checking))
    savings = accounts.create(AccountIn(name="Rainy Day Savings", type=AccountType.savings))
    other_account = AccountService(session, other.id, cache).create(
        AccountIn(name="Other Checking", type=AccountType.checking)
    )

    service = TransactionService(session, user.id, cache)
    for index in range(25):
        is_income = index % 5 == 0
        service.create(
            TransactionIn(
                account_id=(savings if index % 3 == 0 else checking).id,
                amount_cents=(index + 1) * 100,
                type=TransactionType.income if is_income else TransactionType.expense,
                category=(
                    TransactionCategory.salary
                    if is_income
                    else TransactionCategory.food_dining
                    if index % 2
                    else TransactionCategory.transportation
                ),
                description="Coffee beans" if index == 7 else f"Purchase {index}",
                date=date(2026, 3, 1 + (index % 4)),
            )
        )
    return user, other, other_account, cache, checking, savings


def test_pages_report_totals_and_navigation() -> None:
    session = make_session()
    user, *_, cache, _, _ = seed(session)
    service = TransactionService(session, user.id, cache)

    first = service.list_page(TransactionQuery(page=1, limit=10))
    last = service.list_page(TransactionQuery(page=3, limit=10))

    assert len(first.items) == 10
    assert first.meta() == {
        "page": 1,
        "limit": 10,
        "total": 25,
        "total_pages": 3,
        "has_next": True,
        "has_prev": False,
    }
    assert len(last.items) == 5
    assert last.has_next is False
    assert last.has_prev is True


def test_pagination_is_deterministic_and_disjoint() -> None:
    session = make_session()
    user, other, other_account, cache, _, _ = seed(session)
    service = TransactionService(session, user.id, cache)
    query = TransactionQuery(page=2, limit=7, sort="date", direction="desc")

    before = [t.id for t in service.list_page(query).items]
    TransactionService(session, other.id, cache).create(
        TransactionIn(
            account_id=other_account.id,
            amount_cents=999,
            type=TransactionType.expense,
            category=TransactionCategory.shopping,
            description="Unrelated",
            date=date(2026, 3, 2),
        )
    )
    after = service.list_page(query)

    assert [t.id for t in after.items] == before
    assert after.total == 25
    assert after.total_pages == 4

    seen = []
    for page in range(1, 5):
        seen.extend(t.id for t in service.list_page(TransactionQuery(page=page, limit=7)).items)
    assert len(seen) == 25
    assert len(set(seen)) == 25


def test_same_date_ties_break_on_id() -> None:
    session = make_session()
    user, *_, cache, _, _ = seed(session)
    page = TransactionService(session, user.id, cache).list_page(
        TransactionQuery(limit=100, sort="date", direction="asc")
    )

    keys = [(t.date, t.id) for t in page.items]
    assert keys == sorted(keys)


def test_filters_narrow_results() -> None:
    session = make_session()
    user, _, _, cache, checking, savings = seed(session)
    service = TransactionService(session, user.id, cache)

    incomes = service.list_page(TransactionQuery(type="INCOME", limit=100))
    assert incomes.total == 5
    assert all(t.type == TransactionType.income for t in incomes.items)

    food = service.list_page(TransactionQuery(category="FOOD_DINING", limit=100))
    assert all(t.category == TransactionCategory.food_dining for t in food.items)

    in_savings = service.list_page(TransactionQuery(account_id=savings.id, limit=100))
    assert in_savings.total == 9
    assert {t.account_id for t in in_savings.items} == {savings.id}

    window = service.list_page(
        TransactionQuery(start_date=date(2026, 3, 2), end_date=date(2026, 3, 3), limit=100)
    )
    assert {t.date for t in window.items} == {date(2026, 3, 2), date(2026, 3, 3)}
    assert window.total == 12


def test_search_spans_description_category_and_account() -> None:
    session = make_session()
    user, *_, cache, _, _ = seed(session)
    service = TransactionService(session, user.id, cache)

    by_description = service.list_page(TransactionQuery(search="COFFEE"))
    assert [t.description for t in by_description.items] == ["Coffee beans"]

    by_category = service.list_page(TransactionQuery(search="food dining", limit=100))
    assert by_category.total > 0
    assert all(t.category == TransactionCategory.food_dining for t in by_category.items)

    by_account = service.list_page(TransactionQuery(search="rainy day", limit=100))
    assert by_account.total == 9


def test_sorting_by_amount_and_account() -> None:
    session = make_session()
    user, *_, cache, _, _ = seed(session)
    service = TransactionService(session, user.id, cache)

    by_amount = service.list_page(TransactionQuery(sort="amount", direction="desc", limit=100))
    top = by_amount.items[0]
    assert top.type == TransactionType.income
    assert top.amount_cents == 2_100
    assert by_amount.items[-1].amount_cents == 2_500
    assert by_amount.items[-1].type == TransactionType.expense

    by_account = service.list_page(TransactionQuery(sort="account", direction="asc", limit=100))
    names = [t.account.name for t in by_account.items]
    assert names == sorted(names)


def test_empty_result_has_no_pages() -> None:
    session = make_session()
    user, *_, cache, _, _ = seed(session)

    page = TransactionService(session, user.id, cache).list_page(
        TransactionQuery(search="no such thing")
    )

    assert page.items == []
    assert page.meta() == {
        "page": 1,
        "limit": 20,
        "total": 0,
        "total_pages": 0,
        "has_next": False,
        "has_prev": False,
    }


def test_search_treats_percent_and_backslash_literally() -> None:
    session = make_session()
    user, *_, cache, checking, _ = seed(session)
    service = TransactionService(session, user.id, cache)
    for description in ("Fees 100% refunded", "Path C:\\temp"):
        service.create(
            TransactionIn(
                account_id=checking.id,
                amount_cents=100,
                type=TransactionType.expense,
                category=TransactionCategory.other_expense,
                description=description,
                date=date(2026, 3, 5),
            )
        )

    percent = service.list_page(TransactionQuery(search="%"))
    backslash = service.list_page(TransactionQuery(search="c:\\t"))

    assert [t.description for t in percent.items] == ["Fees 100% refunded"]
    assert [t.description for t in backslash.items] == ["Path C:\\temp"]
