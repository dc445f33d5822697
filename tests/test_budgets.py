from datetime import date, datetime

import pytest
from pydantic import ValidationError

from models import Transaction, TransactionType, User
from periods import month_window, resolve_period
from schemas import BudgetIn
from services import BudgetService, NotFoundError


def _txn(user_id: int, on: date, amount: int, category: str, kind=TransactionType.expense):
    return Transaction(
        user_id=user_id,
        date=on,
        occurred_at=datetime.combine(on, datetime.min.time()),
        type=kind,
        amount_cents=amount,
        category=category,
    )


def _user(session) -> User:
    user = User(name="Ada", email="ada@example.com")
    session.add(user)
    session.commit()
    return user


def test_month_window_is_half_open():
    window = month_window(2024, 12)
    assert window.start == date(2024, 12, 1)
    assert window.end == date(2025, 1, 1)
    assert window.contains(date(2024, 12, 31))
    assert not window.contains(date(2025, 1, 1))
    with pytest.raises(ValueError):
        month_window(2024, 13)


def test_resolve_custom_period_includes_end_day():
    period = resolve_period("custom", "2024-02-01", "2024-02-29", today=date(2024, 6, 1))
    assert period.end == date(2024, 3, 1)
    last = resolve_period("last_month", None, None, today=date(2024, 1, 15))
    assert (last.start, last.end) == (date(2023, 12, 1), date(2024, 1, 1))


def test_progress_counts_only_days_inside_the_month(session):
    user = _user(session)
    session.add_all(
        [
            _txn(user.id, date(2024, 1, 31), 8_000, "food"),
            _txn(user.id, date(2024, 2, 1), 1_000, "food"),
            _txn(user.id, date(2024, 2, 29), 2_000, "food"),
            _txn(user.id, date(2024, 3, 1), 4_000, "food"),
            _txn(user.id, date(2024, 2, 10), 500, "travel"),
            _txn(user.id, date(2024, 2, 10), 9_999, "other_income", TransactionType.income),
        ]
    )
    session.commit()
    service = BudgetService(session, user.id)
    service.upsert(BudgetIn(category="Food", limit_cents=10_000, month=2, year=2024))

    (progress,) = service.get_progress(2, 2024)

    assert progress.category == "food"
    assert progress.spent_cents == 3_000
    assert progress.remaining_cents == 7_000
    assert progress.percent_used == 30.0


def test_progress_reports_overspend_and_unspent_budgets(session):
    user = _user(session)
    session.add(_txn(user.id, date(2024, 4, 3), 15_000, "housing"))
    session.commit()
    service = BudgetService(session, user.id)
    service.upsert(BudgetIn(category="housing", limit_cents=10_000, month=4, year=2024))
    service.upsert(BudgetIn(category="education", limit_cents=2_000, month=4, year=2024))

    progress = {p.category: p for p in service.get_progress(4, 2024)}

    assert progress["housing"].remaining_cents == -5_000
    assert progress["housing"].percent_used == 150.0
    assert progress["education"].spent_cents == 0


def test_no_budgets_means_empty_progress(session):
    user = _user(session)
    assert BudgetService(session, user.id).get_progress(7, 2024) == []


def test_upsert_updates_existing_budget(session):
    user = _user(session)
    service = BudgetService(session, user.id)
    first = service.upsert(BudgetIn(category="food", limit_cents=100, month=5, year=2024))
    second = service.upsert(BudgetIn(category="food", limit_cents=250, month=5, year=2024))

    assert first.id == second.id
    assert [b.limit_cents for b in service.list_for_month(5, 2024)] == [250]

    budget_id = first.id
    service.delete(budget_id)
    assert service.list_for_month(5, 2024) == []
    with pytest.raises(NotFoundError):
        service.delete(budget_id)


def test_budget_category_must_be_an_expense_category():
    with pytest.raises(ValidationError):
        BudgetIn(category="salary", limit_cents=100, month=1, year=2024)
    with pytest.raises(ValidationError):
        BudgetIn(category="food", limit_cents=100, month=13, year=2024)
