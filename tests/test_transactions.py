from datetime import date, datetime

import pytest

from models import Transaction, TransactionType, User
from periods import month_window
from services import TransactionService


def _service(session) -> TransactionService:
    user = User(name="Ada", email="ada@example.com")
    session.add(user)
    session.flush()
    rows = [
        (date(2023, 12, 31), TransactionType.income, 5_000, "salary"),
        (date(2024, 1, 31), TransactionType.income, 1_000, "salary"),
        (date(2024, 2, 29), TransactionType.expense, 999, "food"),
        (date(2024, 3, 1), TransactionType.expense, 100, "food"),
        (date(2024, 3, 10), TransactionType.expense, 700, "transfer"),
        (date(2024, 3, 10), TransactionType.income, 700, "transfer"),
        (date(2024, 3, 15), TransactionType.expense, 50, "transportation"),
        (date(2024, 3, 31), TransactionType.expense, 500, "housing"),
        (date(2024, 4, 1), TransactionType.expense, 999, "housing"),
    ]
    for day, txn_type, amount, category in rows:
        session.add(
            Transaction(
                user_id=user.id,
                date=day,
                occurred_at=datetime.combine(day, datetime.min.time()),
                type=txn_type,
                amount_cents=amount,
                category=category,
            )
        )
    session.commit()
    return TransactionService(session, user.id)


def test_top_categories_stay_inside_the_month(session):
    service = _service(session)

    assert service.top_categories(3, 2024, limit=2) == [
        {"category": "housing", "total_cents": 500},
        {"category": "food", "total_cents": 100},
    ]
    assert [row["category"] for row in service.top_categories(3, 2024)] == [
        "housing",
        "food",
        "transportation",
    ]
    assert service.top_categories(5, 2024) == []
    with pytest.raises(ValueError):
        service.top_categories(13, 2024)


def test_net_trend_is_oldest_first_and_skips_transfers(session):
    service = _service(session)

    trend = service.net_trend(3, today=date(2024, 3, 20))

    assert [(row["year"], row["month"]) for row in trend] == [
        (2024, 1),
        (2024, 2),
        (2024, 3),
    ]
    assert [row["net_cents"] for row in trend] == [1_000, -999, -650]
    assert trend[2]["income_cents"] == 0
    assert trend[2]["expense_cents"] == 650


def test_net_trend_crosses_year_boundary(session):
    service = _service(session)

    trend = service.net_trend(2, today=date(2024, 1, 5))

    assert [(row["year"], row["month"], row["income_cents"]) for row in trend] == [
        (2023, 12, 5_000),
        (2024, 1, 1_000),
    ]
    with pytest.raises(ValueError):
        service.net_trend(0)


def test_summary_totals_leave_out_transfer_legs(session):
    service = _service(session)

    summary = service.summary(month_window(2024, 3))

    assert summary["income_cents"] == 0
    assert summary["expense_cents"] == 650
    assert summary["net_cents"] == -650
    transfers = [row for row in summary["by_category"] if row["category"] == "transfer"]
    assert len(transfers) == 2
