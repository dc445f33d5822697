from datetime import date, datetime

import pytest
from sqlalchemy import select

from balances import BalanceReconciler, InsufficientFundsError
from models import Account, AccountKind, Transaction, TransactionType, User
from schemas import TransactionIn
from services import AccountService, NotFoundError, TransactionService


def _setup(session, cash_cents: int = 0, *balances: int):
    user = User(name="Ada", email="ada@example.com", cash_cents=cash_cents)
    session.add(user)
    session.flush()
    accounts = []
    for balance in balances:
        account = Account(
            user_id=user.id,
            kind=AccountKind.checking,
            initial_balance_cents=balance,
            balance_cents=balance,
        )
        session.add(account)
        accounts.append(account)
    session.commit()
    return user, accounts


def _expense(amount: int, account_id=None, category: str = "food") -> TransactionIn:
    return TransactionIn(
        date=date(2024, 3, 5),
        type="expense",
        amount_cents=amount,
        category=category,
        account_id=account_id,
    )


def test_create_edit_delete_keeps_account_in_step(session):
    user, (account,) = _setup(session, 0, 100)
    service = TransactionService(session, user.id)

    txn = service.create(_expense(30, account.id))
    assert account.balance_cents == 70

    service.update(txn.id, _expense(50, account.id))
    assert account.balance_cents == 50

    service.delete(txn.id)
    assert account.balance_cents == 100
    assert session.scalars(select(Transaction)).all() == []


def test_update_that_moves_account_reverses_old_source(session):
    user, (first, second) = _setup(session, 0, 100, 100)
    service = TransactionService(session, user.id)

    txn = service.create(_expense(40, first.id))
    assert first.balance_cents == 60

    service.update(txn.id, _expense(40, second.id))
    assert first.balance_cents == 100
    assert second.balance_cents == 60


def test_cash_transactions_move_cash_pool(session):
    user, _ = _setup(session, 500)
    service = TransactionService(session, user.id)

    income = service.create(
        TransactionIn(
            date=date(2024, 3, 1), type="income", amount_cents=200, category="salary"
        )
    )
    assert user.cash_cents == 700
    service.create(_expense(100))
    assert user.cash_cents == 600
    service.delete(income.id)
    assert user.cash_cents == 400


def test_balance_matches_ledger_after_mixed_operations(session):
    user, (account,) = _setup(session, 0, 1_000)
    service = TransactionService(session, user.id)
    reconciler = BalanceReconciler(session)

    a = service.create(_expense(120, account.id))
    b = service.create(
        TransactionIn(
            date=date(2024, 3, 6),
            type="income",
            amount_cents=900,
            category="freelance",
            account_id=account.id,
        )
    )
    service.update(a.id, _expense(300, account.id, "travel"))
    service.update(
        b.id,
        TransactionIn(
            date=date(2024, 3, 6),
            type="expense",
            amount_cents=250,
            category="shopping",
            account_id=account.id,
        ),
    )
    service.create(_expense(50, account.id))

    assert account.balance_cents == 1_000 - 300 - 250 - 50
    assert reconciler.expected_balance(account) == account.balance_cents


def test_expense_beyond_balance_is_rejected(session):
    user, (account,) = _setup(session, 0, 100)
    service = TransactionService(session, user.id)

    with pytest.raises(InsufficientFundsError):
        service.create(_expense(150, account.id))
    with pytest.raises(InsufficientFundsError):
        service.create(_expense(1))

    assert account.balance_cents == 100
    assert session.scalars(select(Transaction)).all() == []


def test_edit_may_reuse_funds_of_the_original_expense(session):
    user, (account,) = _setup(session, 0, 100)
    service = TransactionService(session, user.id)

    txn = service.create(_expense(80, account.id))
    service.update(txn.id, _expense(90, account.id))
    assert account.balance_cents == 10

    with pytest.raises(InsufficientFundsError):
        service.update(txn.id, _expense(120, account.id))
    assert account.balance_cents == 10


def test_foreign_account_is_not_found(session):
    user, _ = _setup(session, 100)
    other = User(name="Bob", email="bob@example.com")
    session.add(other)
    session.flush()
    foreign = Account(user_id=other.id, kind=AccountKind.savings, balance_cents=500)
    session.add(foreign)
    session.commit()

    with pytest.raises(NotFoundError):
        TransactionService(session, user.id).create(_expense(10, foreign.id))


def test_missing_account_adjustment_is_queued_then_retried(session):
    user, _ = _setup(session, 0)
    txn = Transaction(
        user_id=user.id,
        date=date(2024, 3, 1),
        occurred_at=datetime(2024, 3, 1, 12, 0),
        type=TransactionType.expense,
        amount_cents=25,
        category="food",
        account_id=999,
    )
    session.add(txn)
    session.flush()

    reconciler = BalanceReconciler(session)
    reconciler.apply_create(txn)
    session.commit()

    (queued,) = reconciler.pending(user.id)
    assert queued.delta_cents == -25
    assert queued.reason == "create"
    assert user.cash_cents == 0

    first = reconciler.retry_pending()
    assert first.applied == 0
    assert first.pending == 1

    session.add(
        Account(
            id=999,
            user_id=user.id,
            kind=AccountKind.checking,
            initial_balance_cents=100,
            balance_cents=100,
        )
    )
    session.flush()
    second = reconciler.retry_pending(user.id)
    session.commit()

    assert second.applied == 1
    assert reconciler.pending() == []
    assert session.get(Account, 999).balance_cents == 75


def test_rebuild_restores_drifted_balance(session):
    user, (account,) = _setup(session, 0, 100)
    TransactionService(session, user.id).create(_expense(30, account.id))
    account.balance_cents = 10
    session.commit()

    accounts = AccountService(session, user.id)
    assert accounts.expected_balance(account.id) == 70
    assert accounts.rebuild_balance(account.id) == 60
    assert account.balance_cents == 70
    assert accounts.rebuild_balance(account.id) == 0
