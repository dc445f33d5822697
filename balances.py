"""Balance reconciliation.

Every change to ``Account.balance_cents`` or ``User.cash_cents`` goes through
:class:`BalanceReconciler`. Changes are issued as SQL increments inside the
caller's session, so the transaction write and the balance write commit
together. Adjustments that cannot be applied because the account is missing
are queued in ``balance_adjustments`` instead of being dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from models import Account, BalanceAdjustment, Transaction, TransactionType, User


logger = logging.getLogger(__name__)


class InsufficientFundsError(ValueError):
    pass


@dataclass(frozen=True)
class LedgerEntry:
    """Snapshot of the balance-relevant fields of a transaction."""

    user_id: int
    account_id: Optional[int]
    type: TransactionType
    amount_cents: int
    transaction_id: Optional[int] = None

    @classmethod
    def of(cls, txn: Transaction) -> "LedgerEntry":
        return cls(
            user_id=txn.user_id,
            account_id=txn.account_id,
            type=TransactionType(txn.type),
            amount_cents=int(txn.amount_cents),
            transaction_id=txn.id,
        )


@dataclass(frozen=True)
class ReconcileResult:
    applied: int
    pending: int


def signed_effect(txn_type: TransactionType, amount_cents: int) -> int:
    if TransactionType(txn_type) == TransactionType.income:
        return amount_cents
    return -amount_cents


class BalanceReconciler:
    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def effect(entry: LedgerEntry) -> int:
        return signed_effect(entry.type, entry.amount_cents)

    def apply_create(self, txn: Transaction) -> Optional[Account]:
        entry = LedgerEntry.of(txn)
        return self._apply(entry, self.effect(entry), "create")

    def apply_update(self, old: LedgerEntry, txn: Transaction) -> Optional[Account]:
        """Reverse ``old`` on its source, then apply ``txn`` on its own source.

        ``old`` must be captured with :meth:`LedgerEntry.of` before the
        transaction is mutated.
        """
        new = LedgerEntry.of(txn)
        self._apply(old, -self.effect(old), "update_reverse")
        return self._apply(new, self.effect(new), "update_apply")

    def apply_delete(self, txn: Transaction) -> Optional[Account]:
        entry = LedgerEntry.of(txn)
        return self._apply(entry, -self.effect(entry), "delete")

    def check_sufficient(
        self,
        user: User,
        account: Optional[Account],
        amount_cents: int,
        *,
        credit_cents: int = 0,
    ) -> None:
        if account is None:
            available = user.cash_cents + credit_cents
            label = "cash"
        else:
            available = account.balance_cents + credit_cents
            label = account.display_name
        if available < amount_cents:
            raise InsufficientFundsError(
                f"Insufficient funds in {label}: "
                f"available {available}, required {amount_cents}"
            )

    def expected_balance(self, account: Account) -> int:
        net = self.session.execute(
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
                Transaction.user_id == account.user_id,
                Transaction.account_id == account.id,
            )
        ).scalar_one()
        return int(account.initial_balance_cents) + int(net or 0)

    def rebuild(self, account: Account) -> int:
        expected = self.expected_balance(account)
        drift = expected - int(account.balance_cents)
        if drift:
            logger.warning(
                f"balance_rebuild: account_id={account.id} "
                f"cached={account.balance_cents} expected={expected}"
            )
            account.balance_cents = expected
            self.session.flush()
        return drift

    def pending(self, user_id: Optional[int] = None) -> list[BalanceAdjustment]:
        stmt = (
            select(BalanceAdjustment)
            .where(BalanceAdjustment.resolved_at.is_(None))
            .order_by(BalanceAdjustment.id)
        )
        if user_id is not None:
            stmt = stmt.where(BalanceAdjustment.user_id == user_id)
        return self.session.scalars(stmt).all()

    def retry_pending(self, user_id: Optional[int] = None) -> ReconcileResult:
        applied = 0
        still_pending = 0
        for adjustment in self.pending(user_id):
            adjustment.attempts += 1
            account = self._load_account(adjustment.user_id, adjustment.account_id)
            if account is None:
                adjustment.last_error = "account not found"
                still_pending += 1
                continue
            self._increment_account(account, adjustment.delta_cents)
            adjustment.resolved_at = datetime.utcnow()
            adjustment.last_error = None
            applied += 1
            logger.info(
                f"balance_adjustment_applied: id={adjustment.id} "
                f"account_id={account.id} delta_cents={adjustment.delta_cents}"
            )
        self.session.flush()
        return ReconcileResult(applied=applied, pending=still_pending)

    def _apply(self, entry: LedgerEntry, delta: int, reason: str) -> Optional[Account]:
        if entry.account_id is None:
            self._increment_cash(entry.user_id, delta)
            return None
        account = self._load_account(entry.user_id, entry.account_id)
        if account is None:
            self._queue(entry, delta, reason)
            return None
        if delta:
            self._increment_account(account, delta)
        return account

    def _load_account(self, user_id: int, account_id: int) -> Optional[Account]:
        account = self.session.get(Account, account_id)
        if account is None or account.user_id != user_id:
            return None
        return account

    def _increment_account(self, account: Account, delta: int) -> None:
        self.session.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(balance_cents=Account.balance_cents + delta)
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(account, attribute_names=["balance_cents"])

    def _increment_cash(self, user_id: int, delta: int) -> None:
        user = self.session.get(User, user_id)
        if user is None:
            raise ValueError("User not found")
        if not delta:
            return
        self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(cash_cents=User.cash_cents + delta)
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(user, attribute_names=["cash_cents"])

    def _queue(self, entry: LedgerEntry, delta: int, reason: str) -> None:
        adjustment = BalanceAdjustment(
            user_id=entry.user_id,
            account_id=entry.account_id,
            transaction_id=entry.transaction_id,
            delta_cents=delta,
            reason=reason,
            attempts=0,
            last_error="account not found",
        )
        self.session.add(adjustment)
        self.session.flush()
        logger.warning(
            f"balance_adjustment_queued: user_id={entry.user_id} "
            f"account_id={entry.account_id} delta_cents={delta} reason={reason}"
        )
