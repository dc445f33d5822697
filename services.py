from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, Optional, Sequence, Union

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from balances import BalanceReconciler, LedgerEntry, ReconcileResult, signed_effect
from models import (
    TRANSFER_CATEGORY,
    Account,
    AccountKind,
    BalanceAdjustment,
    Budget,
    Debt,
    DebtStatus,
    Goal,
    RecurringRule,
    Transaction,
    TransactionType,
    User,
    normalize_category,
)
from periods import Period, month_window
from recurrence import (
    ProcessResult,
    RecurringEngine,
    first_occurrence_after,
    local_today,
)
from schemas import (
    AccountIn,
    AccountUpdateIn,
    BudgetIn,
    DebtIn,
    DebtUpdateIn,
    GoalIn,
    GoalUpdateIn,
    PreferencesIn,
    RecurringRuleIn,
    RecurringRuleUpdateIn,
    SalaryAllocationIn,
    TransactionIn,
    TransferIn,
    UserIn,
)


logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


def _owned(session: Session, model, obj_id: int, user_id: int, label: str):
    obj = session.get(model, obj_id)
    if not obj or obj.user_id != user_id:
        raise NotFoundError(f"{label} not found")
    return obj


def _noon(on_date: date) -> datetime:
    return datetime.combine(on_date, time(12, 0))


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def register(self, data: UserIn) -> User:
        email = data.email.strip().lower()
        existing = self.session.scalar(select(User.id).where(User.email == email))
        if existing:
            raise ValueError("Email is already registered")
        user = User(
            name=data.name.strip(),
            email=email,
            currency=data.currency,
            cash_cents=data.cash_cents,
        )
        self.session.add(user)
        self.session.flush()

        if data.checking_balance_cents is not None:
            self.session.add(
                Account(
                    user_id=user.id,
                    kind=AccountKind.checking,
                    name=(data.checking_name or "").strip() or None,
                    initial_balance_cents=data.checking_balance_cents,
                    balance_cents=data.checking_balance_cents,
                )
            )
        if data.savings_balance_cents is not None:
            self.session.add(
                Account(
                    user_id=user.id,
                    kind=AccountKind.savings,
                    initial_balance_cents=data.savings_balance_cents,
                    balance_cents=data.savings_balance_cents,
                )
            )
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def update_preferences(self, user_id: int, data: PreferencesIn) -> User:
        user = self.get(user_id)
        if data.name is not None:
            user.name = data.name.strip()
        if data.currency is not None:
            user.currency = data.currency.upper()
        self.session.commit()
        self.session.refresh(user)
        return user


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.reconciler = BalanceReconciler(session)

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        return _owned(self.session, Account, account_id, self.user_id, "Account")

    def resolve(self, account_id: Optional[int]) -> Optional[Account]:
        if account_id is None:
            return None
        return self.get(account_id)

    def create(self, data: AccountIn) -> Account:
        name = (data.name or "").strip() or None
        account = Account(
            user_id=self.user_id,
            kind=data.kind,
            name=name if data.kind == AccountKind.checking else None,
            initial_balance_cents=data.initial_balance_cents,
            balance_cents=data.initial_balance_cents,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountUpdateIn) -> Account:
        account = self.get(account_id)
        if data.name is not None:
            if account.kind != AccountKind.checking:
                raise ValueError("Only checking accounts carry a display name")
            account.name = data.name.strip() or None
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        referencing = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.account_id == account.id
            )
        ).scalar_one()
        if referencing:
            raise ValueError("Cannot delete account with existing transactions")
        rules = self.session.execute(
            select(func.count(RecurringRule.id)).where(
                RecurringRule.account_id == account.id
            )
        ).scalar_one()
        if rules:
            raise ValueError("Cannot delete account used by recurring rules")
        self.session.delete(account)
        self.session.commit()

    def transfer(self, data: TransferIn) -> tuple[Transaction, Transaction]:
        user = UserService(self.session).get(self.user_id)
        source = self.resolve(data.from_account_id)
        destination = self.resolve(data.to_account_id)
        self.reconciler.check_sufficient(user, source, data.amount_cents)
        pair = self.post_transfer(
            source,
            destination,
            data.amount_cents,
            note=data.note,
            on_date=data.date or local_today(),
        )
        self.session.commit()
        return pair

    def post_transfer(
        self,
        source: Optional[Account],
        destination: Optional[Account],
        amount_cents: int,
        *,
        note: Optional[str],
        on_date: date,
    ) -> tuple[Transaction, Transaction]:
        """Post both legs of a transfer without committing."""
        label = note or "Account transfer"
        outgoing = Transaction(
            user_id=self.user_id,
            date=on_date,
            occurred_at=_noon(on_date),
            type=TransactionType.expense,
            amount_cents=amount_cents,
            category=TRANSFER_CATEGORY,
            note=label,
            account_id=source.id if source else None,
        )
        incoming = Transaction(
            user_id=self.user_id,
            date=on_date,
            occurred_at=_noon(on_date),
            type=TransactionType.income,
            amount_cents=amount_cents,
            category=TRANSFER_CATEGORY,
            note=label,
            account_id=destination.id if destination else None,
        )
        self.session.add_all([outgoing, incoming])
        self.session.flush()
        self.reconciler.apply_create(outgoing)
        self.reconciler.apply_create(incoming)
        return outgoing, incoming

    def expected_balance(self, account_id: int) -> int:
        return self.reconciler.expected_balance(self.get(account_id))

    def rebuild_balance(self, account_id: int) -> int:
        drift = self.reconciler.rebuild(self.get(account_id))
        self.session.commit()
        return drift


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    account_id: Optional[int] = None
    query: Optional[str] = None


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.reconciler = BalanceReconciler(session)
        self.accounts = AccountService(session, user_id)

    def create(self, data: TransactionIn) -> Transaction:
        user = UserService(self.session).get(self.user_id)
        account = self.accounts.resolve(data.account_id)
        if data.type == TransactionType.expense:
            self.reconciler.check_sufficient(user, account, data.amount_cents)

        txn = Transaction(
            user_id=self.user_id,
            date=data.date,
            occurred_at=data.occurred_at or _noon(data.date),
            type=data.type,
            amount_cents=data.amount_cents,
            category=data.category,
            note=data.note,
            account_id=data.account_id,
        )
        self.session.add(txn)
        self.session.flush()
        self.reconciler.apply_create(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        return _owned(
            self.session, Transaction, transaction_id, self.user_id, "Transaction"
        )

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        old = LedgerEntry.of(txn)
        account = self.accounts.resolve(data.account_id)

        grows = (
            old.type != TransactionType.expense
            or old.account_id != data.account_id
            or data.amount_cents > old.amount_cents
        )
        if data.type == TransactionType.expense and grows:
            credit = 0
            if old.account_id == data.account_id:
                credit = -signed_effect(old.type, old.amount_cents)
            user = UserService(self.session).get(self.user_id)
            self.reconciler.check_sufficient(
                user, account, data.amount_cents, credit_cents=credit
            )

        txn.date = data.date
        txn.occurred_at = data.occurred_at or _noon(data.date)
        txn.type = data.type
        txn.amount_cents = data.amount_cents
        txn.category = data.category
        txn.note = data.note
        txn.account_id = data.account_id
        self.session.flush()
        self.reconciler.apply_update(old, txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.reconciler.apply_delete(txn)
        self.session.delete(txn)
        self.session.commit()

    def list(
        self,
        period: Period,
        filters: Optional[TransactionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date >= period.start,
                Transaction.date < period.end,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category:
            stmt = stmt.where(Transaction.category == filters.category.lower())
        if filters.account_id:
            stmt = stmt.where(Transaction.account_id == filters.account_id)
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(
                func.lower(func.coalesce(Transaction.note, "")).like(like)
            )
        return self.session.scalars(stmt).all()

    def summary(self, period: Period) -> dict[str, object]:
        rows = self.session.execute(
            select(
                Transaction.type,
                Transaction.category,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
                func.count(Transaction.id).label("count"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date >= period.start,
                Transaction.date < period.end,
            )
            .group_by(Transaction.type, Transaction.category)
            .order_by(Transaction.type, func.sum(Transaction.amount_cents).desc())
        ).all()

        income = 0
        expense = 0
        by_category: list[dict[str, object]] = []
        for row in rows:
            total = int(row.total or 0)
            # Transfer legs move money between pools and cancel out.
            if row.category != TRANSFER_CATEGORY:
                if row.type == TransactionType.income:
                    income += total
                else:
                    expense += total
            by_category.append(
                {
                    "type": TransactionType(row.type).value,
                    "category": row.category,
                    "total_cents": total,
                    "count": int(row.count),
                }
            )
        return {
            "start": period.start.isoformat(),
            "end": period.end.isoformat(),
            "income_cents": income,
            "expense_cents": expense,
            "net_cents": income - expense,
            "by_category": by_category,
        }

    def _totals(self, period: Period) -> tuple[int, int]:
        rows = self.session.execute(
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.category != TRANSFER_CATEGORY,
                Transaction.date >= period.start,
                Transaction.date < period.end,
            )
            .group_by(Transaction.type)
        ).all()
        totals = {TransactionType(txn_type): int(total) for txn_type, total in rows}
        return totals.get(TransactionType.income, 0), totals.get(TransactionType.expense, 0)

    def top_categories(
        self, month: int, year: int, limit: int = 3
    ) -> list[dict[str, object]]:
        """Largest expense categories of one calendar month, transfers excluded."""
        if limit < 1:
            raise ValueError("Limit must be at least 1")
        window = month_window(year, month)
        total = func.sum(Transaction.amount_cents)
        rows = self.session.execute(
            select(Transaction.category, total.label("total"))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.category != TRANSFER_CATEGORY,
                Transaction.date >= window.start,
                Transaction.date < window.end,
            )
            .group_by(Transaction.category)
            .order_by(total.desc(), Transaction.category)
            .limit(limit)
        ).all()
        return [
            {"category": row.category, "total_cents": int(row.total)} for row in rows
        ]

    def net_trend(
        self, months: int = 6, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        """Income, expense and net per month for the last ``months`` months, oldest first."""
        if not 1 <= months <= 120:
            raise ValueError("Months must be between 1 and 120")
        today = today or local_today()
        year, month = today.year, today.month
        windows = []
        for _ in range(months):
            windows.append(month_window(year, month))
            year, month = (year - 1, 12) if month == 1 else (year, month - 1)

        trend = []
        for window in reversed(windows):
            income, expense = self._totals(window)
            trend.append(
                {
                    "month": window.start.month,
                    "year": window.start.year,
                    "income_cents": income,
                    "expense_cents": expense,
                    "net_cents": income - expense,
                }
            )
        return trend


class RecurringRuleService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, rule_id: int) -> RecurringRule:
        return _owned(self.session, RecurringRule, rule_id, self.user_id, "Rule")

    def list(self) -> list[RecurringRule]:
        stmt = (
            select(RecurringRule)
            .where(RecurringRule.user_id == self.user_id)
            .order_by(RecurringRule.next_occurrence, RecurringRule.id)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: RecurringRuleIn) -> RecurringRule:
        AccountService(self.session, self.user_id).resolve(data.account_id)
        rule = RecurringRule(
            user_id=self.user_id,
            type=data.type,
            amount_cents=data.amount_cents,
            category=data.category,
            note=data.note,
            frequency=data.frequency,
            start_date=data.start_date,
            next_occurrence=data.start_date,
            end_date=data.end_date,
            active=data.active,
            account_id=data.account_id,
        )
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def update(self, rule_id: int, data: RecurringRuleUpdateIn) -> RecurringRule:
        rule = self.get(rule_id)
        changes = {
            field: value
            for field, value in data.model_dump(exclude_unset=True).items()
            if value is not None or field in {"note", "end_date", "account_id"}
        }
        if "account_id" in changes:
            AccountService(self.session, self.user_id).resolve(changes["account_id"])
        if "type" in changes or "category" in changes:
            changes["category"] = normalize_category(
                changes.get("type", rule.type), changes.get("category", rule.category)
            )
        start_date = changes.get("start_date", rule.start_date)
        end_date = changes.get("end_date", rule.end_date)
        if end_date and end_date < start_date:
            raise ValueError("End date must not be before start date")

        schedule_changed = any(
            field in changes and changes[field] != getattr(rule, field)
            for field in ("frequency", "start_date")
        )
        for field, value in changes.items():
            setattr(rule, field, value)
        if schedule_changed:
            last_posted = self.session.execute(
                select(func.max(Transaction.occurrence_date)).where(
                    Transaction.origin_rule_id == rule.id
                )
            ).scalar_one()
            rule.next_occurrence = first_occurrence_after(rule, last_posted)
            logger.info(
                f"recurring_cursor_reset: rule_id={rule.id} "
                f"next_occurrence={rule.next_occurrence.isoformat()}"
            )
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def toggle(self, rule_id: int, active: bool) -> RecurringRule:
        rule = self.get(rule_id)
        rule.active = active
        self.session.commit()
        self.session.refresh(rule)
        logger.info(f"recurring_rule_toggled: rule_id={rule.id} active={active}")
        return rule

    def delete(self, rule_id: int) -> None:
        rule = self.get(rule_id)
        self.session.delete(rule)
        self.session.commit()

    def process_due(
        self, now: Union[datetime, date, None] = None
    ) -> ProcessResult:
        result = RecurringEngine(self.session).process_user_due(self.user_id, now)
        self.session.commit()
        return result


@dataclass(frozen=True)
class BudgetProgress:
    budget_id: int
    category: str
    limit_cents: int
    spent_cents: int

    @property
    def remaining_cents(self) -> int:
        return self.limit_cents - self.spent_cents

    @property
    def percent_used(self) -> float:
        if self.limit_cents <= 0:
            return 0.0
        return round(self.spent_cents / self.limit_cents * 100, 1)


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_for_month(self, month: int, year: int) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(
                Budget.user_id == self.user_id,
                Budget.month == month,
                Budget.year == year,
            )
            .order_by(Budget.category, Budget.id)
        )
        return self.session.scalars(stmt).all()

    def upsert(self, data: BudgetIn) -> Budget:
        existing = self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id,
                Budget.category == data.category,
                Budget.month == data.month,
                Budget.year == data.year,
            )
        )
        if existing:
            existing.limit_cents = data.limit_cents
            self.session.commit()
            self.session.refresh(existing)
            return existing

        budget = Budget(
            user_id=self.user_id,
            category=data.category,
            limit_cents=data.limit_cents,
            month=data.month,
            year=data.year,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = _owned(self.session, Budget, budget_id, self.user_id, "Budget")
        self.session.delete(budget)
        self.session.commit()

    def spent_by_category(
        self, window: Period, categories: Iterable[str]
    ) -> dict[str, int]:
        stmt = (
            select(
                Transaction.category,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("spent"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.category.in_(list(categories)),
                Transaction.date >= window.start,
                Transaction.date < window.end,
            )
            .group_by(Transaction.category)
        )
        return {row.category: int(row.spent or 0) for row in self.session.execute(stmt)}

    def get_progress(self, month: int, year: int) -> list[BudgetProgress]:
        budgets = self.list_for_month(month, year)
        if not budgets:
            return []
        spent = self.spent_by_category(
            month_window(year, month), {b.category for b in budgets}
        )
        return [
            BudgetProgress(
                budget_id=b.id,
                category=b.category,
                limit_cents=b.limit_cents,
                spent_cents=spent.get(b.category, 0),
            )
            for b in budgets
        ]


@dataclass(frozen=True)
class GoalAllocation:
    goal_id: int
    name: str
    target_cents: int
    current_cents: int
    allocated_cents: int

    @property
    def funded_cents(self) -> int:
        return self.current_cents + self.allocated_cents

    @property
    def needed_cents(self) -> int:
        return max(0, self.target_cents - self.funded_cents)


def allocate_goals(goals: Sequence[Goal], pool_cents: int) -> list[GoalAllocation]:
    """Greedily spread ``pool_cents`` over ``goals`` in the given order."""
    remaining = max(0, pool_cents)
    allocations: list[GoalAllocation] = []
    for goal in goals:
        needed = max(0, goal.target_cents - goal.current_cents)
        allocated = min(needed, remaining)
        remaining -= allocated
        allocations.append(
            GoalAllocation(
                goal_id=goal.id,
                name=goal.name,
                target_cents=goal.target_cents,
                current_cents=goal.current_cents,
                allocated_cents=allocated,
            )
        )
    return allocations


class GoalService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Goal]:
        stmt = (
            select(Goal)
            .where(Goal.user_id == self.user_id)
            .order_by(Goal.position, Goal.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, goal_id: int) -> Goal:
        return _owned(self.session, Goal, goal_id, self.user_id, "Goal")

    def _ensure_unique_name(self, name: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(Goal.id).where(
            Goal.user_id == self.user_id, func.lower(Goal.name) == name.lower()
        )
        if exclude_id is not None:
            stmt = stmt.where(Goal.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError("Goal with this name already exists")

    def create(self, data: GoalIn) -> Goal:
        name = data.name.strip()
        self._ensure_unique_name(name)
        last_position = self.session.execute(
            select(func.coalesce(func.max(Goal.position), 0)).where(
                Goal.user_id == self.user_id
            )
        ).scalar_one()
        goal = Goal(
            user_id=self.user_id,
            name=name,
            target_cents=data.target_cents,
            current_cents=0,
            deadline=data.deadline,
            position=int(last_position) + 1,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def update(self, goal_id: int, data: GoalUpdateIn) -> Goal:
        goal = self.get(goal_id)
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes and changes["name"] is not None:
            changes["name"] = changes["name"].strip()
            self._ensure_unique_name(changes["name"], exclude_id=goal.id)
        for field, value in changes.items():
            if value is None and field != "deadline":
                continue
            setattr(goal, field, value)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def add_funds(self, goal_id: int, amount_cents: int) -> Goal:
        if amount_cents <= 0:
            raise ValueError("Amount must be positive")
        goal = self.get(goal_id)
        self.session.execute(
            update(Goal)
            .where(Goal.id == goal.id)
            .values(current_cents=Goal.current_cents + amount_cents)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()

    def savings_pool(self) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(Account.balance_cents), 0)).where(
                Account.user_id == self.user_id,
                Account.kind == AccountKind.savings,
            )
        ).scalar_one()
        return max(0, int(total or 0))

    def get_allocations(self) -> list[GoalAllocation]:
        return allocate_goals(self.list_all(), self.savings_pool())


class DebtService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Debt]:
        stmt = (
            select(Debt)
            .where(Debt.user_id == self.user_id)
            .order_by(
                case((Debt.status == DebtStatus.active, 0), else_=1),
                Debt.due_date.is_(None),
                Debt.due_date,
                Debt.id,
            )
        )
        return self.session.scalars(stmt).all()

    def get(self, debt_id: int) -> Debt:
        return _owned(self.session, Debt, debt_id, self.user_id, "Debt")

    def create(self, data: DebtIn) -> Debt:
        debt = Debt(
            user_id=self.user_id,
            name=data.name.strip(),
            amount_cents=data.amount_cents,
            interest_rate=data.interest_rate,
            due_date=data.due_date,
            notes=data.notes,
            paid_cents=0,
            status=DebtStatus.active,
        )
        self.session.add(debt)
        self.session.commit()
        self.session.refresh(debt)
        return debt

    def update(self, debt_id: int, data: DebtUpdateIn) -> Debt:
        debt = self.get(debt_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None and field in {"name", "amount_cents", "interest_rate"}:
                continue
            setattr(debt, field, value)
        self._settle(debt)
        self.session.commit()
        self.session.refresh(debt)
        return debt

    def pay(self, debt_id: int, amount_cents: int) -> Debt:
        if amount_cents <= 0:
            raise ValueError("Amount must be positive")
        debt = self.get(debt_id)
        debt.paid_cents += amount_cents
        self._settle(debt)
        self.session.commit()
        self.session.refresh(debt)
        return debt

    def delete(self, debt_id: int) -> None:
        debt = self.get(debt_id)
        self.session.delete(debt)
        self.session.commit()

    @staticmethod
    def _settle(debt: Debt) -> None:
        # Paid is terminal; raising the amount later does not reopen the debt.
        if debt.status == DebtStatus.active and debt.paid_cents >= debt.amount_cents:
            debt.status = DebtStatus.paid


@dataclass(frozen=True)
class SalarySplit:
    needs_cents: int
    savings_cents: int
    wants_cents: int


def split_salary(
    amount_cents: int, needs: int = 50, savings: int = 30, wants: int = 20
) -> SalarySplit:
    if needs + savings + wants != 100:
        raise ValueError("Allocation percentages must sum to 100")
    if min(needs, savings, wants) < 0:
        raise ValueError("Allocation percentages must not be negative")
    needs_cents = amount_cents * needs // 100
    savings_cents = amount_cents * savings // 100
    return SalarySplit(
        needs_cents=needs_cents,
        savings_cents=savings_cents,
        wants_cents=amount_cents - needs_cents - savings_cents,
    )


class SalaryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.accounts = AccountService(session, user_id)

    def allocate(self, data: SalaryAllocationIn) -> tuple[SalarySplit, list[Transaction]]:
        split = split_salary(
            data.amount_cents,
            data.needs_percent,
            data.savings_percent,
            data.wants_percent,
        )
        if not data.post:
            return split, []

        UserService(self.session).get(self.user_id)
        landing = self.accounts.resolve(data.account_id)
        savings = self.accounts.resolve(data.savings_account_id)
        if savings is not None and savings.kind != AccountKind.savings:
            raise ValueError("Savings share must go to a savings account")
        on_date = data.date or local_today()

        salary = Transaction(
            user_id=self.user_id,
            date=on_date,
            occurred_at=_noon(on_date),
            type=TransactionType.income,
            amount_cents=data.amount_cents,
            category="salary",
            note="Salary",
            account_id=landing.id if landing else None,
        )
        self.session.add(salary)
        self.session.flush()
        self.accounts.reconciler.apply_create(salary)
        posted = [salary]

        if savings is not None and split.savings_cents > 0:
            posted.extend(
                self.accounts.post_transfer(
                    landing,
                    savings,
                    split.savings_cents,
                    note="Salary savings share",
                    on_date=on_date,
                )
            )
        self.session.commit()
        return split, posted


class ReconciliationService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id
        self.reconciler = BalanceReconciler(session)

    def pending(self) -> list[BalanceAdjustment]:
        return self.reconciler.pending(self.user_id)

    def retry(self) -> ReconcileResult:
        result = self.reconciler.retry_pending(self.user_id)
        self.session.commit()
        return result
