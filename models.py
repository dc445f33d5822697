from datetime import date, datetime
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
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class AccountKind(str, Enum):
    checking = "checking"
    savings = "savings"
    other = "other"


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class DebtStatus(str, Enum):
    active = "active"
    paid = "paid"


INCOME_CATEGORIES = ("salary", "freelance", "investment", "other_income", "transfer")
EXPENSE_CATEGORIES = (
    "food",
    "transportation",
    "housing",
    "utilities",
    "entertainment",
    "shopping",
    "healthcare",
    "education",
    "travel",
    "savings",
    "transfer",
    "other_expense",
)
CATEGORIES_BY_TYPE: dict[TransactionType, tuple[str, ...]] = {
    TransactionType.income: INCOME_CATEGORIES,
    TransactionType.expense: EXPENSE_CATEGORIES,
}
TRANSFER_CATEGORY = "transfer"
RECURRING_NOTE_TAG = "[recurring]"


def normalize_category(txn_type: TransactionType, label: str) -> str:
    clean = (label or "").strip().lower()
    if not clean:
        raise ValueError("Category is required")
    if clean not in CATEGORIES_BY_TYPE[TransactionType(txn_type)]:
        raise ValueError(f"Unknown {TransactionType(txn_type).value} category: {label}")
    return clean


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    cash_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    accounts: Mapped[list["Account"]] = relationship(
        "Account", back_populates="user", order_by="Account.id"
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    kind: Mapped[AccountKind] = mapped_column(SAEnum(AccountKind), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(100))
    initial_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    user: Mapped["User"] = relationship("User", back_populates="accounts")

    __table_args__ = (Index("ix_accounts_user_kind", "user_id", "kind"),)

    @property
    def display_name(self) -> str:
        if self.kind == AccountKind.checking and self.name:
            return self.name
        return self.kind.value.capitalize()


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    # NULL means the user's cash pool is the source.
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    origin_rule_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_rules.id", ondelete="SET NULL")
    )
    occurrence_date: Mapped[Optional[date]] = mapped_column(Date)

    account: Mapped[Optional["Account"]] = relationship("Account")
    origin_rule: Mapped[Optional["RecurringRule"]] = relationship(
        "RecurringRule", back_populates="transactions"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "origin_rule_id",
            "occurrence_date",
            name="uq_txn_origin_occurrence",
        ),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category", "date"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        Index("ix_transactions_account", "account_id"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )

    @property
    def is_system_generated(self) -> bool:
        return self.origin_rule_id is not None


class RecurringRule(Base, TimestampMixin):
    __tablename__ = "recurring_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    next_occurrence: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="origin_rule"
    )

    __table_args__ = (
        Index("ix_rules_active_next", "active", "next_occurrence"),
        Index("ix_rules_user_next", "user_id", "next_occurrence"),
        CheckConstraint("amount_cents >= 0", name="ck_rule_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "category", "month", "year", name="uq_budget_user_category_month"
        ),
        CheckConstraint("limit_cents >= 0", name="ck_budget_limit_positive"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month_range"),
        Index("ix_budgets_user_month", "user_id", "year", "month"),
    )


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deadline: Mapped[Optional[date]] = mapped_column(Date)
    # Explicit allocation order; assigned on create, never reused.
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_goal_user_name"),
        CheckConstraint("target_cents > 0", name="ck_goal_target_positive"),
        Index("ix_goals_user_position", "user_id", "position", "id"),
    )


class Debt(Base, TimestampMixin):
    __tablename__ = "debts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    interest_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    paid_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[DebtStatus] = mapped_column(
        SAEnum(DebtStatus), nullable=False, default=DebtStatus.active
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_debt_amount_positive"),
        CheckConstraint("paid_cents >= 0", name="ck_debt_paid_positive"),
        Index("ix_debts_user", "user_id"),
    )


class BalanceAdjustment(Base, TimestampMixin):
    __tablename__ = "balance_adjustments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    # No FK: the account may be gone, which is why the row exists.
    account_id: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_id: Mapped[Optional[int]] = mapped_column(Integer)
    delta_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(40), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_balance_adjustments_pending", "user_id", "resolved_at"),
    )
