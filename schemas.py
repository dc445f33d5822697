import datetime as dt
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import AccountKind, Frequency, TransactionType, normalize_category


class UserIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    currency: str = Field(default="USD", min_length=3, max_length=3)
    cash_cents: int = Field(default=0, ge=0)
    checking_balance_cents: Optional[int] = Field(default=None, ge=0)
    checking_name: Optional[str] = Field(default=None, max_length=100)
    savings_balance_cents: Optional[int] = Field(default=None, ge=0)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class PreferencesIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class AccountIn(BaseModel):
    kind: AccountKind
    name: Optional[str] = Field(default=None, max_length=100)
    initial_balance_cents: int = 0


class AccountUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, max_length=100)


class TransferIn(BaseModel):
    # None on either side means the cash pool.
    from_account_id: Optional[int] = None
    to_account_id: Optional[int] = None
    amount_cents: int = Field(..., gt=0)
    note: Optional[str] = Field(default=None, max_length=200)
    date: Optional[dt.date] = None

    @model_validator(mode="after")
    def _distinct_sides(self) -> "TransferIn":
        if self.from_account_id == self.to_account_id:
            raise ValueError("Transfer source and destination must differ")
        return self


class TransactionIn(BaseModel):
    date: date
    occurred_at: Optional[datetime] = None
    type: TransactionType
    amount_cents: int = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=40)
    note: Optional[str] = Field(default=None, max_length=200)
    account_id: Optional[int] = None

    @model_validator(mode="after")
    def _known_category(self) -> "TransactionIn":
        self.category = normalize_category(self.type, self.category)
        return self


class RecurringRuleIn(BaseModel):
    type: TransactionType
    amount_cents: int = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=40)
    note: Optional[str] = Field(default=None, max_length=200)
    frequency: Frequency
    start_date: date
    end_date: Optional[date] = None
    active: bool = True
    account_id: Optional[int] = None

    @model_validator(mode="after")
    def _check(self) -> "RecurringRuleIn":
        self.category = normalize_category(self.type, self.category)
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


class RecurringRuleUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    amount_cents: Optional[int] = Field(default=None, gt=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=40)
    note: Optional[str] = Field(default=None, max_length=200)
    frequency: Optional[Frequency] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    active: Optional[bool] = None
    account_id: Optional[int] = None


class RuleActiveIn(BaseModel):
    active: bool


class BudgetIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=40)
    limit_cents: int = Field(..., gt=0)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=3000)

    @field_validator("category")
    @classmethod
    def _expense_category(cls, value: str) -> str:
        return normalize_category(TransactionType.expense, value)


class GoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    target_cents: int = Field(..., gt=0)
    deadline: Optional[date] = None


class GoalUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    target_cents: Optional[int] = Field(default=None, gt=0)
    deadline: Optional[date] = None


class AmountIn(BaseModel):
    amount_cents: int = Field(..., gt=0)


class DebtIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., gt=0)
    interest_rate: float = Field(default=0.0, ge=0, le=1000)
    due_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class DebtUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    interest_rate: Optional[float] = Field(default=None, ge=0, le=1000)
    due_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class SalaryAllocationIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    needs_percent: int = Field(default=50, ge=0, le=100)
    savings_percent: int = Field(default=30, ge=0, le=100)
    wants_percent: int = Field(default=20, ge=0, le=100)
    post: bool = False
    date: Optional[dt.date] = None
    # Where the salary lands (None = cash) and where the savings share goes.
    account_id: Optional[int] = None
    savings_account_id: Optional[int] = None

    @model_validator(mode="after")
    def _sums_to_hundred(self) -> "SalaryAllocationIn":
        total = self.needs_percent + self.savings_percent + self.wants_percent
        if total != 100:
            raise ValueError("Allocation percentages must sum to 100")
        return self

    @model_validator(mode="after")
    def _distinct_accounts(self) -> "SalaryAllocationIn":
        savings_id = self.savings_account_id
        if savings_id is not None and savings_id == self.account_id:
            raise ValueError("Savings account must differ from the salary account")
        return self
