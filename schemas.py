import datetime as dt
from datetime import date
from decimal import Decimal
from typing import Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import Frequency, TransactionType


T = TypeVar("T")


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    balance: Decimal = Decimal("0")


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    budget_amount: Optional[Decimal] = None
    budget_frequency: Optional[Frequency] = None

    @model_validator(mode="after")
    def _budget_pair(self) -> "CategoryIn":
        if not self.budget_amount or self.budget_amount <= 0:
            self.budget_amount = None
            self.budget_frequency = None
        elif self.budget_frequency is None:
            raise ValueError(
                "Budget frequency is required when setting a budget amount"
            )
        return self


class TransactionIn(BaseModel):
    account_id: int
    category_id: Optional[int] = None
    type: TransactionType
    amount: Decimal = Field(..., ge=0)
    date: dt.date
    description: str = Field(default="", max_length=200)


class TransferIn(BaseModel):
    from_account_id: int
    to_account_id: int
    amount: Decimal = Field(..., gt=0)
    date: dt.date
    description: str = Field(default="", max_length=200)

    @model_validator(mode="after")
    def _distinct_accounts(self) -> "TransferIn":
        if self.from_account_id == self.to_account_id:
            raise ValueError("Transfer requires two different accounts")
        return self


class RecurringIn(BaseModel):
    account_id: int
    category_id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    start_date: date
    end_date: Optional[date] = None
    frequency: Frequency = Frequency.monthly
    is_active: bool = True

    @model_validator(mode="after")
    def _date_order(self) -> "RecurringIn":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


# Read-only snapshots handed to the analytics engine.


class AccountRecord(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    name: str
    balance: Decimal


class CategoryRecord(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    name: str
    type: TransactionType
    budget_amount: Optional[Decimal] = None
    budget_frequency: Optional[Frequency] = None

    @property
    def has_budget(self) -> bool:
        return (
            self.budget_amount is not None
            and self.budget_amount > 0
            and self.budget_frequency is not None
        )


class TransactionRecord(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    account_id: int
    category_id: Optional[int] = None
    type: TransactionType
    amount: Decimal
    date: dt.date
    description: Optional[str] = None
    is_transfer: bool = False
    transfer_pair_id: Optional[int] = None


class RecurringRecord(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    account_id: int
    category_id: Optional[int] = None
    name: str
    type: TransactionType
    amount: Decimal
    start_date: date
    end_date: Optional[date] = None
    frequency: Frequency
    is_active: bool = True


# Report rows.


class IncomeExpenseRow(BaseModel):
    type: TransactionType
    month: str
    total: Decimal


class CategorySpendRow(BaseModel):
    category_name: str
    total: Decimal
    transaction_count: int


class CashFlowPoint(BaseModel):
    date: dt.date
    net_amount: Decimal
    running_balance: Decimal


class BudgetProgressRow(BaseModel):
    category_id: int
    category_name: str
    budget_amount: Decimal
    budget_frequency: Frequency
    adjusted_budget: Optional[Decimal]
    spent: Decimal
    transaction_count: int
    remaining: Optional[Decimal]
    percent_used: Optional[float]


class MonthlyComparison(BaseModel):
    current_month_expenses: Decimal
    last_month_expenses: Decimal
    percent_change: float
    trend: Literal["higher", "lower"]


class MonthlyBreakdownRow(BaseModel):
    month: str
    transaction_income: Decimal
    transaction_expenses: Decimal
    recurring_income: Decimal
    recurring_expenses: Decimal


class PeriodTotals(BaseModel):
    period: str
    start: Optional[date]
    end: Optional[date]
    income: Decimal
    expenses: Decimal
    net: Decimal


class UpcomingPayment(BaseModel):
    recurring_id: int
    name: str
    amount: Decimal
    due_date: date


class ErrorInfo(BaseModel):
    kind: str
    message: str


class Envelope(BaseModel, Generic[T]):
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None

    @property
    def ok(self) -> bool:
        return self.error is None
