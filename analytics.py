import logging
from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal
from functools import wraps
from typing import Callable, Optional, Union

from budgeting import adjust_budget
from models import TransactionType
from periods import (
    InvalidPeriod,
    Period,
    add_months,
    local_today,
    month_bounds,
    resolve_period,
)
from recurrence import iter_dates, next_occurrence, occurrences_in_window
from repository import (
    ALL_ACCOUNTS,
    AccountFilter,
    FinanceRepository,
    NotFound,
    parse_account_filter,
)
from schemas import (
    AccountRecord,
    BudgetProgressRow,
    CashFlowPoint,
    CategoryRecord,
    CategorySpendRow,
    Envelope,
    ErrorInfo,
    IncomeExpenseRow,
    MonthlyBreakdownRow,
    MonthlyComparison,
    PeriodTotals,
    RecurringRecord,
    TransactionRecord,
    UpcomingPayment,
)


logger = logging.getLogger(__name__)

AccountsArg = Union[str, Iterable[int]]

UNCATEGORIZED = "Uncategorized"
UPCOMING_WINDOW_DAYS = 5
ZERO = Decimal("0")

BREAKDOWN_MONTHS = {
    "month": 1,
    "quarter": 3,
    "year": 12,
    "rolling_year": 12,
}


def _total(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def _month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def _active(
    recurring: Iterable[RecurringRecord], txn_type: TransactionType
) -> list[RecurringRecord]:
    return [item for item in recurring if item.is_active and item.type == txn_type]


def projected_total(
    recurring: Iterable[RecurringRecord],
    txn_type: TransactionType,
    start: date,
    end: date,
) -> Decimal:
    """Amount x occurrence count for every active definition of ``txn_type``."""
    return _total(
        item.amount * len(occurrences_in_window(item, start, end))
        for item in _active(recurring, txn_type)
    )


def income_expense_rows(
    transactions: Iterable[TransactionRecord], period: Period
) -> list[IncomeExpenseRow]:
    totals: dict[tuple[str, TransactionType], Decimal] = {}
    for txn in transactions:
        if not period.contains(txn.date):
            continue
        key = (_month_key(txn.date), txn.type)
        totals[key] = totals.get(key, ZERO) + txn.amount
    return [
        IncomeExpenseRow(type=txn_type, month=month, total=total)
        for (month, txn_type), total in sorted(
            totals.items(), key=lambda item: (item[0][0], item[0][1].value)
        )
    ]


def category_spend_rows(
    transactions: Iterable[TransactionRecord],
    recurring: Iterable[RecurringRecord],
    categories: Iterable[CategoryRecord],
    period: Period,
) -> list[CategorySpendRow]:
    """Recorded expenses in ``period`` plus every active recurring expense.

    Recurring definitions are counted once each, whether or not an
    occurrence falls inside the period.
    """
    names = {category.id: category.name for category in categories}
    amounts: list[tuple[Optional[int], Decimal]] = [
        (txn.category_id, txn.amount)
        for txn in transactions
        if txn.type == TransactionType.expense and period.contains(txn.date)
    ]
    amounts.extend(
        (item.category_id, item.amount)
        for item in _active(recurring, TransactionType.expense)
    )

    totals: dict[str, Decimal] = {}
    counts: dict[str, int] = {}
    for category_id, amount in amounts:
        name = names.get(category_id, UNCATEGORIZED)
        totals[name] = totals.get(name, ZERO) + amount
        counts[name] = counts.get(name, 0) + 1

    rows = [
        CategorySpendRow(
            category_name=name, total=total, transaction_count=counts[name]
        )
        for name, total in totals.items()
        if total > 0
    ]
    rows.sort(key=lambda row: (-row.total, row.category_name))
    return rows


def cash_flow_points(
    transactions: Iterable[TransactionRecord], start: date, end: date
) -> list[CashFlowPoint]:
    net_by_day: dict[date, Decimal] = {}
    for txn in transactions:
        signed = txn.amount if txn.type == TransactionType.income else -txn.amount
        net_by_day[txn.date] = net_by_day.get(txn.date, ZERO) + signed

    points: list[CashFlowPoint] = []
    running = ZERO
    for day in iter_dates(start, end):
        net = net_by_day.get(day, ZERO)
        running += net
        points.append(CashFlowPoint(date=day, net_amount=net, running_balance=running))
    return points


def budget_progress_rows(
    categories: Iterable[CategoryRecord],
    transactions: Iterable[TransactionRecord],
    recurring: Iterable[RecurringRecord],
    period: Period,
) -> list[BudgetProgressRow]:
    """Spending against each category budget scaled to ``period``.

    For ``all`` only recorded transactions count. For every other period the
    full amount of each active recurring expense is added on top of the
    recorded transactions in the window, regardless of occurrence dates.
    """
    include_recurring = period.slug != "all"
    expenses = [
        txn
        for txn in transactions
        if txn.type == TransactionType.expense and period.contains(txn.date)
    ]
    recurring_expenses = (
        _active(recurring, TransactionType.expense) if include_recurring else []
    )

    rows: list[BudgetProgressRow] = []
    for category in categories:
        if not category.has_budget:
            continue
        amounts = [txn.amount for txn in expenses if txn.category_id == category.id]
        amounts.extend(
            item.amount
            for item in recurring_expenses
            if item.category_id == category.id
        )
        spent = _total(amounts)
        adjusted = adjust_budget(
            category.budget_amount, category.budget_frequency, period.slug
        )
        remaining = adjusted - spent if adjusted is not None else None
        percent_used = (
            float(spent / adjusted * 100)
            if adjusted is not None and adjusted > 0
            else None
        )
        rows.append(
            BudgetProgressRow(
                category_id=category.id,
                category_name=category.name,
                budget_amount=category.budget_amount,
                budget_frequency=category.budget_frequency,
                adjusted_budget=adjusted,
                spent=spent,
                transaction_count=len(amounts),
                remaining=remaining,
                percent_used=percent_used,
            )
        )

    if include_recurring:
        rows.sort(key=lambda row: (-(row.percent_used or 0.0), row.category_name))
    else:
        rows.sort(key=lambda row: (-row.spent, row.category_name))
    return rows


def compare_months(current: Decimal, last: Decimal) -> MonthlyComparison:
    if last == 0:
        percent_change = 0.0
    else:
        percent_change = float((current - last) / last * 100)
    return MonthlyComparison(
        current_month_expenses=current,
        last_month_expenses=last,
        percent_change=percent_change,
        trend="higher" if percent_change >= 0 else "lower",
    )


def find_upcoming(
    recurring: Iterable[RecurringRecord],
    today: date,
    *,
    window_days: int = UPCOMING_WINDOW_DAYS,
) -> list[UpcomingPayment]:
    window_end = today + timedelta(days=window_days - 1)
    upcoming: list[UpcomingPayment] = []
    for item in _active(recurring, TransactionType.expense):
        if today <= item.start_date <= window_end:
            due = item.start_date
        elif item.start_date <= today and (
            item.end_date is None or item.end_date >= today
        ):
            due = next_occurrence(item, today, window_end)
            if due is None:
                continue
        else:
            continue
        upcoming.append(
            UpcomingPayment(
                recurring_id=item.id, name=item.name, amount=item.amount, due_date=due
            )
        )
    upcoming.sort(key=lambda payment: (payment.due_date, payment.name))
    return upcoming


def _error_kind(exc: Exception) -> str:
    if isinstance(exc, InvalidPeriod):
        return "InvalidPeriod"
    if isinstance(exc, NotFound):
        return "NotFound"
    return "Error"


def enveloped(func: Callable) -> Callable[..., Envelope]:
    @wraps(func)
    def wrapper(self, *args, **kwargs) -> Envelope:
        try:
            return Envelope(data=func(self, *args, **kwargs))
        except (InvalidPeriod, NotFound) as exc:
            logger.warning(f"analytics_rejected: operation={func.__name__} error={exc}")
            return Envelope(error=ErrorInfo(kind=_error_kind(exc), message=str(exc)))
        except Exception as exc:
            logger.exception(f"analytics_failed: operation={func.__name__}")
            return Envelope(error=ErrorInfo(kind=_error_kind(exc), message=str(exc)))

    return wrapper


class AnalyticsService:
    """Read-only reports over repository snapshots.

    Every public method returns an ``Envelope`` and never raises.
    """

    def __init__(
        self,
        repository: FinanceRepository,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.repository = repository
        self._today = today or local_today

    def _scope(
        self, account_filter: Union[str, Iterable[int], None]
    ) -> tuple[AccountFilter, list[AccountRecord]]:
        parsed = parse_account_filter(account_filter)
        accounts = self.repository.fetch_accounts(parsed)
        if parsed != ALL_ACCOUNTS:
            missing = parsed - {account.id for account in accounts}
            if missing:
                raise NotFound(f"Account not found: {sorted(missing)}")
        return parsed, accounts

    @enveloped
    def income_expense_by_month(
        self, account_filter: AccountsArg = ALL_ACCOUNTS, period: str = "month"
    ) -> list[IncomeExpenseRow]:
        scope, _ = self._scope(account_filter)
        window = resolve_period(period, today=self._today())
        transactions = self.repository.fetch_transactions(scope, window)
        return income_expense_rows(transactions, window)

    def _category_spend(
        self, account_filter: AccountsArg, period: str
    ) -> list[CategorySpendRow]:
        scope, _ = self._scope(account_filter)
        window = resolve_period(period, today=self._today())
        return category_spend_rows(
            self.repository.fetch_transactions(scope, window),
            self.repository.fetch_recurring(scope),
            self.repository.fetch_categories(),
            window,
        )

    @enveloped
    def top_spending_categories(
        self,
        account_filter: AccountsArg = ALL_ACCOUNTS,
        period: str = "month",
        limit: Optional[int] = None,
    ) -> list[CategorySpendRow]:
        rows = self._category_spend(account_filter, period)
        return rows[:limit] if limit is not None else rows

    @enveloped
    def expense_categories_data(
        self, account_filter: AccountsArg = ALL_ACCOUNTS, period: str = "month"
    ) -> list[CategorySpendRow]:
        return self._category_spend(account_filter, period)

    @enveloped
    def cash_flow(
        self, account_filter: AccountsArg = ALL_ACCOUNTS
    ) -> list[CashFlowPoint]:
        # Always the trailing calendar month, whatever period other reports use.
        scope, _ = self._scope(account_filter)
        today = self._today()
        start = add_months(today, -1, desired_day=today.day)
        window = Period("cash_flow", start, today)
        transactions = self.repository.fetch_transactions(scope, window)
        return cash_flow_points(
            (txn for txn in transactions if window.contains(txn.date)),
            window.start,
            window.end,
        )

    @enveloped
    def budget_progress(
        self, account_filter: AccountsArg = ALL_ACCOUNTS, period: str = "month"
    ) -> list[BudgetProgressRow]:
        scope, _ = self._scope(account_filter)
        window = resolve_period(period, today=self._today())
        return budget_progress_rows(
            self.repository.fetch_categories(),
            self.repository.fetch_transactions(scope, window),
            self.repository.fetch_recurring(scope),
            window,
        )

    @enveloped
    def monthly_comparison(
        self, account_filter: AccountsArg = ALL_ACCOUNTS
    ) -> MonthlyComparison:
        scope, _ = self._scope(account_filter)
        today = self._today()
        this_start, this_end = month_bounds(today.year, today.month)
        last_day_prev = this_start - timedelta(days=1)
        last_start, last_end = month_bounds(last_day_prev.year, last_day_prev.month)

        transactions = self.repository.fetch_transactions(
            scope, Period("comparison", last_start, this_end)
        )
        recurring = self.repository.fetch_recurring(scope)

        def month_total(start: date, end: date) -> Decimal:
            recorded = _total(
                txn.amount
                for txn in transactions
                if txn.type == TransactionType.expense and start <= txn.date <= end
            )
            return recorded + projected_total(
                recurring, TransactionType.expense, start, end
            )

        return compare_months(
            month_total(this_start, this_end), month_total(last_start, last_end)
        )

    @enveloped
    def net_worth(self, account_filter: AccountsArg = ALL_ACCOUNTS) -> Decimal:
        _, accounts = self._scope(account_filter)
        return _total(account.balance for account in accounts)

    def _upcoming(
        self, account_filter: AccountsArg, today: Optional[date]
    ) -> list[UpcomingPayment]:
        scope, _ = self._scope(account_filter)
        return find_upcoming(
            self.repository.fetch_recurring(scope), today or self._today()
        )

    @enveloped
    def upcoming_count(
        self,
        account_filter: AccountsArg = ALL_ACCOUNTS,
        today: Optional[date] = None,
    ) -> int:
        return len(self._upcoming(account_filter, today))

    @enveloped
    def upcoming_payments(
        self,
        account_filter: AccountsArg = ALL_ACCOUNTS,
        today: Optional[date] = None,
    ) -> list[UpcomingPayment]:
        return self._upcoming(account_filter, today)

    @enveloped
    def period_totals(
        self, account_filter: AccountsArg = ALL_ACCOUNTS, period: str = "month"
    ) -> PeriodTotals:
        scope, _ = self._scope(account_filter)
        window = resolve_period(period, today=self._today())
        transactions = [
            txn
            for txn in self.repository.fetch_transactions(scope, window)
            if window.contains(txn.date)
        ]
        income = _total(
            txn.amount for txn in transactions if txn.type == TransactionType.income
        )
        expenses = _total(
            txn.amount for txn in transactions if txn.type == TransactionType.expense
        )
        return PeriodTotals(
            period=window.slug,
            start=window.start,
            end=window.end,
            income=income,
            expenses=expenses,
            net=income - expenses,
        )

    @enveloped
    def monthly_breakdown(
        self, account_filter: AccountsArg = ALL_ACCOUNTS, period: str = "month"
    ) -> list[MonthlyBreakdownRow]:
        scope, _ = self._scope(account_filter)
        today = self._today()
        transactions = self.repository.fetch_transactions(scope)
        recurring = self.repository.fetch_recurring(scope)

        if period == "all":
            oldest = min((txn.date for txn in transactions), default=today)
            months = max(
                (today.year - oldest.year) * 12 + today.month - oldest.month + 1, 1
            )
        elif period in BREAKDOWN_MONTHS:
            months = BREAKDOWN_MONTHS[period]
        else:
            raise InvalidPeriod(f"Unsupported period for monthly breakdown: {period!r}")

        rows: list[MonthlyBreakdownRow] = []
        for offset in range(months - 1, -1, -1):
            anchor = add_months(today, -offset, desired_day=1)
            start, end = month_bounds(anchor.year, anchor.month)
            in_month = [txn for txn in transactions if start <= txn.date <= end]
            rows.append(
                MonthlyBreakdownRow(
                    month=_month_key(start),
                    transaction_income=_total(
                        txn.amount
                        for txn in in_month
                        if txn.type == TransactionType.income
                    ),
                    transaction_expenses=_total(
                        txn.amount
                        for txn in in_month
                        if txn.type == TransactionType.expense
                    ),
                    recurring_income=projected_total(
                        recurring, TransactionType.income, start, end
                    ),
                    recurring_expenses=projected_total(
                        recurring, TransactionType.expense, start, end
                    ),
                )
            )
        return rows

    @enveloped
    def recurring_occurrences(
        self, recurring_id: int, start: date, end: date
    ) -> list[date]:
        for item in self.repository.fetch_recurring(ALL_ACCOUNTS):
            if item.id == recurring_id:
                return occurrences_in_window(item, start, end)
        raise NotFound(f"Recurring definition not found: {recurring_id}")
