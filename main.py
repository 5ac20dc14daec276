import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from sqlalchemy.orm import Session

from analytics import AnalyticsService
from config import get_settings
from database import SessionLocal, init_db
from models import TransactionType
from periods import resolve_period
from repository import (
    AccountFilter,
    NotFound,
    SqlAlchemyRepository,
    parse_account_filter,
)
from schemas import (
    AccountIn,
    CategoryIn,
    RecurringIn,
    TransactionIn,
    TransferIn,
)
from services import (
    AccountService,
    CategoryService,
    RecurringService,
    TransactionService,
)


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Personal Finance")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_analytics(db: Session = Depends(get_db)) -> AnalyticsService:
    return AnalyticsService(SqlAlchemyRepository(db))


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info(f"startup: timezone={get_settings().timezone}")


def accounts_from_request(request: Request) -> AccountFilter:
    try:
        return parse_account_filter(request.query_params.get("accounts", "all"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _http_error(exc: ValueError) -> HTTPException:
    status = 404 if isinstance(exc, NotFound) else 400
    return HTTPException(status_code=status, detail=str(exc))


# Analytics. Every endpoint answers with a {data, error} envelope.


@app.get("/api/analytics/income-expense")
def api_income_expense(
    request: Request,
    period: str = "month",
    analytics: AnalyticsService = Depends(get_analytics),
):
    return analytics.income_expense_by_month(accounts_from_request(request), period)


@app.get("/api/analytics/top-spending")
def api_top_spending(
    request: Request,
    period: str = "month",
    limit: Optional[int] = None,
    analytics: AnalyticsService = Depends(get_analytics),
):
    return analytics.top_spending_categories(
        accounts_from_request(request), period, limit
    )


@app.get("/api/analytics/expense-categories")
def api_expense_categories(
    request: Request,
    period: str = "month",
    analytics: AnalyticsService = Depends(get_analytics),
):
    return analytics.expense_categories_data(accounts_from_request(request), period)


@app.get("/api/analytics/cash-flow")
def api_cash_flow(
    request: Request, analytics: AnalyticsService = Depends(get_analytics)
):
    return analytics.cash_flow(accounts_from_request(request))


@app.get("/api/analytics/budget-progress")
def api_budget_progress(
    request: Request,
    period: str = "month",
    analytics: AnalyticsService = Depends(get_analytics),
):
    return analytics.budget_progress(accounts_from_request(request), period)


@app.get("/api/analytics/monthly-comparison")
def api_monthly_comparison(
    request: Request, analytics: AnalyticsService = Depends(get_analytics)
):
    return analytics.monthly_comparison(accounts_from_request(request))


@app.get("/api/analytics/monthly-breakdown")
def api_monthly_breakdown(
    request: Request,
    period: str = "month",
    analytics: AnalyticsService = Depends(get_analytics),
):
    return analytics.monthly_breakdown(accounts_from_request(request), period)


@app.get("/api/analytics/period-totals")
def api_period_totals(
    request: Request,
    period: str = "month",
    analytics: AnalyticsService = Depends(get_analytics),
):
    return analytics.period_totals(accounts_from_request(request), period)


@app.get("/api/analytics/net-worth")
def api_net_worth(
    request: Request, analytics: AnalyticsService = Depends(get_analytics)
):
    return analytics.net_worth(accounts_from_request(request))


@app.get("/api/analytics/upcoming-payments")
def api_upcoming_payments(
    request: Request,
    details: bool = False,
    analytics: AnalyticsService = Depends(get_analytics),
):
    accounts = accounts_from_request(request)
    if details:
        return analytics.upcoming_payments(accounts)
    return analytics.upcoming_count(accounts)


# Accounts


@app.get("/api/accounts")
def api_accounts(db: Session = Depends(get_db)):
    return [
        {"id": a.id, "name": a.name, "balance": str(a.balance)}
        for a in AccountService(db).list()
    ]


@app.post("/api/accounts", status_code=201)
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    account = AccountService(db).create(data)
    return {"id": account.id, "name": account.name, "balance": str(account.balance)}


@app.put("/api/accounts/{account_id}")
def api_update_account(
    account_id: int, data: AccountIn, db: Session = Depends(get_db)
):
    try:
        account = AccountService(db).update(account_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"id": account.id, "name": account.name, "balance": str(account.balance)}


@app.delete("/api/accounts/{account_id}", status_code=204)
def api_delete_account(account_id: int, db: Session = Depends(get_db)):
    try:
        AccountService(db).delete(account_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


# Categories


def _category_json(category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "budget_amount": (
            str(category.budget_amount) if category.budget_amount is not None else None
        ),
        "budget_frequency": (
            category.budget_frequency.value if category.budget_frequency else None
        ),
    }


@app.get("/api/categories")
def api_categories(
    txn_type: Optional[TransactionType] = Query(default=None, alias="type"),
    db: Session = Depends(get_db),
):
    return [_category_json(c) for c in CategoryService(db).list(txn_type)]


@app.post("/api/categories", status_code=201)
def api_create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = CategoryService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _category_json(category)


@app.put("/api/categories/{category_id}")
def api_update_category(
    category_id: int, data: CategoryIn, db: Session = Depends(get_db)
):
    try:
        category = CategoryService(db).update(category_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _category_json(category)


@app.delete("/api/categories/{category_id}", status_code=204)
def api_delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


# Transactions and transfers


def _transaction_json(txn) -> dict:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "category_id": txn.category_id,
        "type": txn.type.value,
        "amount": str(txn.amount),
        "date": txn.date.isoformat(),
        "description": txn.description,
        "is_transfer": txn.is_transfer,
        "transfer_pair_id": txn.transfer_pair_id,
    }


@app.get("/api/transactions")
def api_transactions(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    db: Session = Depends(get_db),
):
    accounts = accounts_from_request(request)
    try:
        period = resolve_period(request.query_params.get("period", "all"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    items = TransactionService(db).list(
        accounts, period, limit=limit + 1, offset=(page - 1) * limit
    )
    return {
        "items": [_transaction_json(txn) for txn in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": len(items) > limit,
    }


@app.post("/api/transactions", status_code=201)
def api_create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _transaction_json(txn)


@app.put("/api/transactions/{transaction_id}")
def api_update_transaction(
    transaction_id: int, data: TransactionIn, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).update(transaction_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _transaction_json(txn)


@app.delete("/api/transactions/{transaction_id}")
def api_delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        deleted = TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"deleted": deleted}


@app.post("/api/transfers", status_code=201)
def api_create_transfer(data: TransferIn, db: Session = Depends(get_db)):
    try:
        withdrawal, deposit = TransactionService(db).create_transfer(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "withdrawal": _transaction_json(withdrawal),
        "deposit": _transaction_json(deposit),
    }


# Recurring definitions


def _recurring_json(item) -> dict:
    return {
        "id": item.id,
        "account_id": item.account_id,
        "category_id": item.category_id,
        "name": item.name,
        "description": item.description,
        "type": item.type.value,
        "amount": str(item.amount),
        "start_date": item.start_date.isoformat(),
        "end_date": item.end_date.isoformat() if item.end_date else None,
        "frequency": item.frequency.value,
        "is_active": item.is_active,
    }


@app.get("/api/recurring")
def api_recurring(request: Request, db: Session = Depends(get_db)):
    accounts = accounts_from_request(request)
    return [_recurring_json(item) for item in RecurringService(db).list(accounts)]


@app.post("/api/recurring", status_code=201)
def api_create_recurring(data: RecurringIn, db: Session = Depends(get_db)):
    try:
        item = RecurringService(db).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _recurring_json(item)


@app.put("/api/recurring/{recurring_id}")
def api_update_recurring(
    recurring_id: int, data: RecurringIn, db: Session = Depends(get_db)
):
    try:
        item = RecurringService(db).update(recurring_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _recurring_json(item)


@app.post("/api/recurring/{recurring_id}/toggle")
def api_toggle_recurring(
    recurring_id: int, is_active: bool, db: Session = Depends(get_db)
):
    try:
        item = RecurringService(db).set_active(recurring_id, is_active)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _recurring_json(item)


@app.delete("/api/recurring/{recurring_id}", status_code=204)
def api_delete_recurring(recurring_id: int, db: Session = Depends(get_db)):
    try:
        RecurringService(db).delete(recurring_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/recurring/{recurring_id}/occurrences")
def api_recurring_occurrences(
    recurring_id: int,
    start: date,
    end: date,
    analytics: AnalyticsService = Depends(get_analytics),
):
    return analytics.recurring_occurrences(recurring_id, start, end)
