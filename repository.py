from collections.abc import Iterable
from typing import Literal, Optional, Protocol, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Account, Category, RecurringDefinition, Transaction
from periods import Period
from schemas import AccountRecord, CategoryRecord, RecurringRecord, TransactionRecord


ALL_ACCOUNTS = "all"

AccountFilter = Union[Literal["all"], frozenset[int]]


class NotFound(ValueError):
    pass


def parse_account_filter(raw: Union[str, Iterable[int], None]) -> AccountFilter:
    """Accept ``"all"``, ``"1,2"`` or an iterable of ids."""
    if raw is None or raw == ALL_ACCOUNTS:
        return ALL_ACCOUNTS
    if isinstance(raw, str):
        parts = [part.strip() for part in raw.split(",") if part.strip()]
        try:
            ids = frozenset(int(part) for part in parts)
        except ValueError as exc:
            raise ValueError(f"Invalid account filter: {raw!r}") from exc
    else:
        ids = frozenset(int(value) for value in raw)
    if not ids:
        raise ValueError("Account filter must be 'all' or at least one account id")
    return ids


class FinanceRepository(Protocol):
    def fetch_transactions(
        self, account_filter: AccountFilter, date_range: Optional[Period] = None
    ) -> list[TransactionRecord]: ...

    def fetch_recurring(
        self, account_filter: AccountFilter
    ) -> list[RecurringRecord]: ...

    def fetch_categories(self) -> list[CategoryRecord]: ...

    def fetch_accounts(self, account_filter: AccountFilter) -> list[AccountRecord]: ...


class SqlAlchemyRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def fetch_transactions(
        self, account_filter: AccountFilter, date_range: Optional[Period] = None
    ) -> list[TransactionRecord]:
        stmt = select(Transaction).order_by(Transaction.date, Transaction.id)
        if account_filter != ALL_ACCOUNTS:
            stmt = stmt.where(Transaction.account_id.in_(account_filter))
        if date_range is not None:
            if date_range.start is not None:
                stmt = stmt.where(Transaction.date >= date_range.start)
            if date_range.end is not None:
                stmt = stmt.where(Transaction.date <= date_range.end)
        rows = self.session.scalars(stmt).all()
        return [TransactionRecord.model_validate(row) for row in rows]

    def fetch_recurring(self, account_filter: AccountFilter) -> list[RecurringRecord]:
        stmt = select(RecurringDefinition).order_by(RecurringDefinition.id)
        if account_filter != ALL_ACCOUNTS:
            stmt = stmt.where(RecurringDefinition.account_id.in_(account_filter))
        rows = self.session.scalars(stmt).all()
        return [RecurringRecord.model_validate(row) for row in rows]

    def fetch_categories(self) -> list[CategoryRecord]:
        rows = self.session.scalars(select(Category).order_by(Category.id)).all()
        return [CategoryRecord.model_validate(row) for row in rows]

    def fetch_accounts(self, account_filter: AccountFilter) -> list[AccountRecord]:
        stmt = select(Account).order_by(Account.id)
        if account_filter != ALL_ACCOUNTS:
            stmt = stmt.where(Account.id.in_(account_filter))
        rows = self.session.scalars(stmt).all()
        return [AccountRecord.model_validate(row) for row in rows]
