from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from models import (
    Account,
    Category,
    RecurringDefinition,
    Transaction,
    TransactionType,
)
from periods import Period
from repository import ALL_ACCOUNTS, AccountFilter, NotFound
from schemas import AccountIn, CategoryIn, RecurringIn, TransactionIn, TransferIn


logger = logging.getLogger(__name__)


def _require_account(session: Session, account_id: int) -> Account:
    account = session.get(Account, account_id)
    if not account:
        raise NotFound("Account not found")
    return account


def _require_category(
    session: Session, category_id: Optional[int], txn_type: TransactionType
) -> Optional[Category]:
    if category_id is None:
        return None
    category = session.get(Category, category_id)
    if not category:
        raise NotFound("Category not found")
    if category.type != txn_type:
        raise ValueError("Category type mismatch")
    return category


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self) -> list[Account]:
        return self.session.scalars(select(Account).order_by(Account.name)).all()

    def get(self, account_id: int) -> Account:
        return _require_account(self.session, account_id)

    def create(self, data: AccountIn) -> Account:
        account = Account(name=data.name.strip(), balance=data.balance)
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountIn) -> Account:
        account = self.get(account_id)
        account.name = data.name.strip()
        account.balance = data.balance
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        """Delete an account with its rows; transfer partners elsewhere go too."""
        account = self.get(account_id)
        own_transfers = self.session.scalars(
            select(Transaction).where(
                Transaction.account_id == account.id,
                Transaction.is_transfer.is_(True),
            )
        ).all()
        partner_ids = {
            txn.transfer_pair_id
            for txn in own_transfers
            if txn.transfer_pair_id is not None
        }
        partners = (
            self.session.scalars(
                select(Transaction).where(
                    Transaction.id.in_(sorted(partner_ids)),
                    Transaction.account_id != account.id,
                )
            ).all()
            if partner_ids
            else []
        )
        removed = sorted(row.id for row in partners)
        try:
            for row in [*own_transfers, *partners]:
                row.transfer_pair_id = None
            self.session.flush()
            for row in partners:
                self.session.delete(row)
            self.session.delete(account)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        if removed:
            logger.info(
                f"account_deleted: id={account_id} transfer_partners={removed}"
            )


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self, txn_type: Optional[TransactionType] = None) -> list[Category]:
        stmt = select(Category).order_by(Category.type, Category.name)
        if txn_type:
            stmt = stmt.where(Category.type == txn_type)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFound("Category not found")
        return category

    def _ensure_unique(
        self, name: str, txn_type: TransactionType, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Category.id).where(
            Category.type == txn_type, Category.name == name
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt) is not None:
            raise ValueError("Category already exists")

    def _in_use(self, category_id: int) -> bool:
        txn = self.session.scalar(
            select(Transaction.id).where(Transaction.category_id == category_id).limit(1)
        )
        if txn is not None:
            return True
        rule = self.session.scalar(
            select(RecurringDefinition.id)
            .where(RecurringDefinition.category_id == category_id)
            .limit(1)
        )
        return rule is not None

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        self._ensure_unique(name, data.type)
        category = Category(
            name=name,
            type=data.type,
            budget_amount=data.budget_amount,
            budget_frequency=data.budget_frequency,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        name = data.name.strip()
        self._ensure_unique(name, data.type, exclude_id=category.id)
        if data.type != category.type and self._in_use(category.id):
            raise ValueError("Category type cannot change while it is in use")
        category.name = name
        category.type = data.type
        category.budget_amount = data.budget_amount
        category.budget_frequency = data.budget_frequency
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        self.session.delete(category)
        self.session.commit()


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(
        self,
        account_filter: AccountFilter = ALL_ACCOUNTS,
        period: Optional[Period] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.account))
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        if account_filter != ALL_ACCOUNTS:
            stmt = stmt.where(Transaction.account_id.in_(account_filter))
        if period is not None:
            if period.start is not None:
                stmt = stmt.where(Transaction.date >= period.start)
            if period.end is not None:
                stmt = stmt.where(Transaction.date <= period.end)
        if limit is not None:
            stmt = stmt.limit(limit).offset(offset)
        return self.session.scalars(stmt).all()

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        _require_account(self.session, data.account_id)
        _require_category(self.session, data.category_id, data.type)
        txn = Transaction(
            account_id=data.account_id,
            category_id=data.category_id,
            type=data.type,
            amount=data.amount,
            date=data.date,
            description=data.description.strip(),
            is_transfer=False,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        if txn.is_transfer:
            raise ValueError("Transfers cannot be edited; delete and recreate them")
        _require_account(self.session, data.account_id)
        _require_category(self.session, data.category_id, data.type)
        txn.account_id = data.account_id
        txn.category_id = data.category_id
        txn.type = data.type
        txn.amount = data.amount
        txn.date = data.date
        txn.description = data.description.strip()
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def create_transfer(self, data: TransferIn) -> tuple[Transaction, Transaction]:
        """Record a withdrawal and its matching deposit as one linked pair."""
        _require_account(self.session, data.from_account_id)
        _require_account(self.session, data.to_account_id)
        description = data.description.strip()
        withdrawal = Transaction(
            account_id=data.from_account_id,
            category_id=None,
            type=TransactionType.expense,
            amount=data.amount,
            date=data.date,
            description=description,
            is_transfer=True,
        )
        deposit = Transaction(
            account_id=data.to_account_id,
            category_id=None,
            type=TransactionType.income,
            amount=data.amount,
            date=data.date,
            description=description,
            is_transfer=True,
        )
        try:
            self.session.add_all([withdrawal, deposit])
            self.session.flush()
            withdrawal.transfer_pair_id = deposit.id
            deposit.transfer_pair_id = withdrawal.id
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(withdrawal)
        self.session.refresh(deposit)
        logger.info(
            f"transfer_created: withdrawal={withdrawal.id} deposit={deposit.id}"
        )
        return withdrawal, deposit

    def delete(self, transaction_id: int) -> list[int]:
        """Delete a transaction; both halves go when it belongs to a transfer."""
        txn = self.get(transaction_id)
        doomed = [txn]
        if txn.is_transfer and txn.transfer_pair_id is not None:
            pair = self.session.get(Transaction, txn.transfer_pair_id)
            if pair is not None:
                doomed.append(pair)
        deleted = [row.id for row in doomed]
        try:
            # Break the mutual references first so neither delete trips the FK.
            for row in doomed:
                row.transfer_pair_id = None
            self.session.flush()
            for row in doomed:
                self.session.delete(row)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        if len(deleted) > 1:
            logger.info(f"transfer_deleted: ids={deleted}")
        return deleted


class RecurringService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(
        self, account_filter: AccountFilter = ALL_ACCOUNTS
    ) -> list[RecurringDefinition]:
        stmt = (
            select(RecurringDefinition)
            .options(joinedload(RecurringDefinition.category))
            .order_by(RecurringDefinition.start_date, RecurringDefinition.id)
        )
        if account_filter != ALL_ACCOUNTS:
            stmt = stmt.where(RecurringDefinition.account_id.in_(account_filter))
        return self.session.scalars(stmt).all()

    def get(self, recurring_id: int) -> RecurringDefinition:
        item = self.session.get(RecurringDefinition, recurring_id)
        if not item:
            raise NotFound("Recurring definition not found")
        return item

    def create(self, data: RecurringIn) -> RecurringDefinition:
        _require_account(self.session, data.account_id)
        _require_category(self.session, data.category_id, data.type)
        item = RecurringDefinition(**data.model_dump())
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    def update(self, recurring_id: int, data: RecurringIn) -> RecurringDefinition:
        item = self.get(recurring_id)
        if data.account_id != item.account_id:
            _require_account(self.session, data.account_id)
        _require_category(self.session, data.category_id, data.type)
        for field, value in data.model_dump().items():
            setattr(item, field, value)
        self.session.commit()
        self.session.refresh(item)
        return item

    def set_active(self, recurring_id: int, is_active: bool) -> RecurringDefinition:
        """Soft enable/disable; projections of inactive items stop immediately."""
        item = self.get(recurring_id)
        item.is_active = is_active
        self.session.commit()
        self.session.refresh(item)
        return item

    def delete(self, recurring_id: int) -> None:
        item = self.get(recurring_id)
        self.session.delete(item)
        self.session.commit()
