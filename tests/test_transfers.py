from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from database import Base, build_engine
from models import Account, Frequency, Transaction, TransactionType
from repository import NotFound
from schemas import CategoryIn, RecurringIn, TransactionIn, TransferIn
from services import (
    AccountService,
    CategoryService,
    RecurringService,
    TransactionService,
)


def make_session():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _accounts(session):
    checking = Account(name="Checking", balance=Decimal("500"))
    savings = Account(name="Savings", balance=Decimal("0"))
    session.add_all([checking, savings])
    session.commit()
    return checking, savings


def test_transfer_creates_linked_pair() -> None:
    session = make_session()
    checking, savings = _accounts(session)
    txns = TransactionService(session)

    withdrawal, deposit = txns.create_transfer(
        TransferIn(
            from_account_id=checking.id,
            to_account_id=savings.id,
            amount=Decimal("250"),
            date=date(2025, 3, 1),
            description="Rainy day",
        )
    )

    assert withdrawal.type == TransactionType.expense
    assert withdrawal.account_id == checking.id
    assert deposit.type == TransactionType.income
    assert deposit.account_id == savings.id
    assert withdrawal.is_transfer and deposit.is_transfer
    assert withdrawal.transfer_pair_id == deposit.id
    assert deposit.transfer_pair_id == withdrawal.id
    assert withdrawal.amount == deposit.amount == Decimal("250")


def test_deleting_either_half_removes_the_pair() -> None:
    session = make_session()
    checking, savings = _accounts(session)
    txns = TransactionService(session)
    withdrawal, deposit = txns.create_transfer(
        TransferIn(
            from_account_id=checking.id,
            to_account_id=savings.id,
            amount=Decimal("40"),
            date=date(2025, 3, 1),
        )
    )

    deleted = txns.delete(deposit.id)

    assert sorted(deleted) == sorted([withdrawal.id, deposit.id])
    assert session.scalars(select(Transaction)).all() == []


def test_transfer_rejects_same_account_and_missing_account() -> None:
    session = make_session()
    checking, _ = _accounts(session)
    with pytest.raises(ValidationError):
        TransferIn(
            from_account_id=checking.id,
            to_account_id=checking.id,
            amount=Decimal("10"),
            date=date(2025, 3, 1),
        )
    with pytest.raises(NotFound):
        TransactionService(session).create_transfer(
            TransferIn(
                from_account_id=checking.id,
                to_account_id=999,
                amount=Decimal("10"),
                date=date(2025, 3, 1),
            )
        )
    assert session.scalars(select(Transaction)).all() == []


def test_transfers_cannot_be_edited() -> None:
    session = make_session()
    checking, savings = _accounts(session)
    txns = TransactionService(session)
    withdrawal, _ = txns.create_transfer(
        TransferIn(
            from_account_id=checking.id,
            to_account_id=savings.id,
            amount=Decimal("10"),
            date=date(2025, 3, 1),
        )
    )
    with pytest.raises(ValueError, match="Transfers"):
        txns.update(
            withdrawal.id,
            TransactionIn(
                account_id=checking.id,
                type=TransactionType.expense,
                amount=Decimal("12"),
                date=date(2025, 3, 1),
            ),
        )


def test_plain_transaction_delete_returns_single_id() -> None:
    session = make_session()
    checking, _ = _accounts(session)
    txns = TransactionService(session)
    txn = txns.create(
        TransactionIn(
            account_id=checking.id,
            type=TransactionType.expense,
            amount=Decimal("9.99"),
            date=date(2025, 3, 2),
            description="  Coffee  ",
        )
    )
    assert txn.description == "Coffee"
    assert txns.delete(txn.id) == [txn.id]


def test_category_type_must_match_transaction() -> None:
    session = make_session()
    checking, _ = _accounts(session)
    salary = CategoryService(session).create(
        CategoryIn(name="Salary", type=TransactionType.income)
    )
    with pytest.raises(ValueError, match="mismatch"):
        TransactionService(session).create(
            TransactionIn(
                account_id=checking.id,
                category_id=salary.id,
                type=TransactionType.expense,
                amount=Decimal("5"),
                date=date(2025, 3, 2),
            )
        )


def test_category_budget_requires_frequency() -> None:
    with pytest.raises(ValidationError):
        CategoryIn(
            name="Groceries",
            type=TransactionType.expense,
            budget_amount=Decimal("300"),
        )

    cleared = CategoryIn(
        name="Groceries",
        type=TransactionType.expense,
        budget_amount=Decimal("0"),
        budget_frequency=Frequency.monthly,
    )
    assert cleared.budget_amount is None
    assert cleared.budget_frequency is None


def test_duplicate_category_is_rejected() -> None:
    session = make_session()
    categories = CategoryService(session)
    categories.create(CategoryIn(name="Fun", type=TransactionType.expense))
    with pytest.raises(ValueError, match="already exists"):
        categories.create(CategoryIn(name=" Fun ", type=TransactionType.expense))


def test_recurring_toggle_and_date_order() -> None:
    session = make_session()
    checking, _ = _accounts(session)
    with pytest.raises(ValidationError):
        RecurringIn(
            account_id=checking.id,
            name="Gym",
            type=TransactionType.expense,
            amount=Decimal("20"),
            start_date=date(2025, 3, 1),
            end_date=date(2025, 2, 1),
        )

    service = RecurringService(session)
    item = service.create(
        RecurringIn(
            account_id=checking.id,
            name="Gym",
            type=TransactionType.expense,
            amount=Decimal("20"),
            start_date=date(2025, 3, 1),
        )
    )
    assert item.frequency == Frequency.monthly
    assert service.set_active(item.id, False).is_active is False
    with pytest.raises(NotFound):
        service.get(999)


def test_deleting_account_cascades_to_its_transactions() -> None:
    session = make_session()
    checking, _ = _accounts(session)
    TransactionService(session).create(
        TransactionIn(
            account_id=checking.id,
            type=TransactionType.income,
            amount=Decimal("100"),
            date=date(2025, 3, 2),
        )
    )
    AccountService(session).delete(checking.id)
    assert session.scalars(select(Transaction)).all() == []


def test_deleting_account_removes_transfer_partner_in_other_account() -> None:
    session = make_session()
    checking, savings = _accounts(session)
    txns = TransactionService(session)
    txns.create_transfer(
        TransferIn(
            from_account_id=checking.id,
            to_account_id=savings.id,
            amount=Decimal("75"),
            date=date(2025, 3, 1),
        )
    )
    kept = txns.create(
        TransactionIn(
            account_id=savings.id,
            type=TransactionType.income,
            amount=Decimal("5"),
            date=date(2025, 3, 3),
        )
    )

    AccountService(session).delete(checking.id)

    remaining = session.scalars(select(Transaction)).all()
    assert [row.id for row in remaining] == [kept.id]
    assert remaining[0].transfer_pair_id is None
    assert session.get(Account, savings.id) is not None


def test_category_update_rejects_duplicate_name() -> None:
    session = make_session()
    categories = CategoryService(session)
    categories.create(CategoryIn(name="Fun", type=TransactionType.expense))
    travel = categories.create(CategoryIn(name="Travel", type=TransactionType.expense))

    with pytest.raises(ValueError, match="already exists"):
        categories.update(
            travel.id, CategoryIn(name="Fun", type=TransactionType.expense)
        )
    renamed = categories.update(
        travel.id, CategoryIn(name=" Trips ", type=TransactionType.expense)
    )
    assert renamed.name == "Trips"


def test_category_type_is_locked_while_in_use() -> None:
    session = make_session()
    checking, _ = _accounts(session)
    categories = CategoryService(session)
    bonus = categories.create(CategoryIn(name="Bonus", type=TransactionType.income))
    spare = categories.create(CategoryIn(name="Spare", type=TransactionType.income))
    RecurringService(session).create(
        RecurringIn(
            account_id=checking.id,
            category_id=bonus.id,
            name="Quarterly bonus",
            type=TransactionType.income,
            amount=Decimal("500"),
            start_date=date(2025, 1, 1),
        )
    )

    with pytest.raises(ValueError, match="in use"):
        categories.update(
            bonus.id, CategoryIn(name="Bonus", type=TransactionType.expense)
        )
    flipped = categories.update(
        spare.id, CategoryIn(name="Spare", type=TransactionType.expense)
    )
    assert flipped.type == TransactionType.expense


def test_deleting_category_uncategorizes_its_transactions() -> None:
    session = make_session()
    checking, _ = _accounts(session)
    categories = CategoryService(session)
    fun = categories.create(CategoryIn(name="Fun", type=TransactionType.expense))
    txn = TransactionService(session).create(
        TransactionIn(
            account_id=checking.id,
            category_id=fun.id,
            type=TransactionType.expense,
            amount=Decimal("12"),
            date=date(2025, 3, 2),
        )
    )

    categories.delete(fun.id)

    session.refresh(txn)
    assert txn.category_id is None
    with pytest.raises(NotFound):
        categories.get(fun.id)
