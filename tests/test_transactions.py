from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from category_resolver import ById, ByName
from database import Base
from errors import InvalidReferenceError, NotFoundError, ValidationFailedError
from models import Category, TransactionType, new_id
from periods import resolve_period
from schemas import CardIn, CategoryIn, TransactionIn, TransactionUpdate
from services import (
    CardService,
    CategoryService,
    TransactionFilters,
    TransactionService,
)


def _txn(**overrides) -> TransactionIn:
    data = {
        "amount": 12.5,
        "type": TransactionType.expense,
        "description": "Lunch",
        "date": date(2026, 10, 5),
    }
    data.update(overrides)
    return TransactionIn(**data)


def test_create_with_new_category_name_uses_transaction_type() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        txn = TransactionService(session, user_id).create(
            _txn(amount=2500, type=TransactionType.income, category="Salary")
        )

        assert txn.category.name == "Salary"
        assert txn.category.type == TransactionType.income
        assert txn.category.color == "#4CAF50"


def test_create_matches_existing_category_case_insensitive() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        food = CategoryService(session, user_id).create(
            CategoryIn(name="Food", type=TransactionType.expense)
        )
        by_name = TransactionService(session, user_id).create(_txn(category=" FOOD "))
        by_id = TransactionService(session, user_id).create(_txn(category=food.id))

        assert by_name.category_id == food.id
        assert by_id.category_id == food.id
        assert len(session.scalars(select(Category)).all()) == 1


def test_amount_is_parsed_strictly() -> None:
    assert _txn(amount=-40).amount == 40
    for bad in (0, float("nan"), float("inf"), "lots", "12.5", True):
        with pytest.raises(ValidationError):
            _txn(amount=bad)
    with pytest.raises(ValidationError):
        _txn(amount=-40, type=TransactionType.income)
    with pytest.raises(ValidationError):
        _txn(type="transfer")
    with pytest.raises(ValidationError):
        TransactionIn(amount=10, type=TransactionType.expense)


def test_unknown_references_are_rejected_without_writing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()
    missing = new_id()

    with Session(engine) as session:
        service = TransactionService(session, user_id)
        with pytest.raises(InvalidReferenceError) as excinfo:
            service.create(_txn(category=missing))
        assert excinfo.value.value == missing

        with pytest.raises(InvalidReferenceError):
            service.create(_txn(card=new_id()))

        assert service.list() == []


def test_filter_by_unknown_category_name_returns_nothing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        service = TransactionService(session, user_id)
        service.create(_txn(category="Food"))

        assert service.list(filters=TransactionFilters(category=ByName("Travel"))) == []
        assert service.list(filters=TransactionFilters(category=ById(new_id()))) == []
        assert len(session.scalars(select(Category)).all()) == 1


def test_list_filters_by_category_type_and_dates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        service = TransactionService(session, user_id)
        lunch = service.create(_txn(category="Food", date=date(2026, 10, 5)))
        dinner = service.create(_txn(category="food", date=date(2026, 10, 9)))
        service.create(_txn(category="Travel", date=date(2026, 10, 7)))
        pay = service.create(
            _txn(amount=3000, type=TransactionType.income, date=date(2026, 10, 1))
        )

        food = service.list(filters=TransactionFilters(category=ByName("FOOD")))
        assert [t.id for t in food] == [dinner.id, lunch.id]

        income = service.list(filters=TransactionFilters(type=TransactionType.income))
        assert [t.id for t in income] == [pay.id]

        window = service.list(resolve_period("2026-10-05", "2026-10-07"))
        assert len(window) == 2
        assert all(
            date(2026, 10, 5) <= t.date <= date(2026, 10, 7) for t in window
        )


def test_update_only_touches_given_fields() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        service = TransactionService(session, user_id)
        txn = service.create(_txn(category="Food", notes="with team"))

        updated = service.update(txn.id, TransactionUpdate(amount=-20))

        assert updated.amount == 20
        assert updated.description == "Lunch"
        assert updated.notes == "with team"
        assert updated.category.name == "Food"


def test_update_category_is_always_re_resolved() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        service = TransactionService(session, user_id)
        txn = service.create(_txn(category="Food"))

        moved = service.update(txn.id, TransactionUpdate(category="Groceries"))
        assert moved.category.name == "Groceries"

        cleared = service.update(txn.id, TransactionUpdate(category=""))
        assert cleared.category_id is None
        assert cleared.category is None

        service.update(txn.id, TransactionUpdate(category="Food"))
        nulled = service.update(txn.id, TransactionUpdate(category=None))
        assert nulled.category_id is None


def test_update_rejects_negative_income() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        service = TransactionService(session, user_id)
        txn = service.create(_txn(amount=-15))

        with pytest.raises(ValidationFailedError):
            service.update(
                txn.id, TransactionUpdate(amount=-15, type=TransactionType.income)
            )
        assert service.get(txn.id).type == TransactionType.expense

        with pytest.raises(ValidationError):
            TransactionUpdate(description=None)


def test_card_reference_must_belong_to_user() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    owner, other = new_id(), new_id()

    with Session(engine) as session:
        card = CardService(session, owner).create(CardIn(name="Visa", last_four="4242"))

        txn = TransactionService(session, owner).create(_txn(card=card.id))
        assert txn.card.name == "Visa"

        with pytest.raises(InvalidReferenceError):
            TransactionService(session, other).create(_txn(card=card.id))

        CardService(session, owner).delete(card.id)
        assert TransactionService(session, owner).get(txn.id).card_id is None


def test_transactions_are_private_and_deletable() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    owner = new_id()

    with Session(engine) as session:
        txn = TransactionService(session, owner).create(_txn())
        intruder = TransactionService(session, new_id())

        with pytest.raises(NotFoundError):
            intruder.get(txn.id)
        with pytest.raises(NotFoundError):
            intruder.delete(txn.id)

        TransactionService(session, owner).delete(txn.id)
        with pytest.raises(NotFoundError):
            TransactionService(session, owner).get(txn.id)
