import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from category_resolver import (
    EMPTY,
    ById,
    ByName,
    CategoryResolver,
    parse_category_ref,
)
from database import Base
from errors import InvalidReferenceError
from models import Category, TransactionType, name_key, new_id
from schemas import CategoryIn
from services import CategoryService


def test_parse_category_ref_distinguishes_id_name_and_empty() -> None:
    ident = new_id()

    assert parse_category_ref(None) == EMPTY
    assert parse_category_ref("   ") == EMPTY
    assert parse_category_ref(ident.upper()) == ById(ident)
    assert parse_category_ref("  Groceries ") == ByName("Groceries")
    assert parse_category_ref("abc123") == ByName("abc123")


def test_unknown_name_is_created_once_and_reused() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        resolver = CategoryResolver(session, user_id)
        first = resolver.resolve(ByName("Groceries"), TransactionType.expense)
        session.commit()
        second = resolver.resolve(ByName("groceries"), TransactionType.expense)
        session.commit()

        assert first == second
        categories = session.scalars(select(Category)).all()
        assert len(categories) == 1
        assert categories[0].name == "Groceries"
        assert categories[0].type == TransactionType.expense
        assert categories[0].color == "#F44336"


def test_income_hint_picks_income_color() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        category_id = CategoryResolver(session, new_id()).resolve(
            ByName("Salary"), TransactionType.income
        )
        session.commit()

        category = session.get(Category, category_id)
        assert category.type == TransactionType.income
        assert category.color == "#4CAF50"


def test_empty_reference_resolves_to_nothing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        assert (
            CategoryResolver(session, new_id()).resolve(EMPTY, TransactionType.expense)
            is None
        )
        assert session.scalars(select(Category)).all() == []


def test_unknown_id_is_an_invalid_reference() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    missing = new_id()

    with Session(engine) as session:
        with pytest.raises(InvalidReferenceError) as excinfo:
            CategoryResolver(session, new_id()).resolve(
                ById(missing), TransactionType.expense
            )
        assert excinfo.value.value == missing
        assert session.scalars(select(Category)).all() == []


def test_lookups_are_scoped_to_the_user() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    owner, other = new_id(), new_id()

    with Session(engine) as session:
        food = CategoryService(session, owner).create(
            CategoryIn(name="Food", type=TransactionType.expense)
        )

        with pytest.raises(InvalidReferenceError):
            CategoryResolver(session, other).resolve(
                ById(food.id), TransactionType.expense
            )

        other_food = CategoryResolver(session, other).resolve(
            ByName("Food"), TransactionType.expense
        )
        session.commit()
        assert other_food != food.id


def test_find_never_creates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        resolver = CategoryResolver(session, new_id())
        assert resolver.find(ByName("Travel")) is None
        assert resolver.find(EMPTY) is None
        assert session.scalars(select(Category)).all() == []


def test_storage_rejects_case_variant_duplicates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        for name in ("Food", "food"):
            session.add(
                Category(
                    user_id=user_id,
                    name=name,
                    name_key=name_key(name),
                    type=TransactionType.expense,
                )
            )
        with pytest.raises(IntegrityError):
            session.flush()


def test_lost_create_race_returns_the_winning_row(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        winner = CategoryService(session, user_id).create(
            CategoryIn(name="Rent", type=TransactionType.expense)
        )
        resolver = CategoryResolver(session, user_id)
        lookup = resolver._by_name
        calls = []

        def stale_lookup(name):
            calls.append(name)
            if len(calls) == 1:
                return None
            return lookup(name)

        monkeypatch.setattr(resolver, "_by_name", stale_lookup)

        resolved = resolver.resolve(ByName("rent"), TransactionType.expense)

        assert resolved == winner.id
        assert len(session.scalars(select(Category)).all()) == 1
