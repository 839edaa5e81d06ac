from datetime import datetime

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import InvalidReferenceError, NotFoundError, ValidationFailedError
from models import Category, GoalContribution, GoalPriority, TransactionType, new_id
from schemas import ContributionIn, CurrencyIn, GoalIn, GoalUpdate
from services import CurrencyService, GoalService

DEADLINE = datetime(2027, 6, 1)


def _goal_in(**overrides) -> GoalIn:
    data = {"name": "Emergency fund", "target_amount": 1000, "deadline": DEADLINE}
    data.update(overrides)
    return GoalIn(**data)


def test_contributions_never_push_past_target() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        service = GoalService(session, user_id)
        goal = service.create(_goal_in())

        for amount in (300, 300, 250, 500, 75):
            goal, contribution = service.add_contribution(
                goal.id, ContributionIn(amount=amount)
            )
            assert 0 <= goal.current_amount <= goal.target_amount
            assert contribution.amount == amount

        assert goal.current_amount == 1000
        assert len(goal.contributions) == 5
        assert service.list(status="completed")[0].id == goal.id


@pytest.mark.parametrize(
    "amount", [0, -10, float("nan"), float("inf"), "ten", "10", True]
)
def test_contribution_amount_must_be_finite_and_positive(amount) -> None:
    with pytest.raises(ValidationError):
        ContributionIn(amount=amount)


def test_contribution_to_missing_goal_writes_nothing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(NotFoundError):
            GoalService(session, new_id()).add_contribution(
                new_id(), ContributionIn(amount=10)
            )
        assert session.scalars(select(GoalContribution)).all() == []


def test_contribution_records_goal_currency() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        eur = CurrencyService(session, user_id).create(CurrencyIn(code="EUR", rate=0.9))
        service = GoalService(session, user_id)
        goal = service.create(_goal_in(currency=eur.id))

        _goal, contribution = service.add_contribution(
            goal.id, ContributionIn(amount=50, notes="bonus")
        )

        assert contribution.currency_id == eur.id
        assert contribution.notes == "bonus"


def test_create_clamps_current_and_resolves_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        goal = GoalService(session, user_id).create(
            _goal_in(current_amount=1500, category="Savings")
        )

        assert goal.current_amount == 1000
        category = session.scalars(select(Category)).one()
        assert goal.category_id == category.id
        assert category.name == "Savings"
        assert category.type == TransactionType.expense
        assert category.color == "#4ECDC4"
        assert category.icon == "flag"


def test_unknown_currency_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    missing = new_id()

    with Session(engine) as session:
        with pytest.raises(InvalidReferenceError) as excinfo:
            GoalService(session, new_id()).create(_goal_in(currency=missing))
        assert excinfo.value.value == missing


def test_update_is_partial_and_reclamps() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        service = GoalService(session, user_id)
        goal = service.create(_goal_in(current_amount=800, category="Trips"))

        updated = service.update(goal.id, GoalUpdate(target_amount=500))
        assert updated.target_amount == 500
        assert updated.current_amount == 500
        assert updated.name == "Emergency fund"
        assert updated.category is not None

        cleared = service.update(goal.id, GoalUpdate(category=""))
        assert cleared.category_id is None
        assert cleared.category is None


def test_update_rejects_null_for_required_fields() -> None:
    with pytest.raises(ValidationError):
        GoalUpdate(target_amount=None)
    with pytest.raises(ValidationError):
        GoalUpdate(target_amount=0)


def test_list_filters_by_status_and_sorts_by_priority() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        service = GoalService(session, user_id)
        low = service.create(_goal_in(name="Low", priority=GoalPriority.low))
        late_high = service.create(
            _goal_in(
                name="Late", priority=GoalPriority.high, deadline=datetime(2028, 1, 1)
            )
        )
        high = service.create(_goal_in(name="High", priority=GoalPriority.high))
        done = service.create(_goal_in(name="Done", current_amount=1000))

        ordered = [g.id for g in service.list()]
        assert ordered == [high.id, late_high.id, done.id, low.id]
        assert [g.id for g in service.list("completed")] == [done.id]
        assert done.id not in [g.id for g in service.list("active")]

        with pytest.raises(ValidationFailedError):
            service.list("archived")


def test_goals_are_private_to_their_owner() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        goal = GoalService(session, new_id()).create(_goal_in())
        intruder = GoalService(session, new_id())

        with pytest.raises(NotFoundError):
            intruder.get(goal.id)
        with pytest.raises(NotFoundError):
            intruder.add_contribution(goal.id, ContributionIn(amount=10))
        assert intruder.list() == []


def test_delete_removes_goal_and_its_contributions() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    user_id = new_id()

    with Session(engine) as session:
        service = GoalService(session, user_id)
        goal = service.create(_goal_in())
        service.add_contribution(goal.id, ContributionIn(amount=10))

        service.delete(goal.id)

        assert service.list() == []
        assert session.scalars(select(GoalContribution)).all() == []
