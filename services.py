from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError
from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from category_resolver import (
    DEFAULT_COLORS,
    DEFAULT_ICON,
    EMPTY,
    GOAL_CATEGORY_COLOR,
    GOAL_CATEGORY_ICON,
    CategoryRef,
    CategoryResolver,
    Empty,
    is_valid_id,
)
from errors import (
    InvalidReferenceError,
    NotFoundError,
    UnauthorizedError,
    ValidationFailedError,
)
from models import (
    Card,
    Category,
    Currency,
    Goal,
    GoalContribution,
    GoalPriority,
    Transaction,
    TransactionType,
    User,
    name_key,
    utcnow,
)
from periods import ALL_TIME, Period
from schemas import (
    CardIn,
    CardUpdate,
    CategoryIn,
    CategoryUpdate,
    ContributionIn,
    CurrencyIn,
    CurrencyUpdate,
    GoalIn,
    GoalUpdate,
    TransactionIn,
    TransactionUpdate,
    UserIn,
    normalize_amount,
)

logger = logging.getLogger(__name__)

_hasher = PasswordHasher()


def _owned_id(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    return value.lower() if is_valid_id(value) else value


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: CategoryRef = EMPTY


class CategoryService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, type: Optional[TransactionType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if type:
            stmt = stmt.where(Category.type == type)
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: str) -> Category:
        category = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id, Category.id == _owned_id(category_id)
            )
        )
        if not category:
            raise NotFoundError("Category not found")
        return category

    def _name_taken(self, name: str, exclude_id: Optional[str] = None) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id, Category.name_key == name_key(name)
        )
        if exclude_id:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def create(self, data: CategoryIn) -> Category:
        if self._name_taken(data.name):
            raise ValidationFailedError(
                "Category with this name already exists",
                [{"field": "name", "message": f'"{data.name}" is already in use'}],
            )
        category = Category(
            user_id=self.user_id,
            name=data.name,
            name_key=name_key(data.name),
            type=data.type,
            color=data.color or DEFAULT_COLORS[data.type],
            icon=data.icon or DEFAULT_ICON,
            budget=data.budget,
        )
        self.session.add(category)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationFailedError(
                "Category with this name already exists"
            ) from exc
        self.session.refresh(category)
        return category

    def update(self, category_id: str, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        fields = data.model_fields_set
        if "name" in fields:
            clean_name = data.name.strip()
            if self._name_taken(clean_name, exclude_id=category.id):
                raise ValidationFailedError(
                    "Category with this name already exists",
                    [{"field": "name", "message": f'"{clean_name}" is already in use'}],
                )
            category.name = clean_name
            category.name_key = name_key(clean_name)
        if "type" in fields:
            category.type = data.type
        if "color" in fields:
            category.color = data.color
        if "icon" in fields:
            category.icon = data.icon
        if "budget" in fields:
            category.budget = data.budget
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationFailedError(
                "Category with this name already exists"
            ) from exc
        self.session.refresh(category)
        return category

    def delete(self, category_id: str) -> None:
        category = self.get(category_id)
        self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.category_id == category.id,
            )
            .values(category_id=None)
        )
        self.session.execute(
            update(Goal)
            .where(Goal.user_id == self.user_id, Goal.category_id == category.id)
            .values(category_id=None)
        )
        self.session.delete(category)
        self.session.commit()


class CardService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Card]:
        stmt = select(Card).where(Card.user_id == self.user_id).order_by(Card.name)
        return list(self.session.scalars(stmt).all())

    def get(self, card_id: str) -> Card:
        card = self.session.scalar(
            select(Card).where(
                Card.user_id == self.user_id, Card.id == _owned_id(card_id)
            )
        )
        if not card:
            raise NotFoundError("Card not found")
        return card

    def reference(self, raw: Optional[str]) -> Optional[str]:
        card_id = _owned_id(raw)
        if card_id is None:
            return None
        try:
            return self.get(card_id).id
        except NotFoundError as exc:
            raise InvalidReferenceError(
                f'Card with id "{raw}" was not found', raw
            ) from exc

    def create(self, data: CardIn) -> Card:
        card = Card(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            last_four=data.last_four,
            credit_limit=data.credit_limit,
            color=data.color,
        )
        self.session.add(card)
        self.session.commit()
        self.session.refresh(card)
        return card

    def update(self, card_id: str, data: CardUpdate) -> Card:
        card = self.get(card_id)
        for field in data.model_fields_set:
            value = getattr(data, field)
            if field == "name":
                value = value.strip()
            setattr(card, field, value)
        self.session.commit()
        self.session.refresh(card)
        return card

    def delete(self, card_id: str) -> None:
        card = self.get(card_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.user_id == self.user_id, Transaction.card_id == card.id)
            .values(card_id=None)
        )
        self.session.delete(card)
        self.session.commit()


class CurrencyService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Currency]:
        stmt = (
            select(Currency)
            .where(Currency.user_id == self.user_id)
            .order_by(Currency.is_base.desc(), Currency.code)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, currency_id: str) -> Currency:
        currency = self.session.scalar(
            select(Currency).where(
                Currency.user_id == self.user_id,
                Currency.id == _owned_id(currency_id),
            )
        )
        if not currency:
            raise NotFoundError("Currency not found")
        return currency

    def base(self) -> Optional[Currency]:
        return self.session.scalar(
            select(Currency).where(
                Currency.user_id == self.user_id, Currency.is_base.is_(True)
            )
        )

    def reference(self, raw: Optional[str]) -> Optional[str]:
        currency_id = _owned_id(raw)
        if currency_id is None:
            return None
        try:
            return self.get(currency_id).id
        except NotFoundError as exc:
            raise InvalidReferenceError(
                f'Currency with id "{raw}" was not found', raw
            ) from exc

    def _code_taken(self, code: str, exclude_id: Optional[str] = None) -> bool:
        stmt = select(Currency.id).where(
            Currency.user_id == self.user_id, Currency.code == code
        )
        if exclude_id:
            stmt = stmt.where(Currency.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def _clear_base(self, keep_id: Optional[str] = None) -> None:
        stmt = (
            update(Currency)
            .where(Currency.user_id == self.user_id, Currency.is_base.is_(True))
            .values(is_base=False)
            .execution_options(synchronize_session="fetch")
        )
        if keep_id:
            stmt = stmt.where(Currency.id != keep_id)
        self.session.execute(stmt)
        self.session.flush()

    def _commit(self, code: str) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationFailedError(
                "Currency conflicts with a saved currency",
                [{"field": "code", "message": f'"{code}" is already in use'}],
            ) from exc

    def create(self, data: CurrencyIn) -> Currency:
        if self._code_taken(data.code):
            raise ValidationFailedError(
                "Currency with this code already exists",
                [{"field": "code", "message": f'"{data.code}" is already in use'}],
            )
        if data.is_base:
            self._clear_base()
        currency = Currency(
            user_id=self.user_id,
            code=data.code,
            symbol=data.symbol,
            name=data.name,
            rate=data.rate,
            is_base=data.is_base,
        )
        self.session.add(currency)
        self._commit(data.code)
        self.session.refresh(currency)
        return currency

    def update(self, currency_id: str, data: CurrencyUpdate) -> Currency:
        currency = self.get(currency_id)
        fields = data.model_fields_set
        if "code" in fields and self._code_taken(data.code, exclude_id=currency.id):
            raise ValidationFailedError(
                "Currency with this code already exists",
                [{"field": "code", "message": f'"{data.code}" is already in use'}],
            )
        if data.is_base:
            self._clear_base(keep_id=currency.id)
        for field in fields:
            setattr(currency, field, getattr(data, field))
        self._commit(currency.code)
        self.session.refresh(currency)
        return currency

    def delete(self, currency_id: str) -> None:
        currency = self.get(currency_id)
        self.session.execute(
            update(Goal)
            .where(Goal.user_id == self.user_id, Goal.currency_id == currency.id)
            .values(currency_id=None)
        )
        self.session.execute(
            update(GoalContribution)
            .where(GoalContribution.currency_id == currency.id)
            .values(currency_id=None)
        )
        self.session.delete(currency)
        self.session.commit()


class TransactionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _base_query(self):
        return (
            select(Transaction)
            .options(joinedload(Transaction.category), joinedload(Transaction.card))
            .where(Transaction.user_id == self.user_id)
        )

    def list(
        self,
        period: Period = ALL_TIME,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = self._base_query().order_by(
            Transaction.date.desc(), Transaction.created_at.desc()
        )
        if period.start is not None:
            stmt = stmt.where(Transaction.date >= period.start)
        if period.end is not None:
            stmt = stmt.where(Transaction.date <= period.end)
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if not isinstance(filters.category, Empty):
            category = CategoryResolver(self.session, self.user_id).find(
                filters.category
            )
            if category is None:
                return []
            stmt = stmt.where(Transaction.category_id == category.id)
        return list(self.session.scalars(stmt).all())

    def get(self, transaction_id: str) -> Transaction:
        txn = self.session.scalar(
            self._base_query().where(Transaction.id == _owned_id(transaction_id))
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        card_id = CardService(self.session, self.user_id).reference(data.card)
        category_id = CategoryResolver(self.session, self.user_id).resolve(
            data.category_ref, data.type
        )
        txn = Transaction(
            user_id=self.user_id,
            amount=data.amount,
            type=data.type,
            description=data.description.strip(),
            category_id=category_id,
            card_id=card_id,
            date=data.date or utcnow().date(),
            notes=data.notes,
        )
        self.session.add(txn)
        self.session.commit()
        return self.get(txn.id)

    def update(self, transaction_id: str, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        fields = data.model_fields_set
        new_type = data.type if "type" in fields else txn.type

        # resolve references before touching txn; a name race rolls the session back
        card_id = txn.card_id
        if "card" in fields:
            card_id = CardService(self.session, self.user_id).reference(data.card)
        category_id = txn.category_id
        if "category" in fields:
            category_id = CategoryResolver(self.session, self.user_id).resolve(
                data.category_ref, new_type
            )

        if "amount" in fields or "type" in fields:
            amount = data.amount if "amount" in fields else txn.amount
            try:
                txn.amount = normalize_amount(amount, new_type)
            except ValueError as exc:
                raise ValidationFailedError(
                    str(exc), [{"field": "amount", "message": str(exc)}]
                ) from exc
        txn.type = new_type
        txn.card_id = card_id
        txn.category_id = category_id
        if "description" in fields:
            txn.description = data.description.strip()
        if "date" in fields:
            txn.date = data.date
        if "notes" in fields:
            txn.notes = data.notes

        self.session.commit()
        self.session.expire(txn)
        return self.get(txn.id)

    def delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()


_PRIORITY_ORDER = case(
    (Goal.priority == GoalPriority.high, 0),
    (Goal.priority == GoalPriority.medium, 1),
    else_=2,
)


class GoalService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _base_query(self):
        return (
            select(Goal)
            .options(
                joinedload(Goal.category),
                joinedload(Goal.currency),
                selectinload(Goal.contributions),
            )
            .where(Goal.user_id == self.user_id)
        )

    def list(self, status: Optional[str] = None) -> list[Goal]:
        stmt = self._base_query().order_by(_PRIORITY_ORDER, Goal.deadline)
        if status == "active":
            stmt = stmt.where(Goal.current_amount < Goal.target_amount)
        elif status == "completed":
            stmt = stmt.where(Goal.current_amount >= Goal.target_amount)
        elif status:
            raise ValidationFailedError(
                "Invalid goal status",
                [{"field": "status", "message": "must be 'active' or 'completed'"}],
            )
        return list(self.session.scalars(stmt).unique().all())

    def get(self, goal_id: str) -> Goal:
        goal = self.session.scalar(
            self._base_query().where(Goal.id == _owned_id(goal_id))
        )
        if not goal:
            raise NotFoundError("Goal not found")
        return goal

    def _resolve_category(self, ref: CategoryRef) -> Optional[str]:
        return CategoryResolver(self.session, self.user_id).resolve(
            ref,
            TransactionType.expense,
            color=GOAL_CATEGORY_COLOR,
            icon=GOAL_CATEGORY_ICON,
        )

    def create(self, data: GoalIn) -> Goal:
        currency_id = CurrencyService(self.session, self.user_id).reference(
            data.currency
        )
        category_id = self._resolve_category(data.category_ref)
        goal = Goal(
            user_id=self.user_id,
            name=data.name.strip(),
            target_amount=data.target_amount,
            current_amount=min(data.current_amount, data.target_amount),
            deadline=data.deadline,
            category_id=category_id,
            currency_id=currency_id,
            color=data.color,
            priority=data.priority,
            description=data.description,
        )
        self.session.add(goal)
        self.session.commit()
        return self.get(goal.id)

    def update(self, goal_id: str, data: GoalUpdate) -> Goal:
        goal = self.get(goal_id)
        fields = data.model_fields_set

        currency_id = goal.currency_id
        if "currency" in fields:
            currency_id = CurrencyService(self.session, self.user_id).reference(
                data.currency
            )
        category_id = goal.category_id
        if "category" in fields:
            category_id = self._resolve_category(data.category_ref)

        goal.currency_id = currency_id
        goal.category_id = category_id
        for field in (
            "name",
            "target_amount",
            "current_amount",
            "deadline",
            "color",
            "priority",
            "description",
        ):
            if field in fields:
                setattr(goal, field, getattr(data, field))
        goal.current_amount = min(goal.current_amount, goal.target_amount)

        self.session.commit()
        self.session.expire(goal)
        return self.get(goal.id)

    def delete(self, goal_id: str) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()

    def add_contribution(
        self, goal_id: str, data: ContributionIn
    ) -> tuple[Goal, GoalContribution]:
        goal = self.get(goal_id)
        raised = Goal.current_amount + data.amount
        # single statement so concurrent appends cannot overwrite each other
        self.session.execute(
            update(Goal)
            .where(Goal.id == goal.id, Goal.user_id == self.user_id)
            .values(
                current_amount=case(
                    (raised > Goal.target_amount, Goal.target_amount),
                    else_=raised,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        contribution = GoalContribution(
            amount=data.amount,
            currency_id=goal.currency_id,
            date=data.date or utcnow(),
            notes=data.notes,
        )
        goal.contributions.append(contribution)
        self.session.commit()
        self.session.refresh(goal)
        logger.info(
            f"goal_contribution: user_id={self.user_id} goal_id={goal.id} "
            f"amount={data.amount} current_amount={goal.current_amount}"
        )
        return goal, contribution


class AuthService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def register(self, data: UserIn) -> User:
        email = data.email.strip().lower()
        existing = self.session.scalar(select(User).where(User.email == email))
        if existing:
            raise ValidationFailedError(
                "User already exists",
                [{"field": "email", "message": "email is already registered"}],
            )
        user = User(
            name=data.name.strip(),
            email=email,
            password_hash=_hasher.hash(data.password),
            preferences={},
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationFailedError("User already exists") from exc
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.session.scalar(
            select(User).where(User.email == email.strip().lower())
        )
        if not user or not verify_password(user.password_hash, password):
            raise UnauthorizedError("Invalid credentials")
        return user


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return _hasher.verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHash):
        return False


class UserService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self) -> User:
        user = self.session.get(User, self.user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def preferences(self) -> dict:
        return dict(self.get().preferences or {})

    def update_preferences(self, preferences: dict) -> dict:
        user = self.get()
        user.preferences = {**(user.preferences or {}), **preferences}
        self.session.commit()
        self.session.refresh(user)
        return dict(user.preferences)

    def change_password(self, current_password: str, new_password: str) -> None:
        user = self.get()
        if not verify_password(user.password_hash, current_password):
            raise ValidationFailedError(
                "Current password is incorrect",
                [{"field": "current_password", "message": "does not match"}],
            )
        user.password_hash = _hasher.hash(new_password)
        self.session.commit()

    def delete_account(self, password: str) -> None:
        user = self.get()
        if not verify_password(user.password_hash, password):
            raise ValidationFailedError(
                "Password is incorrect",
                [{"field": "password", "message": "does not match"}],
            )
        goal_ids = select(Goal.id).where(Goal.user_id == self.user_id)
        self.session.execute(
            delete(GoalContribution).where(GoalContribution.goal_id.in_(goal_ids))
        )
        for model in (Goal, Transaction, Category, Card, Currency):
            self.session.execute(delete(model).where(model.user_id == self.user_id))
        self.session.delete(user)
        self.session.commit()
        logger.info(f"user_deleted: user_id={self.user_id}")
