from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import InvalidReferenceError
from models import ID_LENGTH, Category, TransactionType, name_key

logger = logging.getLogger(__name__)

_ID_PATTERN = re.compile(rf"[0-9a-fA-F]{{{ID_LENGTH}}}")

DEFAULT_COLORS: dict[TransactionType, str] = {
    TransactionType.income: "#4CAF50",
    TransactionType.expense: "#F44336",
}
DEFAULT_ICON = "category"
GOAL_CATEGORY_COLOR = "#4ECDC4"
GOAL_CATEGORY_ICON = "flag"


@dataclass(frozen=True)
class ById:
    id: str


@dataclass(frozen=True)
class ByName:
    name: str


@dataclass(frozen=True)
class Empty:
    pass


CategoryRef = Union[ById, ByName, Empty]
EMPTY = Empty()


def is_valid_id(value: str) -> bool:
    return bool(_ID_PATTERN.fullmatch(value))


def parse_category_ref(raw: Optional[str]) -> CategoryRef:
    if raw is None:
        return EMPTY
    value = raw.strip()
    if not value:
        return EMPTY
    if is_valid_id(value):
        return ById(value.lower())
    return ByName(value)


class CategoryResolver:
    """Turns a category reference into a category id for one user.

    Names are matched case-insensitively. An unknown name creates the
    category, so resolving may write; the new row is flushed but left for
    the caller to commit together with the record that references it.
    """

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def find(self, ref: CategoryRef) -> Optional[Category]:
        if isinstance(ref, ById):
            return self.session.scalar(
                select(Category).where(
                    Category.user_id == self.user_id, Category.id == ref.id
                )
            )
        if isinstance(ref, ByName):
            return self._by_name(ref.name)
        return None

    def resolve(
        self,
        ref: CategoryRef,
        type_hint: TransactionType,
        *,
        color: Optional[str] = None,
        icon: str = DEFAULT_ICON,
    ) -> Optional[str]:
        if isinstance(ref, Empty):
            return None
        if isinstance(ref, ById):
            category = self.find(ref)
            if category is None:
                raise InvalidReferenceError(
                    f'Category with id "{ref.id}" was not found', ref.id
                )
            return category.id

        existing = self._by_name(ref.name)
        if existing:
            return existing.id
        return self._create(ref.name, type_hint, color, icon).id

    def _by_name(self, name: str) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.name_key == name_key(name),
            )
        )

    def _create(
        self,
        name: str,
        type_hint: TransactionType,
        color: Optional[str],
        icon: str,
    ) -> Category:
        category = Category(
            user_id=self.user_id,
            name=name.strip(),
            name_key=name_key(name),
            type=type_hint,
            color=color or DEFAULT_COLORS[type_hint],
            icon=icon,
        )
        self.session.add(category)
        try:
            self.session.flush()
        except IntegrityError:
            # a concurrent request created the same name first
            self.session.rollback()
            existing = self._by_name(name)
            if existing is None:
                raise
            return existing

        logger.info(
            f"category_autocreated: user_id={self.user_id} "
            f"category_id={category.id} name={category.name!r} type={type_hint.value}"
        )
        return category
