import datetime as dt
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

ID_LENGTH = 32


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def name_key(name: str) -> str:
    return name.strip().casefold()


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class CardType(str, Enum):
    credit = "credit"
    debit = "debit"


class GoalPriority(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    preferences: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(ID_LENGTH), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    name_key: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    color: Mapped[str] = mapped_column(String(9), nullable=False, default="#4CAF50")
    icon: Mapped[str] = mapped_column(String(50), nullable=False, default="category")
    budget: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name_key", name="uq_category_user_name_key"),
        CheckConstraint("budget >= 0", name="ck_category_budget_positive"),
    )


class Card(Base, TimestampMixin):
    __tablename__ = "cards"

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(ID_LENGTH), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[CardType] = mapped_column(
        SAEnum(CardType), nullable=False, default=CardType.credit
    )
    last_four: Mapped[Optional[str]] = mapped_column(String(4))
    credit_limit: Mapped[Optional[float]] = mapped_column(Float)
    color: Mapped[Optional[str]] = mapped_column(String(9))

    __table_args__ = (Index("ix_cards_user", "user_id"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(ID_LENGTH), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    category_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    card_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("cards.id", ondelete="SET NULL")
    )

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    card: Mapped[Optional["Card"]] = relationship("Card")

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category_id", "date"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
    )


class Currency(Base, TimestampMixin):
    __tablename__ = "currencies"

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(ID_LENGTH), nullable=False)
    code: Mapped[str] = mapped_column(String(10), nullable=False)
    symbol: Mapped[Optional[str]] = mapped_column(String(10))
    name: Mapped[Optional[str]] = mapped_column(String(100))
    rate: Mapped[Optional[float]] = mapped_column(Float)
    is_base: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "code", name="uq_currency_user_code"),
        Index(
            "uq_currency_user_base",
            "user_id",
            unique=True,
            sqlite_where=text("is_base = 1"),
            postgresql_where=text("is_base IS TRUE"),
        ),
    )


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(ID_LENGTH), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    target_amount: Mapped[float] = mapped_column(Float, nullable=False)
    current_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    deadline: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    priority: Mapped[GoalPriority] = mapped_column(
        SAEnum(GoalPriority), nullable=False, default=GoalPriority.medium
    )
    color: Mapped[Optional[str]] = mapped_column(String(9))
    description: Mapped[Optional[str]] = mapped_column(Text)
    category_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    currency_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("currencies.id", ondelete="SET NULL")
    )

    category: Mapped[Optional["Category"]] = relationship("Category")
    currency: Mapped[Optional["Currency"]] = relationship("Currency")
    contributions: Mapped[list["GoalContribution"]] = relationship(
        "GoalContribution",
        back_populates="goal",
        cascade="all, delete-orphan",
        order_by="GoalContribution.date",
    )

    __table_args__ = (
        Index("ix_goals_user_deadline", "user_id", "deadline"),
        CheckConstraint("target_amount > 0", name="ck_goal_target_positive"),
        CheckConstraint("current_amount >= 0", name="ck_goal_current_non_negative"),
    )


class GoalContribution(Base):
    __tablename__ = "goal_contributions"

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True, default=new_id)
    goal_id: Mapped[str] = mapped_column(
        ForeignKey("goals.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("currencies.id", ondelete="SET NULL")
    )
    date: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    goal: Mapped["Goal"] = relationship("Goal", back_populates="contributions")

    __table_args__ = (
        Index("ix_goal_contributions_goal_date", "goal_id", "date"),
        CheckConstraint("amount > 0", name="ck_contribution_amount_positive"),
    )
