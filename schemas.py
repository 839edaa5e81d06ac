import datetime as dt
import math
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from category_resolver import CategoryRef, parse_category_ref
from models import CardType, GoalPriority, TransactionType
from periods import as_naive_utc

HEX_COLOR = r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def normalize_amount(amount: float, txn_type: TransactionType) -> float:
    """Transactions store magnitudes; expenses may arrive negative."""
    if not math.isfinite(amount):
        raise ValueError("Amount must be a finite number")
    if amount == 0:
        raise ValueError("Amount must not be zero")
    if amount < 0:
        if txn_type != TransactionType.expense:
            raise ValueError("Income amount must be positive")
        return abs(amount)
    return amount


def _reject_nulls(model: BaseModel, fields: tuple[str, ...]) -> None:
    for name in fields:
        if name in model.model_fields_set and getattr(model, name) is None:
            raise ValueError(f"{name} cannot be null")


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)
    icon: Optional[str] = Field(default=None, max_length=50)
    budget: float = Field(default=0, ge=0, strict=True, allow_inf_nan=False)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name cannot be empty")
        return value


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[TransactionType] = None
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)
    icon: Optional[str] = Field(default=None, max_length=50)
    budget: Optional[float] = Field(
        default=None, ge=0, strict=True, allow_inf_nan=False
    )

    @model_validator(mode="after")
    def _required_stay_set(self) -> "CategoryUpdate":
        _reject_nulls(self, ("name", "type", "color", "icon", "budget"))
        if self.name is not None and not self.name.strip():
            raise ValueError("Name cannot be empty")
        return self


class TransactionIn(BaseModel):
    amount: float = Field(..., strict=True, allow_inf_nan=False)
    type: TransactionType
    description: str = Field(..., min_length=1, max_length=200)
    category: Optional[str] = Field(default=None, max_length=100)
    card: Optional[str] = None
    date: Optional[dt.date] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _normalize_amount(self) -> "TransactionIn":
        self.amount = normalize_amount(self.amount, self.type)
        return self

    @property
    def category_ref(self) -> CategoryRef:
        return parse_category_ref(self.category)


class TransactionUpdate(BaseModel):
    amount: Optional[float] = Field(default=None, strict=True, allow_inf_nan=False)
    type: Optional[TransactionType] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    category: Optional[str] = Field(default=None, max_length=100)
    card: Optional[str] = None
    date: Optional[dt.date] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _required_stay_set(self) -> "TransactionUpdate":
        _reject_nulls(self, ("amount", "type", "description", "date"))
        return self

    @property
    def category_ref(self) -> CategoryRef:
        return parse_category_ref(self.category)


class GoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    target_amount: float = Field(..., gt=0, strict=True, allow_inf_nan=False)
    current_amount: float = Field(default=0, ge=0, strict=True, allow_inf_nan=False)
    deadline: dt.datetime
    category: Optional[str] = Field(default=None, max_length=100)
    currency: Optional[str] = None
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)
    priority: GoalPriority = GoalPriority.medium
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("deadline")
    @classmethod
    def _deadline_utc(cls, value: dt.datetime) -> dt.datetime:
        return as_naive_utc(value)

    @property
    def category_ref(self) -> CategoryRef:
        return parse_category_ref(self.category)


class GoalUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    target_amount: Optional[float] = Field(
        default=None, gt=0, strict=True, allow_inf_nan=False
    )
    current_amount: Optional[float] = Field(
        default=None, ge=0, strict=True, allow_inf_nan=False
    )
    deadline: Optional[dt.datetime] = None
    category: Optional[str] = Field(default=None, max_length=100)
    currency: Optional[str] = None
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)
    priority: Optional[GoalPriority] = None
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("deadline")
    @classmethod
    def _deadline_utc(cls, value: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return as_naive_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _required_stay_set(self) -> "GoalUpdate":
        _reject_nulls(
            self, ("name", "target_amount", "current_amount", "deadline", "priority")
        )
        return self

    @property
    def category_ref(self) -> CategoryRef:
        return parse_category_ref(self.category)


class ContributionIn(BaseModel):
    amount: float = Field(..., gt=0, strict=True, allow_inf_nan=False)
    date: Optional[dt.datetime] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("date")
    @classmethod
    def _date_utc(cls, value: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return as_naive_utc(value) if value is not None else None


class CurrencyIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=10)
    symbol: Optional[str] = Field(default=None, max_length=10)
    name: Optional[str] = Field(default=None, max_length=100)
    rate: float = Field(default=1, gt=0, strict=True, allow_inf_nan=False)
    is_base: bool = False

    @field_validator("code")
    @classmethod
    def _upper_code(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("Code cannot be empty")
        return value


class CurrencyUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=1, max_length=10)
    symbol: Optional[str] = Field(default=None, max_length=10)
    name: Optional[str] = Field(default=None, max_length=100)
    rate: Optional[float] = Field(default=None, gt=0, strict=True, allow_inf_nan=False)
    is_base: Optional[bool] = None

    @field_validator("code")
    @classmethod
    def _upper_code(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().upper()
        if not value:
            raise ValueError("Code cannot be empty")
        return value

    @model_validator(mode="after")
    def _required_stay_set(self) -> "CurrencyUpdate":
        _reject_nulls(self, ("code", "rate", "is_base"))
        return self


class CardIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CardType = CardType.credit
    last_four: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    credit_limit: Optional[float] = Field(
        default=None, ge=0, strict=True, allow_inf_nan=False
    )
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)


class CardUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[CardType] = None
    last_four: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    credit_limit: Optional[float] = Field(
        default=None, ge=0, strict=True, allow_inf_nan=False
    )
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR)

    @model_validator(mode="after")
    def _required_stay_set(self) -> "CardUpdate":
        _reject_nulls(self, ("name", "type"))
        return self


class UserIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=8, max_length=128)


class LoginIn(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=128)


class PreferencesIn(BaseModel):
    preferences: dict[str, Any]


class PasswordChangeIn(BaseModel):
    current_password: str = Field(..., max_length=128)
    new_password: str = Field(..., min_length=8, max_length=128)


class AccountDeleteIn(BaseModel):
    password: str = Field(..., max_length=128)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: TransactionType
    color: str
    icon: str
    budget: float


class CategoryBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    color: str
    icon: str


class CardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: CardType
    last_four: Optional[str]
    credit_limit: Optional[float]
    color: Optional[str]


class CardBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: CardType


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: float
    type: TransactionType
    description: str
    notes: Optional[str]
    date: dt.date
    category: Optional[CategoryBrief]
    card: Optional[CardBrief]
    created_at: dt.datetime
    updated_at: dt.datetime


class CurrencyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    symbol: Optional[str]
    name: Optional[str]
    rate: Optional[float]
    is_base: bool


class CurrencySummaryOut(BaseModel):
    id: str
    code: str
    symbol: Optional[str]
    name: Optional[str]
    rate: Optional[float]
    is_base: bool


class ContributionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: float
    currency_id: Optional[str]
    date: dt.datetime
    notes: Optional[str]


class GoalOut(BaseModel):
    id: str
    name: str
    target_amount: float
    current_amount: float
    deadline: dt.datetime
    priority: GoalPriority
    color: Optional[str]
    description: Optional[str]
    category: Optional[CategoryBrief]
    currency_summary: Optional[CurrencySummaryOut]
    currency_code: Optional[str]
    currency_symbol: Optional[str]
    contributions: list[ContributionOut]
    days_remaining: int
    amount_needed: float
    daily_amount_to_save: float
    monthly_amount_to_save: float
    is_completed: bool
    is_overdue: bool


class ContributionResult(BaseModel):
    goal: GoalOut
    contribution: ContributionOut


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    preferences: dict[str, Any]
    created_at: dt.datetime


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut
