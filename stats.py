from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, joinedload

from fx_rates import (
    CurrencySummary,
    base_rate_for,
    convert_to_base,
    pick_currency_summary,
    round_money,
    round_percent,
    usable_rate,
)
from models import Card, Category, Currency, Goal, Transaction, TransactionType, utcnow
from periods import ALL_TIME, Period, trailing_window
from projections import is_goal_completed

UNKNOWN_CURRENCY = "UNKNOWN"


@dataclass
class GoalTotals:
    total_target: float = 0.0
    total_current: float = 0.0
    goal_count: int = 0
    completed_count: int = 0

    def add(self, target_amount: float, current_amount: float) -> None:
        self.total_target += target_amount
        self.total_current += current_amount
        self.goal_count += 1
        if is_goal_completed(target_amount, current_amount):
            self.completed_count += 1

    @property
    def active_count(self) -> int:
        return self.goal_count - self.completed_count

    @property
    def total_progress(self) -> float:
        if self.total_target <= 0:
            return 0.0
        return self.total_current / self.total_target

    def as_dict(self) -> dict[str, object]:
        return {
            "total_target": round_money(self.total_target),
            "total_current": round_money(self.total_current),
            "total_progress": self.total_progress,
            "goal_count": self.goal_count,
            "completed_count": self.completed_count,
            "active_count": self.active_count,
        }


@dataclass
class CurrencyBucket:
    currency: Optional[CurrencySummary]
    totals: GoalTotals

    def as_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "currency": self.currency.as_dict() if self.currency else None
        }
        data.update(self.totals.as_dict())
        return data


def rollup_goals(
    goals: Iterable[Goal], base: Optional[CurrencySummary]
) -> dict[str, object]:
    """Goal totals: unconverted, per currency code, and converted to base.

    Goals whose currency has no positive rate are left out of the converted
    totals but still counted in their currency bucket.
    """
    base_rate = base_rate_for(base)
    totals = GoalTotals()
    totals_in_base = GoalTotals()
    by_currency: dict[str, CurrencyBucket] = {}

    for goal in goals:
        target_amount = float(goal.target_amount or 0)
        current_amount = float(goal.current_amount or 0)
        currency = pick_currency_summary(goal.currency)
        code = currency.code if currency else UNKNOWN_CURRENCY

        bucket = by_currency.get(code)
        if bucket is None:
            bucket = CurrencyBucket(currency=currency, totals=GoalTotals())
            by_currency[code] = bucket
        bucket.totals.add(target_amount, current_amount)
        totals.add(target_amount, current_amount)

        rate = usable_rate(currency)
        if rate is None:
            continue
        totals_in_base.add(
            convert_to_base(target_amount, rate, base_rate),
            convert_to_base(current_amount, rate, base_rate),
        )

    result = totals.as_dict()
    result.update(
        {
            "base_currency": base.as_dict() if base else None,
            "totals_in_base": totals_in_base.as_dict(),
            "by_currency": {
                code: bucket.as_dict() for code, bucket in by_currency.items()
            },
        }
    )
    return result


def achievement_rate(completed_goals: int, total_goals: int) -> int:
    if total_goals <= 0:
        return 0
    return round_percent(completed_goals / total_goals)


class StatsService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _type_totals(self, period: Period) -> tuple[float, float, int]:
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.income,
                            Transaction.amount,
                        ),
                        else_=0.0,
                    )
                ),
                0.0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.expense,
                            func.abs(Transaction.amount),
                        ),
                        else_=0.0,
                    )
                ),
                0.0,
            ).label("expenses"),
            func.count(Transaction.id).label("count"),
        ).where(Transaction.user_id == self.user_id)
        if period.start is not None:
            stmt = stmt.where(Transaction.date >= period.start)
        if period.end is not None:
            stmt = stmt.where(Transaction.date <= period.end)

        row = self.session.execute(stmt).one()
        return float(row.income or 0), float(row.expenses or 0), int(row.count or 0)

    def transaction_summary(self, period: Period = ALL_TIME) -> dict[str, object]:
        income, expenses, count = self._type_totals(period)
        return {
            "total_income": round_money(income),
            "total_expenses": round_money(expenses),
            "net_savings": round_money(income - expenses),
            "count": count,
        }

    def monthly_average(self, now: Optional[datetime] = None) -> dict[str, float]:
        income, expenses, _count = self._type_totals(trailing_window(now or utcnow()))
        return {
            "income": round_money(income),
            "expenses": round_money(expenses),
            "savings": round_money(income - expenses),
        }

    def base_currency(self) -> Optional[CurrencySummary]:
        currency = self.session.scalar(
            select(Currency).where(
                Currency.user_id == self.user_id, Currency.is_base.is_(True)
            )
        )
        return pick_currency_summary(currency)

    def goal_summary(self) -> dict[str, object]:
        goals = self.session.scalars(
            select(Goal)
            .options(joinedload(Goal.currency))
            .where(Goal.user_id == self.user_id)
        ).all()
        return rollup_goals(goals, self.base_currency())

    def _count(self, model, *criteria) -> int:
        stmt = select(func.count(model.id)).where(
            model.user_id == self.user_id, *criteria
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def user_summary(self, now: Optional[datetime] = None) -> dict[str, object]:
        income, expenses, total_transactions = self._type_totals(ALL_TIME)
        total_goals = self._count(Goal)
        completed_goals = self._count(
            Goal, Goal.current_amount >= Goal.target_amount
        )
        return {
            "total_transactions": total_transactions,
            "total_categories": self._count(Category),
            "active_goals": total_goals - completed_goals,
            "cards": self._count(Card),
            "total_income": round_money(income),
            "total_expenses": round_money(expenses),
            "total_savings": round_money(income - expenses),
            "monthly_average": self.monthly_average(now),
            "achievement_rate": achievement_rate(completed_goals, total_goals),
            "completed_goals": completed_goals,
            "total_goals": total_goals,
        }

    def summarize(
        self, period: Period = ALL_TIME, now: Optional[datetime] = None
    ) -> dict[str, object]:
        goals = self.goal_summary()
        return {
            "transactions": self.transaction_summary(period),
            "monthly_average": self.monthly_average(now),
            "goals": goals,
            "achievement_rate": achievement_rate(
                int(goals["completed_count"]), int(goals["goal_count"])
            ),
        }
