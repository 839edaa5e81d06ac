from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from fx_rates import CurrencySummary, pick_currency_summary
from models import Goal
from periods import as_naive_utc, raw_days_until

DAYS_PER_MONTH = 30


@dataclass(frozen=True)
class GoalProjection:
    days_remaining: int
    amount_needed: float
    daily_amount_to_save: float
    monthly_amount_to_save: float
    is_completed: bool
    is_overdue: bool
    currency: Optional[CurrencySummary]


def is_goal_completed(target_amount: float, current_amount: float) -> bool:
    return current_amount >= target_amount


def project_goal(goal: Goal, now: datetime) -> GoalProjection:
    """Derived savings figures for a goal as of ``now``.

    Reads the goal only; calling it twice with the same snapshot and instant
    gives the same result.
    """
    days_raw = raw_days_until(as_naive_utc(goal.deadline), as_naive_utc(now))
    days_remaining = days_raw if days_raw > 0 else 0

    target_amount = float(goal.target_amount or 0)
    current_amount = float(goal.current_amount or 0)
    amount_needed = max(0.0, target_amount - current_amount)

    if days_remaining > 0:
        daily = amount_needed / days_remaining
        monthly = amount_needed / (days_remaining / DAYS_PER_MONTH)
    else:
        daily = amount_needed
        monthly = amount_needed

    completed = is_goal_completed(target_amount, current_amount)
    return GoalProjection(
        days_remaining=days_remaining,
        amount_needed=amount_needed,
        daily_amount_to_save=daily,
        monthly_amount_to_save=monthly,
        is_completed=completed,
        is_overdue=days_raw < 0 and not completed,
        currency=pick_currency_summary(goal.currency),
    )
