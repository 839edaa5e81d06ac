import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

ROLLING_WINDOW_DAYS = 30


@dataclass(frozen=True)
class Period:
    slug: str
    start: Optional[date]
    end: Optional[date]


ALL_TIME = Period("all", None, None)


class PeriodError(ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


def _parse_day(value: str, field: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise PeriodError(field, f"Invalid {field} date: {value}") from exc


def resolve_period(start: Optional[str], end: Optional[str]) -> Period:
    if not start and not end:
        return ALL_TIME
    start_date = _parse_day(start, "start") if start else None
    end_date = _parse_day(end, "end") if end else None
    if start_date and end_date and start_date > end_date:
        raise PeriodError("end", "Start date must be before end date")
    return Period("custom", start_date, end_date)


def trailing_window(now: datetime, days: int = ROLLING_WINDOW_DAYS) -> Period:
    """Fixed lookback of `days` calendar days ending today, not a calendar month."""
    today = now.date()
    return Period("trailing", today - timedelta(days=days - 1), None)


def raw_days_until(deadline: datetime, now: datetime) -> int:
    return math.ceil((deadline - now) / timedelta(days=1))


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
