from datetime import date, datetime, timedelta

import pytest

from periods import (
    ALL_TIME,
    PeriodError,
    raw_days_until,
    resolve_period,
    trailing_window,
)


def test_resolve_period_is_inclusive_and_open_ended() -> None:
    assert resolve_period(None, None) == ALL_TIME

    october = resolve_period("2026-10-01", "2026-10-31")
    assert october.start == date(2026, 10, 1)
    assert october.end == date(2026, 10, 31)

    since = resolve_period("2026-10-01", None)
    assert since.end is None
    assert since.start == date(2026, 10, 1)


def test_resolve_period_rejects_bad_input() -> None:
    with pytest.raises(PeriodError) as reversed_range:
        resolve_period("2026-10-31", "2026-10-01")
    assert reversed_range.value.field == "end"

    with pytest.raises(PeriodError) as bad_start:
        resolve_period("October", None)
    assert bad_start.value.field == "start"

    with pytest.raises(ValueError):
        resolve_period(None, "2026-13-01")


def test_trailing_window_is_a_fixed_lookback() -> None:
    window = trailing_window(datetime(2026, 3, 1, 8, 30))
    assert window.start == date(2026, 1, 31)
    assert window.end is None
    assert (date(2026, 3, 1) - window.start).days + 1 == 30


def test_raw_days_until_rounds_toward_later_day() -> None:
    now = datetime(2026, 1, 1, 12, 0)
    assert raw_days_until(now + timedelta(days=1, minutes=1), now) == 2
    assert raw_days_until(now, now) == 0
    assert raw_days_until(now - timedelta(days=1, hours=12), now) == -1
