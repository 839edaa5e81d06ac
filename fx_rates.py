from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from models import Currency


@dataclass(frozen=True)
class CurrencySummary:
    id: str
    code: str
    symbol: Optional[str]
    name: Optional[str]
    rate: Optional[float]
    is_base: bool

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "code": self.code,
            "symbol": self.symbol,
            "name": self.name,
            "rate": self.rate,
            "is_base": self.is_base,
        }


def pick_currency_summary(currency: Optional[Currency]) -> Optional[CurrencySummary]:
    if currency is None:
        return None
    code = (currency.code or "").strip()
    if not code:
        return None
    return CurrencySummary(
        id=currency.id,
        code=code,
        symbol=currency.symbol or None,
        name=currency.name or None,
        rate=currency.rate,
        is_base=bool(currency.is_base),
    )


def usable_rate(summary: Optional[CurrencySummary]) -> Optional[float]:
    if summary is None or summary.rate is None:
        return None
    rate = float(summary.rate)
    if not math.isfinite(rate) or rate <= 0:
        return None
    return rate


def base_rate_for(base: Optional[CurrencySummary]) -> float:
    return usable_rate(base) or 1.0


def convert_to_base(amount: float, rate: float, base_rate: float) -> float:
    return (amount / rate) * base_rate


def round_money(value: float) -> float:
    return float(
        Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    )


def round_percent(ratio: float) -> int:
    percent = Decimal(str(ratio)) * 100
    return int(percent.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
