"""Rental pricing: per-line prices, billing periods, settlement proration and late fees.

Everything here is a pure function of its arguments. Rates are the per-period
prices configured on an item (one day, one week, fifteen days, thirty days).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime

from equipment_rental.services.errors import RateNotConfigured


PERIOD_DAYS = {
    "daily": 1,
    "weekly": 7,
    "biweekly": 15,
    "monthly": 30,
}
RATE_FIELDS = {
    "daily": "DailyRate",
    "weekly": "WeeklyRate",
    "biweekly": "BiweeklyRate",
    "monthly": "MonthlyRate",
}
SECONDS_PER_DAY = 60 * 60 * 24


@dataclass(frozen=True)
class BillingPeriod:
    periods_completed: int
    extra_days: int
    total_periods: int
    charge_extra_period: bool

    def as_dict(self) -> dict:
        return {
            "periodsCompleted": self.periods_completed,
            "extraDays": self.extra_days,
            "totalPeriods": self.total_periods,
            "chargeExtraPeriod": self.charge_extra_period,
        }


def round_money(value: float) -> float:
    return round(float(value or 0), 2)


def period_length(rental_type: str) -> int:
    try:
        return PERIOD_DAYS[rental_type]
    except KeyError:
        raise ValueError(f"Unknown rental type: {rental_type}") from None


def rental_days(start: date | datetime, end: date | datetime) -> int:
    """Whole days between two instants, any started day counting as a full day."""
    seconds = (end - start).total_seconds()
    return math.ceil(seconds / SECONDS_PER_DAY)


def rate_for(item, rental_type: str) -> float:
    period_length(rental_type)
    rate = getattr(item, RATE_FIELDS[rental_type], None)
    if not rate:
        raise RateNotConfigured(rental_type, getattr(item, "ItemID", None))
    return float(rate)


def calculate_rental_price(
    daily_rate: float,
    weekly_rate: float | None,
    biweekly_rate: float | None,
    monthly_rate: float | None,
    start: date | datetime,
    end: date | datetime,
    rental_type: str = "daily",
) -> float:
    days = rental_days(start, end)
    if days <= 0:
        return 0.0

    if rental_type == "daily":
        return round_money(days * float(daily_rate or 0))

    rates = {"weekly": weekly_rate, "biweekly": biweekly_rate, "monthly": monthly_rate}
    if rental_type not in rates:
        raise ValueError(f"Unknown rental type: {rental_type}")
    rate = rates[rental_type]
    if not rate:
        raise RateNotConfigured(rental_type)
    periods = math.ceil(days / PERIOD_DAYS[rental_type])
    return round_money(periods * float(rate))


def calculate_item_price(item, start: date | datetime, end: date | datetime, rental_type: str) -> float:
    try:
        return calculate_rental_price(
            item.DailyRate,
            item.WeeklyRate,
            item.BiweeklyRate,
            item.MonthlyRate,
            start,
            end,
            rental_type,
        )
    except RateNotConfigured as exc:
        raise RateNotConfigured(exc.rental_type, item.ItemID) from None


def calculate_billing_period(pickup: date | datetime, returned: date | datetime, rental_type: str) -> BillingPeriod:
    length = period_length(rental_type)
    days_passed = rental_days(pickup, returned)
    periods_completed = days_passed // length
    extra_days = days_passed % length
    # A started period is always billed in full.
    charge_extra_period = extra_days > 0
    total_periods = periods_completed + 1 if charge_extra_period else periods_completed
    return BillingPeriod(
        periods_completed=periods_completed,
        extra_days=extra_days,
        total_periods=total_periods,
        charge_extra_period=charge_extra_period,
    )


def calculate_used_days(pickup: date | datetime, until: date | datetime) -> int:
    return max(1, rental_days(pickup, until))


def prorate_line(unit_price: float, rental_type: str, used_days: int, quantity: int = 1) -> float:
    per_day = float(unit_price or 0) / period_length(rental_type)
    return round_money(per_day * used_days * int(quantity or 0))


def calculate_late_fee(
    return_scheduled: date | datetime,
    return_actual: date | datetime,
    daily_rate: float,
    quantity: int,
    multiplier: float = 1.5,
) -> float:
    if return_actual <= return_scheduled:
        return 0.0
    days_late = rental_days(return_scheduled, return_actual)
    return round_money(days_late * float(daily_rate or 0) * multiplier * int(quantity or 0))


def compute_total(equipment: float, services: float, deposit: float, discount: float, late_fee: float) -> float:
    return round_money(
        float(equipment or 0) + float(services or 0) + float(deposit or 0) - float(discount or 0) + float(late_fee or 0)
    )


def early_return_discount(
    subtotal: float,
    return_scheduled: date | datetime,
    returned: date | datetime,
    per_day: float = 0.10,
    cap: float = 0.30,
) -> tuple[int, float]:
    """Days saved by an early return and the discount they would earn on ``subtotal``."""
    if returned >= return_scheduled:
        return 0, 0.0
    days_saved = rental_days(returned, return_scheduled)
    ratio = min(days_saved * per_day, cap)
    return days_saved, round_money(float(subtotal or 0) * ratio)
