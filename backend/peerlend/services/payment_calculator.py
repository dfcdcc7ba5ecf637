"""Repayment terms for peer loans.

Simple (non-compounding) interest fixed at acceptance time:

    interest = amount * rate * duration_days / (365 * 100)
    total_repayable = round_half_up(amount + interest, 2)
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
DAYS_PER_YEAR = 365
SECONDS_PER_DAY = 24 * 60 * 60


def to_money(value) -> Decimal:
    """Coerce a numeric value to a 2dp Decimal, rounding half up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as some drivers return them) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class RepaymentTerms:
    interest: Decimal
    total_repayable: Decimal
    due_date: datetime


def calculate_interest(amount, annual_rate, duration_days: int) -> Decimal:
    """Unrounded simple interest for ``duration_days`` at ``annual_rate`` percent."""
    return (
        Decimal(str(amount)) * Decimal(str(annual_rate)) * duration_days
        / Decimal(DAYS_PER_YEAR * 100)
    )


def calculate_terms(amount, annual_rate, duration_days: int, accepted_at: datetime) -> RepaymentTerms:
    interest = calculate_interest(amount, annual_rate, duration_days)
    return RepaymentTerms(
        interest=to_money(interest),
        total_repayable=to_money(Decimal(str(amount)) + interest),
        due_date=accepted_at + timedelta(days=duration_days),
    )


def calculate_lateness(paid_at: datetime, due_date: datetime) -> tuple[bool, int]:
    """Return ``(is_late, days_late)``; any fraction of a day past due counts as a day."""
    overdue_seconds = (as_utc(paid_at) - as_utc(due_date)).total_seconds()
    if overdue_seconds <= 0:
        return False, 0
    return True, math.ceil(overdue_seconds / SECONDS_PER_DAY)
