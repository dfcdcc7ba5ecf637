"""Typed access to the platform_settings key/value table.

Loan transitions read the lending policy at call time (no long-lived cache)
so an admin change to a band applies to the very next request. Each known key
has an explicit parser and default; unknown keys are ignored and malformed
values fall back to the default with a warning.
"""

import json
import logging
from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from peerlend.models.platform_setting import PlatformSetting, SettingValueType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LendingPolicy:
    """Platform tunables consumed by the loan lifecycle."""
    min_transaction_amount: Decimal = Decimal("500")
    max_transaction_amount: Decimal = Decimal("100000")
    min_loan_duration_days: int = 7
    max_loan_duration_days: int = 365
    default_interest_rate: Decimal = Decimal("10")


def _parse_decimal(raw: str) -> Decimal:
    value = Decimal(raw.strip())
    if not value.is_finite():
        raise ValueError(f"not a finite number: {raw!r}")
    return value


def _parse_int(raw: str) -> int:
    return int(_parse_decimal(raw))


_PARSERS: dict[str, Callable[[str], Any]] = {
    "min_transaction_amount": _parse_decimal,
    "max_transaction_amount": _parse_decimal,
    "min_loan_duration_days": _parse_int,
    "max_loan_duration_days": _parse_int,
    "default_interest_rate": _parse_decimal,
}


def build_policy(raw_values: dict[str, str]) -> LendingPolicy:
    """Build a LendingPolicy from raw string values keyed by setting key."""
    overrides: dict[str, Any] = {}
    for f in fields(LendingPolicy):
        raw = raw_values.get(f.name)
        if raw is None:
            continue
        try:
            overrides[f.name] = _PARSERS[f.name](raw)
        except (ValueError, InvalidOperation):
            logger.warning("Ignoring malformed platform setting %s=%r", f.name, raw)
    return LendingPolicy(**overrides)


async def load_lending_policy(db: AsyncSession) -> LendingPolicy:
    result = await db.execute(
        select(PlatformSetting.key, PlatformSetting.value).where(
            PlatformSetting.is_active.is_(True),
            PlatformSetting.key.in_(list(_PARSERS)),
        )
    )
    return build_policy({key: value for key, value in result.all()})


# ── Seed data ─────────────────────────────────────────

DEFAULT_SETTINGS: list[dict[str, Any]] = [
    {
        "key": "max_transaction_amount",
        "value": "100000",
        "description": "Maximum amount for a single transaction",
        "value_type": SettingValueType.NUMBER,
        "category": "transactions",
    },
    {
        "key": "min_transaction_amount",
        "value": "500",
        "description": "Minimum amount for a single transaction",
        "value_type": SettingValueType.NUMBER,
        "category": "transactions",
    },
    {
        "key": "max_loan_duration_days",
        "value": "365",
        "description": "Maximum loan duration in days",
        "value_type": SettingValueType.NUMBER,
        "category": "transactions",
    },
    {
        "key": "min_loan_duration_days",
        "value": "7",
        "description": "Minimum loan duration in days",
        "value_type": SettingValueType.NUMBER,
        "category": "transactions",
    },
    {
        "key": "default_interest_rate",
        "value": "10",
        "description": "Default interest rate percentage",
        "value_type": SettingValueType.NUMBER,
        "category": "transactions",
    },
    {
        "key": "payment_reminder_days",
        "value": json.dumps([3, 1, 0]),
        "description": "Days before due date to send reminders",
        "value_type": SettingValueType.JSON,
        "category": "notifications",
    },
    {
        "key": "auto_block_report_threshold",
        "value": "5",
        "description": "Number of reports to auto-block user",
        "value_type": SettingValueType.NUMBER,
        "category": "moderation",
    },
    {
        "key": "trust_score_default",
        "value": "50",
        "description": "Default trust score for new users",
        "value_type": SettingValueType.NUMBER,
        "category": "scoring",
    },
    {
        "key": "repayment_score_default",
        "value": "50",
        "description": "Default repayment score for new users",
        "value_type": SettingValueType.NUMBER,
        "category": "scoring",
    },
]


async def seed_default_settings(db: AsyncSession) -> int:
    """Insert any default settings that are missing. Returns rows added."""
    result = await db.execute(select(PlatformSetting.key))
    existing = set(result.scalars().all())
    added = 0
    for row in DEFAULT_SETTINGS:
        if row["key"] in existing:
            continue
        db.add(PlatformSetting(**row))
        added += 1
    if added:
        await db.commit()
        logger.info("Seeded %d platform settings", added)
    return added
