"""Reputation scoring: trust score and repayment score.

Both scores are integers in [0, 100] derived from a user's history. The
``calculate_*`` functions are pure and work on a snapshot; the async
``recalculate_*`` helpers gather the snapshot from the database and write
back the single derived field. Recomputation happens on demand (profile
fetch, loan completion, new rating), never continuously.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from peerlend.models.loan import LoanRequest, LoanStatus
from peerlend.models.repayment import Repayment
from peerlend.models.user import User, UserRole
from peerlend.services.exceptions import NotFoundError
from peerlend.services.loan_state_machine import SCORED_STATES
from peerlend.services.payment_calculator import as_utc, utcnow
from peerlend.services.unit_of_work import atomic

logger = logging.getLogger(__name__)

BASE_SCORE = 50
MIN_SCORE = 0
MAX_SCORE = 100

# (threshold, bonus) pairs, highest first; only the first match applies
ACCOUNT_AGE_BRACKETS = ((365, 10), (180, 7), (90, 5), (30, 3))  # strictly greater than
COMPLETED_LOAN_BRACKETS = ((20, 20), (10, 15), (5, 10), (1, 5))  # at least

REPORT_PENALTY_PER_REPORT = 4
REPORT_PENALTY_CAP = 20
RATING_NEUTRAL = 3
RATING_WEIGHT = 5

ON_TIME_WEIGHT = 25
COMPLETION_WEIGHT = 15
DEFAULT_PENALTY_PER_LOAN = 10
DEFAULT_PENALTY_CAP = 30
LATE_PENALTY_CAP = 10


@dataclass
class TrustScoreInput:
    is_id_verified: bool = False
    is_face_verified: bool = False
    account_age_days: float = 0.0
    completed_loans: int = 0
    report_count: int = 0
    total_ratings: int = 0
    average_rating: float = 0.0


@dataclass
class RepaymentScoreInput:
    is_borrower: bool = True
    scored_loans: int = 0  # loans in completed / in_progress / defaulted
    completed_loans: int = 0
    defaulted_loans: int = 0
    total_repayments: int = 0
    on_time_repayments: int = 0
    late_days: list[int] = field(default_factory=list)
    total_borrowed: Decimal = Decimal("0")


@dataclass
class ScoreResult:
    score: int
    breakdown: dict


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _clamp(value: float) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, _round_half_up(value)))


def calculate_trust_score(data: TrustScoreInput) -> ScoreResult:
    breakdown: dict[str, float] = {}
    score: float = BASE_SCORE

    # Verification
    verification = (5 if data.is_id_verified else 0) + (5 if data.is_face_verified else 0)
    breakdown["verification"] = verification
    score += verification

    # Tenure
    tenure = next((bonus for days, bonus in ACCOUNT_AGE_BRACKETS if data.account_age_days > days), 0)
    breakdown["account_age"] = tenure
    score += tenure

    # Transaction history
    history = next((bonus for count, bonus in COMPLETED_LOAN_BRACKETS if data.completed_loans >= count), 0)
    breakdown["completed_loans"] = history
    score += history

    # Reports
    penalty = min(data.report_count * REPORT_PENALTY_PER_REPORT, REPORT_PENALTY_CAP)
    breakdown["reports"] = -penalty
    score -= penalty

    # Ratings (may be negative)
    rating_bonus = 0.0
    if data.total_ratings > 0:
        rating_bonus = (float(data.average_rating) - RATING_NEUTRAL) * RATING_WEIGHT
    breakdown["rating"] = rating_bonus
    score += rating_bonus

    return ScoreResult(score=_clamp(score), breakdown=breakdown)


def calculate_repayment_score(data: RepaymentScoreInput) -> ScoreResult:
    if not data.is_borrower or data.scored_loans == 0:
        return ScoreResult(score=BASE_SCORE, breakdown={})

    breakdown: dict[str, int] = {}
    score = BASE_SCORE

    on_time = 0
    if data.total_repayments > 0:
        on_time = _round_half_up(data.on_time_repayments / data.total_repayments * ON_TIME_WEIGHT)
    breakdown["on_time_ratio"] = on_time
    score += on_time

    completion = _round_half_up(data.completed_loans / data.scored_loans * COMPLETION_WEIGHT)
    breakdown["completion_rate"] = completion
    score += completion

    default_penalty = min(data.defaulted_loans * DEFAULT_PENALTY_PER_LOAN, DEFAULT_PENALTY_CAP)
    breakdown["defaults"] = -default_penalty
    score -= default_penalty

    late_penalty = 0
    if data.late_days:
        avg_days_late = sum(data.late_days) / len(data.late_days)
        late_penalty = min(_round_half_up(avg_days_late), LATE_PENALTY_CAP)
    breakdown["late_payments"] = -late_penalty
    score -= late_penalty

    if data.total_borrowed > 0 and data.completed_loans >= 5:
        consistency = 10
    elif data.completed_loans >= 2:
        consistency = 5
    else:
        consistency = 0
    breakdown["consistency"] = consistency
    score += consistency

    return ScoreResult(score=_clamp(score), breakdown=breakdown)


# ── Snapshot gathering ────────────────────────────────

async def _get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id, populate_existing=True)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


async def build_trust_input(db: AsyncSession, user: User, now: datetime | None = None) -> TrustScoreInput:
    now = now or utcnow()
    completed = 0
    if user.role in (UserRole.BORROWER, UserRole.LENDER):
        party_column = LoanRequest.borrower_id if user.role == UserRole.BORROWER else LoanRequest.lender_id
        result = await db.execute(
            select(func.count(LoanRequest.id)).where(
                party_column == user.id,
                LoanRequest.status == LoanStatus.COMPLETED,
            )
        )
        completed = result.scalar_one()

    account_age_days = 0.0
    if user.created_at is not None:
        account_age_days = (now - as_utc(user.created_at)).total_seconds() / 86400

    return TrustScoreInput(
        is_id_verified=bool(user.is_id_verified),
        is_face_verified=bool(user.is_face_verified),
        account_age_days=account_age_days,
        completed_loans=completed,
        report_count=user.report_count or 0,
        total_ratings=user.total_ratings or 0,
        average_rating=float(user.average_rating or 0),
    )


async def build_repayment_input(db: AsyncSession, user: User) -> RepaymentScoreInput:
    if user.role != UserRole.BORROWER:
        return RepaymentScoreInput(is_borrower=False)

    status_result = await db.execute(
        select(LoanRequest.status, func.count(LoanRequest.id))
        .where(
            LoanRequest.borrower_id == user.id,
            LoanRequest.status.in_(SCORED_STATES),
        )
        .group_by(LoanRequest.status)
    )
    counts = {status: count for status, count in status_result.all()}

    repayment_result = await db.execute(
        select(Repayment.is_late, Repayment.days_late).where(Repayment.borrower_id == user.id)
    )
    repayments = repayment_result.all()

    return RepaymentScoreInput(
        is_borrower=True,
        scored_loans=sum(counts.values()),
        completed_loans=counts.get(LoanStatus.COMPLETED, 0),
        defaulted_loans=counts.get(LoanStatus.DEFAULTED, 0),
        total_repayments=len(repayments),
        on_time_repayments=sum(1 for is_late, _ in repayments if not is_late),
        late_days=[days_late or 0 for is_late, days_late in repayments if is_late],
        total_borrowed=Decimal(str(user.total_borrowed or 0)),
    )


# ── Recalculation ─────────────────────────────────────

async def recalculate_trust_score(db: AsyncSession, user_id: int, now: datetime | None = None) -> int:
    """Recompute and stage the user's trust score. The caller commits.

    Admins take no part in lending; they are left untouched and get the
    base score back.
    """
    user = await _get_user(db, user_id)
    if user.role == UserRole.ADMIN:
        return BASE_SCORE
    result = calculate_trust_score(await build_trust_input(db, user, now))
    user.trust_score = result.score
    await db.flush()
    logger.debug("Trust score for user %s: %s %s", user_id, result.score, result.breakdown)
    return result.score


async def recalculate_repayment_score(db: AsyncSession, user_id: int) -> int:
    """Recompute and stage a borrower's repayment score.

    Non-borrowers are left untouched and get the base score back.
    """
    user = await _get_user(db, user_id)
    if user.role != UserRole.BORROWER:
        return BASE_SCORE
    result = calculate_repayment_score(await build_repayment_input(db, user))
    user.repayment_score = result.score
    await db.flush()
    logger.debug("Repayment score for user %s: %s %s", user_id, result.score, result.breakdown)
    return result.score


async def recompute_scores(db: AsyncSession, user_id: int) -> dict[str, int]:
    """Recompute and persist both scores (repayment first, then trust)."""
    async with atomic(db):
        repayment_score = await recalculate_repayment_score(db, user_id)
        trust_score = await recalculate_trust_score(db, user_id)
    return {"trust_score": trust_score, "repayment_score": repayment_score}


async def get_credit_history(db: AsyncSession, borrower_id: int) -> list[dict]:
    """Per-loan summary of a borrower's history, newest first."""
    await _get_user(db, borrower_id)

    loans_result = await db.execute(
        select(LoanRequest)
        .where(LoanRequest.borrower_id == borrower_id)
        .order_by(LoanRequest.created_at.desc(), LoanRequest.id.desc())
    )
    loans = loans_result.scalars().all()
    if not loans:
        return []

    loan_ids = [loan.id for loan in loans]
    totals_result = await db.execute(
        select(
            Repayment.loan_request_id,
            func.coalesce(func.sum(Repayment.amount), 0),
            func.count(Repayment.id).filter(Repayment.is_late.is_(True)),
        )
        .where(Repayment.loan_request_id.in_(loan_ids))
        .group_by(Repayment.loan_request_id)
    )
    totals = {loan_id: (repaid, late) for loan_id, repaid, late in totals_result.all()}

    lender_ids = {loan.lender_id for loan in loans if loan.lender_id}
    lenders: dict[int, User] = {}
    if lender_ids:
        lender_result = await db.execute(select(User).where(User.id.in_(lender_ids)))
        lenders = {u.id: u for u in lender_result.scalars().all()}

    history = []
    for loan in loans:
        repaid, late = totals.get(loan.id, (0, 0))
        lender = lenders.get(loan.lender_id) if loan.lender_id else None
        history.append({
            "id": loan.id,
            "amount": float(loan.amount),
            "status": loan.status.value,
            "lender": lender.full_name if lender else None,
            "created_at": loan.created_at,
            "completed_at": loan.completed_at,
            "total_repaid": round(float(repaid or 0), 2),
            "late_payments": int(late or 0),
        })
    return history
