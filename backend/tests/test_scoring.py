"""Tests for the trust and repayment score formulas and their DB-backed recalculation."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from peerlend.models.loan import LoanRequest, LoanStatus
from peerlend.models.repayment import Repayment, RepaymentStatus
from peerlend.models.user import User, UserRole
from peerlend.services.exceptions import NotFoundError
from peerlend.services.scoring import (
    RepaymentScoreInput,
    TrustScoreInput,
    calculate_repayment_score,
    calculate_trust_score,
    get_credit_history,
    recalculate_repayment_score,
    recalculate_trust_score,
    recompute_scores,
)

from conftest import create_user


# ────────────────────────────────────────────────────────────────────
# Trust score
# ────────────────────────────────────────────────────────────────────

class TestTrustScore:

    def test_new_user_gets_base_score(self):
        result = calculate_trust_score(TrustScoreInput(account_age_days=10))
        assert result.score == 50

    def test_fully_established_user_caps_at_100(self):
        result = calculate_trust_score(TrustScoreInput(
            is_id_verified=True,
            is_face_verified=True,
            account_age_days=400,
            completed_loans=20,
            total_ratings=3,
            average_rating=5.0,
        ))
        assert result.score == 100
        assert result.breakdown == {
            "verification": 10,
            "account_age": 10,
            "completed_loans": 20,
            "reports": 0,
            "rating": 10.0,
        }

    @pytest.mark.parametrize("age_days,bonus", [
        (30, 0), (31, 3), (90, 3), (91, 5), (181, 7), (365, 7), (366, 10),
    ])
    def test_account_age_brackets_are_strict(self, age_days, bonus):
        result = calculate_trust_score(TrustScoreInput(account_age_days=age_days))
        assert result.breakdown["account_age"] == bonus

    @pytest.mark.parametrize("completed,bonus", [
        (0, 0), (1, 5), (4, 5), (5, 10), (10, 15), (19, 15), (20, 20), (50, 20),
    ])
    def test_completed_loan_brackets(self, completed, bonus):
        result = calculate_trust_score(TrustScoreInput(completed_loans=completed))
        assert result.breakdown["completed_loans"] == bonus

    def test_report_penalty_is_capped(self):
        assert calculate_trust_score(TrustScoreInput(report_count=2)).score == 42
        assert calculate_trust_score(TrustScoreInput(report_count=10)).score == 30

    def test_low_ratings_reduce_score(self):
        result = calculate_trust_score(TrustScoreInput(total_ratings=2, average_rating=1.0))
        assert result.score == 40

    def test_ratings_ignored_without_any_ratings(self):
        result = calculate_trust_score(TrustScoreInput(total_ratings=0, average_rating=1.0))
        assert result.score == 50

    def test_half_points_round_up(self):
        # (3.5 - 3) * 5 = 2.5
        result = calculate_trust_score(TrustScoreInput(total_ratings=2, average_rating=3.5))
        assert result.score == 53


# ────────────────────────────────────────────────────────────────────
# Repayment score
# ────────────────────────────────────────────────────────────────────

class TestRepaymentScore:

    def test_non_borrower_gets_base(self):
        result = calculate_repayment_score(RepaymentScoreInput(is_borrower=False, scored_loans=3))
        assert result.score == 50
        assert result.breakdown == {}

    def test_no_scored_loans_gets_base(self):
        assert calculate_repayment_score(RepaymentScoreInput()).score == 50

    def test_mixed_history(self):
        result = calculate_repayment_score(RepaymentScoreInput(
            scored_loans=3,
            completed_loans=2,
            total_repayments=4,
            on_time_repayments=3,
            late_days=[5],
            total_borrowed=Decimal("20000"),
        ))
        # 50 + round(18.75) + round(10) - 0 - 5 + 5
        assert result.breakdown == {
            "on_time_ratio": 19,
            "completion_rate": 10,
            "defaults": 0,
            "late_payments": -5,
            "consistency": 5,
        }
        assert result.score == 79

    def test_default_penalty_is_capped(self):
        result = calculate_repayment_score(RepaymentScoreInput(scored_loans=4, defaulted_loans=4))
        assert result.breakdown["defaults"] == -30
        assert result.score == 20

    def test_late_penalty_uses_average_and_cap(self):
        result = calculate_repayment_score(RepaymentScoreInput(
            scored_loans=1, total_repayments=2, late_days=[30, 40],
        ))
        assert result.breakdown["late_payments"] == -10

    def test_on_time_ratio_rounds_half_up(self):
        result = calculate_repayment_score(RepaymentScoreInput(
            scored_loans=1, total_repayments=2, on_time_repayments=1, late_days=[1],
        ))
        assert result.breakdown["on_time_ratio"] == 13

    def test_consistency_bonus_needs_five_completed(self):
        result = calculate_repayment_score(RepaymentScoreInput(
            scored_loans=5, completed_loans=5, total_repayments=5, on_time_repayments=5,
            total_borrowed=Decimal("5000"),
        ))
        assert result.breakdown["consistency"] == 10
        assert result.score == 100


# ────────────────────────────────────────────────────────────────────
# Recalculation against the database
# ────────────────────────────────────────────────────────────────────

async def _add_loan(db, borrower, lender, status, **fields):
    loan = LoanRequest(
        borrower_id=borrower.id,
        lender_id=lender.id,
        amount=Decimal("1000"),
        purpose="test",
        duration=30,
        interest_rate=Decimal("10"),
        status=status,
        **fields,
    )
    db.add(loan)
    await db.commit()
    return loan


class TestRecalculation:

    @pytest.mark.asyncio
    async def test_trust_counts_borrower_completed_loans(self, db, lender):
        borrower = await create_user(db, UserRole.BORROWER, age_days=100, is_id_verified=True)
        for _ in range(5):
            await _add_loan(db, borrower, lender, LoanStatus.COMPLETED)
        await _add_loan(db, borrower, lender, LoanStatus.IN_PROGRESS)

        score = await recalculate_trust_score(db, borrower.id)
        await db.commit()

        # 50 + 5 (id) + 5 (age > 90) + 10 (5 completed)
        assert score == 70
        user = await db.get(User, borrower.id, populate_existing=True)
        assert user.trust_score == 70

    @pytest.mark.asyncio
    async def test_trust_counts_lender_side_for_lenders(self, db, borrower, lender):
        await _add_loan(db, borrower, lender, LoanStatus.COMPLETED)
        assert await recalculate_trust_score(db, lender.id) == 55

    @pytest.mark.asyncio
    async def test_trust_score_untouched_for_admins(self, db, admin):
        admin.trust_score = 77
        await db.commit()
        assert await recalculate_trust_score(db, admin.id) == 50
        user = await db.get(User, admin.id, populate_existing=True)
        assert user.trust_score == 77

    @pytest.mark.asyncio
    async def test_repayment_score_from_history(self, db, borrower, lender):
        loan = await _add_loan(db, borrower, lender, LoanStatus.COMPLETED)
        await _add_loan(db, borrower, lender, LoanStatus.DEFAULTED)
        now = datetime.now(timezone.utc)
        for is_late, days_late in ((False, 0), (True, 3)):
            db.add(Repayment(
                loan_request_id=loan.id, borrower_id=borrower.id, lender_id=lender.id,
                amount=Decimal("500"), payment_date=now, status=RepaymentStatus.CONFIRMED,
                is_late=is_late, days_late=days_late,
            ))
        await db.commit()

        score = await recalculate_repayment_score(db, borrower.id)
        # 50 + round(12.5) + round(7.5) - 10 - 3 + 0
        assert score == 58

    @pytest.mark.asyncio
    async def test_repayment_score_untouched_for_lenders(self, db, lender):
        lender.repayment_score = 77
        await db.commit()
        assert await recalculate_repayment_score(db, lender.id) == 50
        user = await db.get(User, lender.id, populate_existing=True)
        assert user.repayment_score == 77

    @pytest.mark.asyncio
    async def test_recompute_scores_persists_both(self, db, borrower):
        borrower.trust_score = 10
        borrower.repayment_score = 10
        await db.commit()

        scores = await recompute_scores(db, borrower.id)

        assert scores == {"trust_score": 50, "repayment_score": 50}
        user = await db.get(User, borrower.id, populate_existing=True)
        assert (user.trust_score, user.repayment_score) == (50, 50)

    @pytest.mark.asyncio
    async def test_unknown_user(self, db):
        with pytest.raises(NotFoundError):
            await recompute_scores(db, 9999)


class TestCreditHistory:

    @pytest.mark.asyncio
    async def test_summarises_each_loan(self, db, borrower, lender):
        loan = await _add_loan(db, borrower, lender, LoanStatus.COMPLETED)
        now = datetime.now(timezone.utc)
        db.add_all([
            Repayment(
                loan_request_id=loan.id, borrower_id=borrower.id, lender_id=lender.id,
                amount=Decimal("600"), payment_date=now, status=RepaymentStatus.CONFIRMED,
                is_late=True, days_late=2,
            ),
            Repayment(
                loan_request_id=loan.id, borrower_id=borrower.id, lender_id=lender.id,
                amount=Decimal("408.22"), payment_date=now + timedelta(days=1),
                status=RepaymentStatus.CONFIRMED,
            ),
        ])
        await db.commit()

        history = await get_credit_history(db, borrower.id)

        assert len(history) == 1
        entry = history[0]
        assert entry["id"] == loan.id
        assert entry["status"] == "completed"
        assert entry["lender"] == lender.full_name
        assert entry["total_repaid"] == 1008.22
        assert entry["late_payments"] == 1

    @pytest.mark.asyncio
    async def test_empty_history(self, db, borrower):
        assert await get_credit_history(db, borrower.id) == []
