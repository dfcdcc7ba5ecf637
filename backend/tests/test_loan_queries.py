"""Tests for marketplace listings, dashboards and loan detail visibility."""

import pytest

from peerlend.models.loan import LoanStatus
from peerlend.models.user import UserRole
from peerlend.services import loan_lifecycle
from peerlend.services.exceptions import ForbiddenError, NotFoundError, ValidationError
from peerlend.services.loan_queries import (
    get_loan_details,
    list_borrower_requests,
    list_lender_history,
    list_pending_requests,
    list_repayments,
)

from conftest import create_user, running_loan


async def _request(db, borrower, amount, **fields):
    return await loan_lifecycle.create_loan_request(
        db, borrower.id, amount=amount, purpose="Stock", duration=fields.pop("duration", 30), **fields,
    )


class TestMarketplace:

    @pytest.mark.asyncio
    async def test_filters_and_sorts(self, db, borrower, lender):
        for amount in (2000, 8000, 5000):
            await _request(db, borrower, amount)

        page = await list_pending_requests(
            db, lender.id, min_amount=3000, sort_by="amount", sort_order="asc",
        )

        assert page["total"] == 2
        assert page["total_pages"] == 1
        assert [item["loan"].amount for item in page["items"]] == [5000, 8000]
        assert page["items"][0]["borrower"]["id"] == borrower.id
        assert page["items"][0]["borrower"]["phone"] is None

    @pytest.mark.asyncio
    async def test_only_pending_visible_loans(self, db, borrower, lender):
        taken = await _request(db, borrower, 1000)
        await _request(db, borrower, 2000)
        await loan_lifecycle.accept_loan_request(db, lender.id, taken.id)

        page = await list_pending_requests(db, lender.id)
        assert [item["loan"].amount for item in page["items"]] == [2000]

    @pytest.mark.asyncio
    async def test_pagination(self, db, borrower, lender):
        for amount in (1000, 2000, 3000):
            await _request(db, borrower, amount)
        page = await list_pending_requests(db, lender.id, sort_by="amount", sort_order="asc", page=2, limit=2)
        assert page["total_pages"] == 2
        assert [item["loan"].amount for item in page["items"]] == [3000]

    @pytest.mark.asyncio
    async def test_requires_onboarded_lender(self, db, borrower):
        newcomer = await create_user(db, UserRole.LENDER, onboarded=False)
        with pytest.raises(ForbiddenError):
            await list_pending_requests(db, newcomer.id)
        with pytest.raises(ForbiddenError):
            await list_pending_requests(db, borrower.id)

    @pytest.mark.asyncio
    async def test_rejects_unknown_sort_field(self, db, lender):
        with pytest.raises(ValidationError):
            await list_pending_requests(db, lender.id, sort_by="purpose")


class TestDashboards:

    @pytest.mark.asyncio
    async def test_borrower_requests_by_status(self, db, borrower):
        first = await _request(db, borrower, 1000)
        await _request(db, borrower, 2000)
        await loan_lifecycle.cancel_loan_request(db, borrower.id, first.id)

        page = await list_borrower_requests(db, borrower.id, status="pending")
        assert page["total"] == 1
        assert (await list_borrower_requests(db, borrower.id))["total"] == 2

    @pytest.mark.asyncio
    async def test_unknown_status_filter(self, db, borrower):
        with pytest.raises(ValidationError):
            await list_borrower_requests(db, borrower.id, status="lost")

    @pytest.mark.asyncio
    async def test_lender_history(self, db, borrower, lender):
        await running_loan(db, borrower, lender)
        page = await list_lender_history(db, lender.id, status=LoanStatus.IN_PROGRESS)
        assert page["total"] == 1
        assert page["items"][0].lender_id == lender.id


class TestLoanDetails:

    @pytest.mark.asyncio
    async def test_contact_hidden_until_accepted(self, db, borrower, lender):
        loan = await _request(db, borrower, 1000)

        details = await get_loan_details(db, lender.id, loan.id)
        assert details["borrower"]["email"] is None
        assert details["lender"] is None
        assert details["repayments"] == []

        await loan_lifecycle.accept_loan_request(db, lender.id, loan.id)
        details = await get_loan_details(db, borrower.id, loan.id)
        assert details["borrower"]["email"] == borrower.email
        assert details["lender"]["phone"] == lender.phone

    @pytest.mark.asyncio
    async def test_outsiders_cannot_see_running_loans(self, db, borrower, lender):
        outsider = await create_user(db, UserRole.LENDER, balance=1000)
        loan = await running_loan(db, borrower, lender)
        with pytest.raises(ForbiddenError):
            await get_loan_details(db, outsider.id, loan.id)
        with pytest.raises(ForbiddenError):
            await list_repayments(db, outsider.id, loan.id)

    @pytest.mark.asyncio
    async def test_admin_sees_repayments(self, db, borrower, lender, admin):
        loan = await running_loan(db, borrower, lender)
        await loan_lifecycle.record_repayment(db, lender.id, loan.id, amount=250)
        details = await get_loan_details(db, admin.id, loan.id)
        assert len(details["repayments"]) == 1

    @pytest.mark.asyncio
    async def test_unknown_loan(self, db, lender):
        with pytest.raises(NotFoundError):
            await get_loan_details(db, lender.id, 9999)
