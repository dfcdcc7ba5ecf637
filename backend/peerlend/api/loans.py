"""Loan request endpoints: marketplace, lifecycle transitions, repayments, ratings."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from peerlend.auth_utils import get_current_user, require_roles
from peerlend.database import get_db
from peerlend.models.user import User, UserRole
from peerlend.rate_limit import limiter
from peerlend.schemas import (
    LoanDetailResponse,
    LoanRequestCreate,
    LoanRequestPage,
    LoanRequestResponse,
    MarketplacePage,
    RatingCreate,
    ReasonBody,
    RepaymentCreate,
    RepaymentRecorded,
    RepaymentResponse,
)
from peerlend.services import loan_lifecycle, loan_queries
from peerlend.services.error_logger import log_error
from peerlend.services.exceptions import LendingError

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Marketplace & dashboards ─────────────────────────


@router.get("/pending", response_model=MarketplacePage)
async def list_pending(
    min_amount: Optional[float] = Query(None, ge=0),
    max_amount: Optional[float] = Query(None, ge=0),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_roles(UserRole.LENDER)),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await loan_queries.list_pending_requests(
            db,
            current_user.id,
            min_amount=min_amount,
            max_amount=max_amount,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="list_pending")
        raise


@router.get("/my-requests", response_model=LoanRequestPage)
async def my_requests(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_roles(UserRole.BORROWER)),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await loan_queries.list_borrower_requests(
            db, current_user.id, status=status, page=page, limit=limit
        )
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="my_requests")
        raise


@router.get("/my-lending", response_model=LoanRequestPage)
async def my_lending(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_roles(UserRole.LENDER)),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await loan_queries.list_lender_history(
            db, current_user.id, status=status, page=page, limit=limit
        )
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="my_lending")
        raise


# ── Create ────────────────────────────────────────────


@router.post("", response_model=LoanRequestResponse, status_code=201)
@limiter.limit("30/minute")
async def create_loan_request(
    data: LoanRequestCreate,
    request: Request,
    current_user: User = Depends(require_roles(UserRole.BORROWER)),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await loan_lifecycle.create_loan_request(
            db,
            current_user.id,
            amount=data.amount,
            purpose=data.purpose,
            duration=data.duration,
            interest_rate=data.interest_rate,
        )
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="create_loan_request")
        raise


# ── Single loan ──────────────────────────────────────


@router.get("/{loan_id}", response_model=LoanDetailResponse)
async def get_loan(
    loan_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await loan_queries.get_loan_details(db, current_user.id, loan_id)
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="get_loan")
        raise


@router.post("/{loan_id}/accept", response_model=LoanRequestResponse)
@limiter.limit("30/minute")
async def accept_loan(
    loan_id: int,
    request: Request,
    current_user: User = Depends(require_roles(UserRole.LENDER)),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await loan_lifecycle.accept_loan_request(db, current_user.id, loan_id)
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="accept_loan")
        raise


@router.post("/{loan_id}/fulfill", response_model=LoanRequestResponse)
async def fulfill_loan(
    loan_id: int,
    current_user: User = Depends(require_roles(UserRole.BORROWER)),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await loan_lifecycle.mark_fulfilled(db, current_user.id, loan_id)
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="fulfill_loan")
        raise


@router.post("/{loan_id}/repayments", response_model=RepaymentRecorded, status_code=201)
@limiter.limit("30/minute")
async def record_repayment(
    loan_id: int,
    data: RepaymentCreate,
    request: Request,
    current_user: User = Depends(require_roles(UserRole.LENDER)),
    db: AsyncSession = Depends(get_db),
):
    """Lender records a payment received from the borrower.

    Resubmitting with the same transaction_reference returns the original
    repayment instead of recording it twice.
    """
    try:
        repayment, loan = await loan_lifecycle.record_repayment(
            db,
            current_user.id,
            loan_id,
            amount=data.amount,
            payment_method=data.payment_method,
            transaction_reference=data.transaction_reference,
            remarks=data.remarks,
        )
        return {"repayment": repayment, "loan": loan}
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="record_repayment")
        raise


@router.get("/{loan_id}/repayments", response_model=list[RepaymentResponse])
async def list_repayments(
    loan_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await loan_queries.list_repayments(db, current_user.id, loan_id)
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="list_repayments")
        raise


@router.post("/{loan_id}/cancel", response_model=LoanRequestResponse)
async def cancel_loan(
    loan_id: int,
    current_user: User = Depends(require_roles(UserRole.BORROWER)),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await loan_lifecycle.cancel_loan_request(db, current_user.id, loan_id)
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="cancel_loan")
        raise


@router.post("/{loan_id}/rate")
async def rate_loan(
    loan_id: int,
    data: RatingCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        await loan_lifecycle.rate_counterparty(
            db, current_user.id, loan_id, rating=data.rating, review=data.review
        )
        return {"status": "ok", "message": "Rating submitted"}
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="rate_loan")
        raise


@router.post("/{loan_id}/dispute", response_model=LoanRequestResponse)
async def dispute_loan(
    loan_id: int,
    data: ReasonBody,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await loan_lifecycle.raise_dispute(db, current_user.id, loan_id, reason=data.reason)
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.loans", function_name="dispute_loan")
        raise
