"""Read-side loan queries: marketplace listing, dashboards and details.

Nothing here mutates state. Visibility rules: parties and admins see a loan;
onboarded lenders may also look at pending requests they could accept.
Counterparty contact fields stay masked until the contact is shared on
acceptance.
"""

import math

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from peerlend.models.loan import LoanRequest, LoanStatus
from peerlend.models.repayment import Repayment
from peerlend.models.user import User, UserRole
from peerlend.services.exceptions import ForbiddenError, NotFoundError, ValidationError

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

SORTABLE_COLUMNS = {
    "created_at": LoanRequest.created_at,
    "amount": LoanRequest.amount,
    "duration": LoanRequest.duration,
    "interest_rate": LoanRequest.interest_rate,
}

CONTACT_FIELDS = ("email", "phone", "whatsapp")


def _check_paging(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("page must be at least 1", {"page": page})
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", {"limit": limit})


async def _paginate(db: AsyncSession, stmt, page: int, limit: int, order_by) -> dict:
    _check_paging(page, limit)
    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
    result = await db.execute(
        stmt.order_by(*order_by).offset((page - 1) * limit).limit(limit)
    )
    return {
        "items": list(result.scalars().all()),
        "total": total,
        "page": page,
        "total_pages": math.ceil(total / limit),
    }


async def _get_actor(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def _parse_status(status: str | LoanStatus | None) -> LoanStatus | None:
    if status is None or isinstance(status, LoanStatus):
        return status
    try:
        return LoanStatus(status)
    except ValueError:
        raise ValidationError(
            "Unknown loan status", {"status": status, "allowed": [s.value for s in LoanStatus]}
        )


async def list_pending_requests(
    db: AsyncSession,
    lender_id: int,
    *,
    min_amount=None,
    max_amount=None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict:
    """Visible pending requests for the marketplace."""
    lender = await _get_actor(db, lender_id)
    if lender.role != UserRole.LENDER:
        raise ForbiddenError("Only lenders can browse loan requests")
    if not lender.is_onboarding_complete:
        raise ForbiddenError("Complete onboarding before browsing loan requests")

    column = SORTABLE_COLUMNS.get(sort_by)
    if column is None:
        raise ValidationError("Unsupported sort field", {"sort_by": sort_by, "allowed": list(SORTABLE_COLUMNS)})
    if sort_order.lower() not in ("asc", "desc"):
        raise ValidationError("sort_order must be asc or desc", {"sort_order": sort_order})

    stmt = select(LoanRequest).where(
        LoanRequest.status == LoanStatus.PENDING,
        LoanRequest.is_visible.is_(True),
    )
    if min_amount is not None:
        stmt = stmt.where(LoanRequest.amount >= min_amount)
    if max_amount is not None:
        stmt = stmt.where(LoanRequest.amount <= max_amount)

    ordering = column.asc() if sort_order.lower() == "asc" else column.desc()
    page_data = await _paginate(db, stmt, page, limit, (ordering, LoanRequest.id.desc()))

    borrower_ids = {loan.borrower_id for loan in page_data["items"]}
    borrowers = {}
    if borrower_ids:
        result = await db.execute(select(User).where(User.id.in_(borrower_ids)))
        borrowers = {u.id: u for u in result.scalars().all()}
    page_data["items"] = [
        {"loan": loan, "borrower": public_profile(borrowers.get(loan.borrower_id))}
        for loan in page_data["items"]
    ]
    return page_data


async def list_borrower_requests(
    db: AsyncSession,
    borrower_id: int,
    *,
    status: str | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict:
    stmt = select(LoanRequest).where(LoanRequest.borrower_id == borrower_id)
    parsed = _parse_status(status)
    if parsed is not None:
        stmt = stmt.where(LoanRequest.status == parsed)
    return await _paginate(db, stmt, page, limit, (LoanRequest.created_at.desc(), LoanRequest.id.desc()))


async def list_lender_history(
    db: AsyncSession,
    lender_id: int,
    *,
    status: str | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict:
    stmt = select(LoanRequest).where(LoanRequest.lender_id == lender_id)
    parsed = _parse_status(status)
    if parsed is not None:
        stmt = stmt.where(LoanRequest.status == parsed)
    return await _paginate(db, stmt, page, limit, (LoanRequest.accepted_at.desc(), LoanRequest.id.desc()))


def public_profile(user: User | None, *, include_contact: bool = False) -> dict | None:
    if user is None:
        return None
    profile = {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "city": user.city,
        "state": user.state,
        "trust_score": user.trust_score,
        "repayment_score": user.repayment_score,
        "average_rating": user.average_rating,
        "total_ratings": user.total_ratings,
        "is_id_verified": user.is_id_verified,
        "is_face_verified": user.is_face_verified,
    }
    for name in CONTACT_FIELDS:
        profile[name] = getattr(user, name) if include_contact else None
    return profile


def _can_view(actor: User, loan: LoanRequest) -> bool:
    if actor.role == UserRole.ADMIN or actor.id in (loan.borrower_id, loan.lender_id):
        return True
    # Marketplace preview before accepting
    return (
        actor.role == UserRole.LENDER
        and actor.is_onboarding_complete
        and loan.status == LoanStatus.PENDING
        and loan.is_visible
    )


async def _visible_loan(db: AsyncSession, user_id: int, loan_id: int) -> tuple[User, LoanRequest]:
    actor = await _get_actor(db, user_id)
    loan = await db.get(LoanRequest, loan_id)
    if loan is None:
        raise NotFoundError("Loan request", loan_id)
    if not _can_view(actor, loan):
        raise ForbiddenError("You do not have access to this loan", {"loan_id": loan_id})
    return actor, loan


async def list_repayments(db: AsyncSession, user_id: int, loan_id: int) -> list[Repayment]:
    actor, loan = await _visible_loan(db, user_id, loan_id)
    if actor.role != UserRole.ADMIN and actor.id not in (loan.borrower_id, loan.lender_id):
        raise ForbiddenError("You do not have access to this loan", {"loan_id": loan_id})
    result = await db.execute(
        select(Repayment)
        .where(Repayment.loan_request_id == loan.id)
        .order_by(Repayment.payment_date.desc(), Repayment.id.desc())
    )
    return list(result.scalars().all())


async def get_loan_details(db: AsyncSession, user_id: int, loan_id: int) -> dict:
    """Loan with both parties' public profiles and, for parties, its repayments."""
    actor, loan = await _visible_loan(db, user_id, loan_id)
    is_party = actor.id in (loan.borrower_id, loan.lender_id)

    borrower = await db.get(User, loan.borrower_id)
    lender = await db.get(User, loan.lender_id) if loan.lender_id else None

    repayments: list[Repayment] = []
    if is_party or actor.role == UserRole.ADMIN:
        repayments = await list_repayments(db, user_id, loan_id)

    show_contact = bool(loan.is_contact_shared)
    return {
        "loan": loan,
        "borrower": public_profile(borrower, include_contact=show_contact),
        "lender": public_profile(lender, include_contact=show_contact),
        "repayments": repayments,
    }
