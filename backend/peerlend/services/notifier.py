"""In-app notifications for loan lifecycle events.

Only the notification rows are written here; SMS / WhatsApp / email
delivery is handled outside this service. Callers stage notifications
inside a ``best_effort`` block so a failure never affects the loan.
"""

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from peerlend.config import settings
from peerlend.models.notification import Notification, NotificationType
from peerlend.models.user import User, UserRole

logger = logging.getLogger(__name__)

RELATED_LOAN = "LoanRequest"


def _fmt_amount(amount) -> str:
    return f"{settings.currency_symbol}{Decimal(str(amount)):,.2f}"


# ── Message templates ─────────────────────────────────

def loan_request_created(borrower_name: str, amount) -> tuple[str, str]:
    return "New Loan Request", f"{borrower_name} is requesting a loan of {_fmt_amount(amount)}"


def loan_accepted(lender_name: str, amount) -> tuple[str, str]:
    return "Loan Request Accepted", f"{lender_name} has accepted your loan request of {_fmt_amount(amount)}"


def loan_fulfilled(borrower_name: str, amount) -> tuple[str, str]:
    return "Loan Fulfilled", f"{borrower_name} has confirmed receiving {_fmt_amount(amount)}"


def payment_received(amount, remaining) -> tuple[str, str]:
    return (
        "Payment Recorded",
        f"Your lender recorded a payment of {_fmt_amount(amount)}. "
        f"Remaining: {_fmt_amount(remaining)}",
    )


def loan_completed(amount) -> tuple[str, str]:
    return "Loan Completed", f"Your loan of {_fmt_amount(amount)} has been fully repaid"


def rating_received(rating: int) -> tuple[str, str]:
    return "New Rating", f"You received a {rating}-star rating"


def dispute_raised(loan_id: int, raised_by: str) -> tuple[str, str]:
    return "Dispute Raised", f"{raised_by} raised a dispute on loan #{loan_id}"


# ── Writers ───────────────────────────────────────────

async def create_notification(
    db: AsyncSession,
    *,
    user_id: int,
    type: NotificationType,
    title: str,
    message: str,
    related_id: int | None = None,
    related_type: str | None = RELATED_LOAN,
) -> Notification:
    """Stage a notification row. The caller commits."""
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        related_id=related_id,
        related_type=related_type,
    )
    db.add(notification)
    await db.flush()
    logger.debug("Notification %s queued for user %s", type.value, user_id)
    return notification


async def notify_admins(
    db: AsyncSession,
    *,
    type: NotificationType,
    title: str,
    message: str,
    related_id: int | None = None,
) -> int:
    """Fan a notification out to every active admin. Returns how many were staged."""
    result = await db.execute(
        select(User.id).where(User.role == UserRole.ADMIN, User.is_active.is_(True))
    )
    admin_ids = result.scalars().all()
    for admin_id in admin_ids:
        db.add(Notification(
            user_id=admin_id,
            type=type,
            title=title,
            message=message,
            related_id=related_id,
            related_type=RELATED_LOAN,
        ))
    if admin_ids:
        await db.flush()
    return len(admin_ids)
