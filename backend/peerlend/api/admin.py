"""Admin endpoints for dispute resolution and defaults."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from peerlend.auth_utils import require_roles
from peerlend.database import get_db
from peerlend.models.user import User, UserRole
from peerlend.schemas import LoanRequestResponse, ReasonBody
from peerlend.services import loan_lifecycle
from peerlend.services.error_logger import log_error
from peerlend.services.exceptions import LendingError

router = APIRouter()


@router.post("/loans/{loan_id}/resolve-dispute", response_model=LoanRequestResponse)
async def resolve_dispute(
    loan_id: int,
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    """Return a disputed loan to the status it had when the dispute was raised."""
    try:
        return await loan_lifecycle.resolve_dispute(db, current_user.id, loan_id)
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.admin", function_name="resolve_dispute")
        raise


@router.post("/loans/{loan_id}/default", response_model=LoanRequestResponse)
async def mark_defaulted(
    loan_id: int,
    data: ReasonBody,
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await loan_lifecycle.mark_defaulted(db, current_user.id, loan_id, reason=data.reason)
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.admin", function_name="mark_defaulted")
        raise
