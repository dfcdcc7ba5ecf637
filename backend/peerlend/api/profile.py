"""Profile endpoints: own profile with fresh scores, and borrower credit history."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from peerlend.auth_utils import get_current_user
from peerlend.database import get_db
from peerlend.models.user import User, UserRole
from peerlend.schemas import CreditHistoryItem, ProfileResponse
from peerlend.services.error_logger import log_error
from peerlend.services.exceptions import LendingError
from peerlend.services.scoring import get_credit_history, recompute_scores

router = APIRouter()


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Recompute both scores, then return the profile."""
    user_id = current_user.id
    try:
        await recompute_scores(db, user_id)
        user = await db.get(User, user_id, populate_existing=True)
        return user
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.profile", function_name="get_my_profile", user_id=user_id)
        raise


@router.get("/{user_id}/credit-history", response_model=list[CreditHistoryItem])
async def credit_history(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Borrower's loan history. Visible to the borrower, lenders and admins."""
    if current_user.role == UserRole.BORROWER and current_user.id != user_id:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    try:
        return await get_credit_history(db, user_id)
    except (HTTPException, LendingError):
        raise
    except Exception as e:
        await log_error(e, db=db, module="api.profile", function_name="credit_history")
        raise
