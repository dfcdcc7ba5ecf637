"""Rating updater: the only code path that changes a user's average rating."""

import logging
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.ext.asyncio import AsyncSession

from peerlend.models.user import User
from peerlend.services.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5
AVERAGE_QUANTUM = Decimal("0.01")


def validate_rating(rating) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError("Rating must be a whole number", {"rating": rating})
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(
            f"Rating must be between {MIN_RATING} and {MAX_RATING}", {"rating": rating}
        )
    return rating


def next_average(old_average, old_total: int, rating: int) -> tuple[int, Decimal]:
    """Fold one rating into a running average. Returns ``(new_total, new_average)``."""
    new_total = old_total + 1
    average = (Decimal(str(old_average)) * old_total + rating) / new_total
    return new_total, average.quantize(AVERAGE_QUANTUM, rounding=ROUND_HALF_UP)


async def apply_rating(db: AsyncSession, user_id: int, rating: int) -> tuple[int, Decimal]:
    """Stage the new rating on ``user_id``. The caller commits.

    The row is locked for the rest of the transaction where the backend
    supports it so concurrent ratings fold in one at a time.
    """
    rating = validate_rating(rating)
    user = await db.get(User, user_id, populate_existing=True, with_for_update=True)
    if user is None:
        raise NotFoundError("User", user_id)

    new_total, new_average = next_average(user.average_rating or 0, user.total_ratings or 0, rating)
    user.total_ratings = new_total
    user.average_rating = new_average
    await db.flush()
    logger.info("User %s rated %s; average now %s over %s", user_id, rating, new_average, new_total)
    return new_total, new_average
