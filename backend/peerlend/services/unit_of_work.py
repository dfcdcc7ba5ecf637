"""Transaction helpers shared by the lending services.

``atomic`` wraps the primary state change of an operation: commit on success,
roll back on any error and re-raise. ``best_effort`` wraps follow-up work
(notifications, activity log, score recomputation) that must never undo or
fail the transition that triggered it.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from peerlend.services.error_logger import log_error

logger = logging.getLogger(__name__)


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    try:
        yield db
        await db.commit()
    except BaseException:
        await db.rollback()
        raise


@asynccontextmanager
async def best_effort(
    db: AsyncSession, label: str, loan_id: int | None = None
) -> AsyncIterator[AsyncSession]:
    """Run a non-critical step in its own session and commit; log and swallow failures.

    The step gets a separate session on the same bind, so a failure never
    rolls back (or expires objects loaded in) the caller's session.
    """
    async with AsyncSession(bind=db.bind, expire_on_commit=False) as side:
        try:
            yield side
            await side.commit()
        except Exception as e:
            logger.warning("Best-effort step %r failed for loan %s: %s", label, loan_id, e)
            await log_error(e, db=side, module=__name__, function_name=label, loan_request_id=loan_id)
