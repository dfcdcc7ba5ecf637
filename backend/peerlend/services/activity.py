"""Activity log writer."""

from sqlalchemy.ext.asyncio import AsyncSession

from peerlend.models.activity_log import ActivityLog


async def record_activity(
    db: AsyncSession,
    *,
    user_id: int,
    action: str,
    description: str | None = None,
    entity_type: str | None = "LoanRequest",
    entity_id: int | None = None,
    metadata: dict | None = None,
    ip_address: str | None = None,
) -> ActivityLog:
    entry = ActivityLog(
        user_id=user_id,
        action=action,
        description=description,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata_=metadata,
        ip_address=ip_address,
    )
    db.add(entry)
    await db.flush()
    return entry
