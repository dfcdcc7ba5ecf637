"""In-app notification records. Delivery channels live elsewhere."""

import enum
from datetime import datetime

from sqlalchemy import String, Text, Integer, Boolean, Enum, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from peerlend.database import Base


class NotificationType(str, enum.Enum):
    LOAN_REQUEST = "loan_request"
    LOAN_ACCEPTED = "loan_accepted"
    LOAN_FULFILLED = "loan_fulfilled"
    PAYMENT_RECEIVED = "payment_received"
    LOAN_COMPLETED = "loan_completed"
    RATING_RECEIVED = "rating_received"
    DISPUTE = "dispute"
    GENERAL = "general"


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType), default=NotificationType.GENERAL, nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    related_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    related_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
