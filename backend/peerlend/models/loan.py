"""Loan request model: the entity driven by the lifecycle state machine."""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Numeric, Integer, Enum, DateTime, ForeignKey, Text, Boolean, func
)
from sqlalchemy.orm import Mapped, mapped_column

from peerlend.database import Base


class LoanStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"
    DISPUTED = "disputed"


class LoanRequest(Base):
    __tablename__ = "loan_requests"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    borrower_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    lender_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    # Terms
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)  # days
    interest_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)  # % p.a.

    status: Mapped[LoanStatus] = mapped_column(
        Enum(LoanStatus), default=LoanStatus.PENDING, nullable=False, index=True
    )
    status_before_dispute: Mapped[LoanStatus | None] = mapped_column(
        Enum(LoanStatus), nullable=True
    )

    # Set on acceptance
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_repayable: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    remaining_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    amount_repaid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    # Contact sharing
    is_contact_shared: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    contact_shared_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Post-completion ratings, each settable once
    borrower_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    borrower_review: Mapped[str | None] = mapped_column(Text, nullable=True)
    lender_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lender_review: Mapped[str | None] = mapped_column(Text, nullable=True)

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_visible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Timestamps
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    fulfilled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
