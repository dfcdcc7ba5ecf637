"""Repayment model: one append-only row per recorded payment."""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Numeric, Integer, Enum, DateTime, ForeignKey, Text, Boolean,
    UniqueConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column

from peerlend.database import Base


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    CHEQUE = "cheque"
    OTHER = "other"


class RepaymentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISPUTED = "disputed"


class Repayment(Base):
    __tablename__ = "repayments"
    __table_args__ = (
        # De-duplication key for retried submissions; NULL references never collide.
        UniqueConstraint("loan_request_id", "transaction_reference", name="uq_repayment_loan_reference"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    loan_request_id: Mapped[int] = mapped_column(
        ForeignKey("loan_requests.id"), nullable=False, index=True
    )
    borrower_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    lender_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payment_method: Mapped[PaymentMethod | None] = mapped_column(Enum(PaymentMethod), nullable=True)
    transaction_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[RepaymentStatus] = mapped_column(
        Enum(RepaymentStatus), default=RepaymentStatus.PENDING, nullable=False
    )
    confirmed_by_lender: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_late: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    days_late: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
