"""User model for borrowers, lenders and admins."""

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Boolean, Enum, DateTime, Integer, Numeric, func
from sqlalchemy.orm import Mapped, mapped_column

from peerlend.database import Base


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    LENDER = "lender"
    BORROWER = "borrower"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    whatsapp: Mapped[str | None] = mapped_column(String(20), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)

    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), default=UserRole.BORROWER, nullable=False,
    )

    # Onboarding / verification (owned by the identity subsystem)
    is_id_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_face_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_onboarding_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Lender working capital; only the loan lifecycle service writes these
    lending_limit: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    available_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total_lent: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total_borrowed: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    # Reputation, written by the scoring engine and the rating updater
    trust_score: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    repayment_score: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    total_ratings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=0, nullable=False)
    report_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
