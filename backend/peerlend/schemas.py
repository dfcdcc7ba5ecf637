"""Pydantic schemas for request/response validation.

Range checks that depend on platform settings (amount and duration bands)
happen in the lifecycle service, not here.
"""

from datetime import datetime
from typing import Optional, Literal
from pydantic import BaseModel, Field


# ── Loans ─────────────────────────────────────────────

class LoanRequestCreate(BaseModel):
    amount: float = Field(gt=0)
    purpose: str = Field(min_length=1, max_length=2000)
    duration: int = Field(gt=0)
    interest_rate: Optional[float] = Field(default=None, ge=0, le=100)


class LoanRequestResponse(BaseModel):
    id: int
    borrower_id: int
    lender_id: Optional[int] = None
    amount: float
    purpose: str
    duration: int
    interest_rate: float
    status: str
    due_date: Optional[datetime] = None
    total_repayable: Optional[float] = None
    remaining_amount: Optional[float] = None
    amount_repaid: float = 0
    is_contact_shared: bool = False
    contact_shared_at: Optional[datetime] = None
    borrower_rating: Optional[int] = None
    lender_rating: Optional[int] = None
    remarks: Optional[str] = None
    accepted_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PartyProfile(BaseModel):
    id: int
    first_name: str
    last_name: str
    city: Optional[str] = None
    state: Optional[str] = None
    trust_score: int
    repayment_score: int
    average_rating: float
    total_ratings: int
    is_id_verified: bool = False
    is_face_verified: bool = False
    # Masked (None) until the contact is shared
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None


class MarketplaceItem(BaseModel):
    loan: LoanRequestResponse
    borrower: Optional[PartyProfile] = None


class MarketplacePage(BaseModel):
    items: list[MarketplaceItem]
    total: int
    page: int
    total_pages: int


class LoanRequestPage(BaseModel):
    items: list[LoanRequestResponse]
    total: int
    page: int
    total_pages: int


# ── Repayments ────────────────────────────────────────

PaymentMethodLiteral = Literal["cash", "bank_transfer", "upi", "cheque", "other"]


class RepaymentCreate(BaseModel):
    amount: float = Field(gt=0)
    payment_method: Optional[PaymentMethodLiteral] = None
    transaction_reference: Optional[str] = Field(default=None, max_length=100)
    remarks: Optional[str] = Field(default=None, max_length=2000)


class RepaymentResponse(BaseModel):
    id: int
    loan_request_id: int
    borrower_id: int
    lender_id: int
    amount: float
    payment_date: datetime
    payment_method: Optional[str] = None
    transaction_reference: Optional[str] = None
    remarks: Optional[str] = None
    status: str
    confirmed_by_lender: bool
    confirmed_at: Optional[datetime] = None
    is_late: bool
    days_late: int

    model_config = {"from_attributes": True}


class RepaymentRecorded(BaseModel):
    repayment: RepaymentResponse
    loan: LoanRequestResponse


class LoanDetailResponse(BaseModel):
    loan: LoanRequestResponse
    borrower: Optional[PartyProfile] = None
    lender: Optional[PartyProfile] = None
    repayments: list[RepaymentResponse] = []


# ── Ratings & disputes ────────────────────────────────

class RatingCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    review: Optional[str] = Field(default=None, max_length=2000)


class ReasonBody(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


# ── Profile ───────────────────────────────────────────

class ProfileResponse(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    role: str
    is_id_verified: bool
    is_face_verified: bool
    is_onboarding_complete: bool
    lending_limit: float
    available_balance: float
    total_lent: float
    total_borrowed: float
    trust_score: int
    repayment_score: int
    total_ratings: int
    average_rating: float
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CreditHistoryItem(BaseModel):
    id: int
    amount: float
    status: str
    lender: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_repaid: float
    late_payments: int
