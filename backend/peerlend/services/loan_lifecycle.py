"""Loan lifecycle manager.

Every state change runs as one unit of work: the status moves with a
compare-and-swap ``UPDATE ... WHERE status = <expected>`` and any balance
change happens in the same transaction, so a request that lost a race gets
InvalidStateError and nothing else is touched. Notifications, activity log
entries and score recomputation run afterwards in ``best_effort`` blocks.

All balance mutations on users live in this module.
"""

import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from peerlend.models.loan import LoanRequest, LoanStatus
from peerlend.models.notification import NotificationType
from peerlend.models.repayment import PaymentMethod, Repayment, RepaymentStatus
from peerlend.models.user import User, UserRole
from peerlend.services import notifier
from peerlend.services.activity import record_activity
from peerlend.services.exceptions import (
    AlreadyRatedError,
    ForbiddenError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from peerlend.services.loan_state_machine import ensure_transition
from peerlend.services.payment_calculator import (
    calculate_lateness,
    calculate_terms,
    to_money,
    utcnow,
)
from peerlend.services.platform_settings import load_lending_policy
from peerlend.services.rating import apply_rating, validate_rating
from peerlend.services.scoring import recalculate_repayment_score, recalculate_trust_score
from peerlend.services.unit_of_work import atomic, best_effort

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
MAX_INTEREST_RATE = Decimal("100")
CANCELLED_REMARK = "Cancelled by borrower"


# ── Lookups and guards ────────────────────────────────

async def _get_loan(db: AsyncSession, loan_id: int) -> LoanRequest:
    loan = await db.get(LoanRequest, loan_id)
    if loan is None:
        raise NotFoundError("Loan request", loan_id)
    return loan


async def _get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id, populate_existing=True)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def _require_role(user: User, role: UserRole, action: str) -> None:
    if user.role != role:
        raise ForbiddenError(f"Only {role.value}s can {action}", {"role": user.role.value})


def _require_status(loan: LoanRequest, expected: LoanStatus, target: LoanStatus) -> None:
    ensure_transition(loan.id, loan.status, target)
    if loan.status != expected:
        raise InvalidStateError(
            f"Loan request must be {expected.value} to move to {target.value}",
            loan_id=loan.id,
            status=loan.status.value,
        )


async def _compare_and_set(db: AsyncSession, loan_id: int, expected: LoanStatus, **values) -> None:
    """Apply ``values`` only if the loan is still in ``expected``."""
    result = await db.execute(
        update(LoanRequest)
        .where(LoanRequest.id == loan_id, LoanRequest.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InvalidStateError(
            f"Loan request is no longer {expected.value}",
            loan_id=loan_id,
            status=expected.value,
        )


async def _adjust_user(db: AsyncSession, user_id: int, **deltas: Decimal) -> None:
    values = {name: getattr(User, name) + delta for name, delta in deltas.items()}
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def _parse_decimal(value, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", {field: value})
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", {field: value})
    if not parsed.is_finite():
        raise ValidationError(f"{field} must be a number", {field: str(value)})
    return parsed


def _parse_payment_method(value) -> PaymentMethod | None:
    if value is None or isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(value)
    except ValueError:
        raise ValidationError(
            "Invalid payment method",
            {"payment_method": value, "allowed": [m.value for m in PaymentMethod]},
        )


# ── Transitions ───────────────────────────────────────

async def create_loan_request(
    db: AsyncSession,
    borrower_id: int,
    amount,
    purpose: str,
    duration: int,
    interest_rate=None,
) -> LoanRequest:
    async with atomic(db):
        borrower = await _get_user(db, borrower_id)
        _require_role(borrower, UserRole.BORROWER, "create loan requests")
        policy = await load_lending_policy(db)

        amount = to_money(_parse_decimal(amount, "amount"))
        if not policy.min_transaction_amount <= amount <= policy.max_transaction_amount:
            raise ValidationError(
                f"Amount must be between {policy.min_transaction_amount} "
                f"and {policy.max_transaction_amount}",
                {"min": str(policy.min_transaction_amount), "max": str(policy.max_transaction_amount)},
            )

        if isinstance(duration, bool) or not isinstance(duration, int):
            raise ValidationError("Duration must be a whole number of days", {"duration": duration})
        if not policy.min_loan_duration_days <= duration <= policy.max_loan_duration_days:
            raise ValidationError(
                f"Duration must be between {policy.min_loan_duration_days} "
                f"and {policy.max_loan_duration_days} days",
                {"min": policy.min_loan_duration_days, "max": policy.max_loan_duration_days},
            )

        if interest_rate is None:
            rate = policy.default_interest_rate
        else:
            rate = _parse_decimal(interest_rate, "interest_rate")
        if not ZERO <= rate <= MAX_INTEREST_RATE:
            raise ValidationError("Interest rate must be between 0 and 100", {"interest_rate": str(rate)})

        purpose = (purpose or "").strip()
        if not purpose:
            raise ValidationError("Purpose is required")

        loan = LoanRequest(
            borrower_id=borrower_id,
            amount=amount,
            purpose=purpose,
            duration=duration,
            interest_rate=to_money(rate),
            status=LoanStatus.PENDING,
            amount_repaid=ZERO,
            is_visible=True,
        )
        db.add(loan)
        await db.flush()
    await db.refresh(loan)
    logger.info("Loan request %s created by borrower %s for %s", loan.id, borrower_id, amount)

    async with best_effort(db, "create_loan_request.side_effects", loan_id=loan.id) as side:
        await record_activity(
            side,
            user_id=borrower_id,
            action="CREATE_LOAN_REQUEST",
            description=f"Created loan request for {amount}",
            entity_id=loan.id,
        )
        title, message = notifier.loan_request_created(borrower.full_name, amount)
        await notifier.notify_admins(
            side, type=NotificationType.LOAN_REQUEST, title=title, message=message, related_id=loan.id,
        )
    return loan


async def accept_loan_request(db: AsyncSession, lender_id: int, loan_id: int) -> LoanRequest:
    """Accept a pending request and reserve the principal from the lender's balance."""
    async with atomic(db):
        loan = await _get_loan(db, loan_id)
        lender = await _get_user(db, lender_id)
        _require_role(lender, UserRole.LENDER, "accept loan requests")
        if not lender.is_onboarding_complete:
            raise ForbiddenError("Complete onboarding before accepting loan requests", {"lender_id": lender_id})
        _require_status(loan, LoanStatus.PENDING, LoanStatus.ACCEPTED)

        amount = to_money(loan.amount)
        available = to_money(lender.available_balance or 0)
        if available < amount:
            raise InsufficientFundsError(amount, available)

        now = utcnow()
        terms = calculate_terms(amount, loan.interest_rate, loan.duration, now)
        await _compare_and_set(
            db, loan.id, LoanStatus.PENDING,
            status=LoanStatus.ACCEPTED,
            lender_id=lender_id,
            accepted_at=now,
            due_date=terms.due_date,
            total_repayable=terms.total_repayable,
            remaining_amount=terms.total_repayable,
            is_contact_shared=True,
            contact_shared_at=now,
        )
        debited = await db.execute(
            update(User)
            .where(User.id == lender_id, User.available_balance >= amount)
            .values(available_balance=User.available_balance - amount)
            .execution_options(synchronize_session=False)
        )
        if debited.rowcount == 0:
            raise InsufficientFundsError(amount, available)
    await db.refresh(loan)
    logger.info("Loan request %s accepted by lender %s", loan.id, lender_id)

    async with best_effort(db, "accept_loan_request.side_effects", loan_id=loan.id) as side:
        title, message = notifier.loan_accepted(lender.full_name, amount)
        await notifier.create_notification(
            side, user_id=loan.borrower_id, type=NotificationType.LOAN_ACCEPTED,
            title=title, message=message, related_id=loan.id,
        )
        await notifier.notify_admins(
            side, type=NotificationType.LOAN_ACCEPTED, title="Loan Accepted",
            message=f"{lender.full_name} accepted loan request #{loan.id} for {amount}",
            related_id=loan.id,
        )
        await record_activity(
            side,
            user_id=lender_id,
            action="ACCEPT_LOAN_REQUEST",
            description=f"Accepted loan request #{loan.id}",
            entity_id=loan.id,
            metadata={"total_repayable": str(terms.total_repayable)},
        )
    return loan


async def mark_fulfilled(db: AsyncSession, borrower_id: int, loan_id: int) -> LoanRequest:
    """Borrower confirms the money arrived; the loan starts running."""
    async with atomic(db):
        loan = await _get_loan(db, loan_id)
        if loan.borrower_id != borrower_id:
            raise NotFoundError("Loan request", loan_id)
        _require_status(loan, LoanStatus.ACCEPTED, LoanStatus.IN_PROGRESS)

        amount = to_money(loan.amount)
        await _compare_and_set(
            db, loan.id, LoanStatus.ACCEPTED,
            status=LoanStatus.IN_PROGRESS,
            fulfilled_at=utcnow(),
        )
        await _adjust_user(db, borrower_id, total_borrowed=amount)
        await _adjust_user(db, loan.lender_id, total_lent=amount)
    await db.refresh(loan)
    logger.info("Loan request %s fulfilled", loan.id)

    async with best_effort(db, "mark_fulfilled.side_effects", loan_id=loan.id) as side:
        borrower = await _get_user(side, borrower_id)
        title, message = notifier.loan_fulfilled(borrower.full_name, amount)
        await notifier.create_notification(
            side, user_id=loan.lender_id, type=NotificationType.LOAN_FULFILLED,
            title=title, message=message, related_id=loan.id,
        )
        await notifier.notify_admins(
            side, type=NotificationType.LOAN_FULFILLED, title=title, message=message, related_id=loan.id,
        )
    return loan


async def _find_repayment(db: AsyncSession, loan_id: int, reference: str) -> Repayment | None:
    result = await db.execute(
        select(Repayment).where(
            Repayment.loan_request_id == loan_id,
            Repayment.transaction_reference == reference,
        )
    )
    return result.scalar_one_or_none()


async def record_repayment(
    db: AsyncSession,
    lender_id: int,
    loan_id: int,
    amount,
    payment_method=None,
    transaction_reference: str | None = None,
    remarks: str | None = None,
) -> tuple[Repayment, LoanRequest]:
    """Record a payment the lender received.

    A repeated ``transaction_reference`` for the same loan returns the
    original repayment without applying anything again.
    """
    amount = to_money(_parse_decimal(amount, "amount"))
    if amount <= ZERO:
        raise ValidationError("Repayment amount must be positive", {"amount": str(amount)})
    method = _parse_payment_method(payment_method)
    reference = (transaction_reference or "").strip() or None

    completed = False
    try:
        async with atomic(db):
            loan = await _get_loan(db, loan_id)
            if loan.lender_id != lender_id:
                raise NotFoundError("Loan request", loan_id)

            if reference is not None:
                existing = await _find_repayment(db, loan.id, reference)
                if existing is not None:
                    logger.info(
                        "Repayment reference %r already recorded on loan %s; returning original",
                        reference, loan.id,
                    )
                    await db.refresh(loan)
                    return existing, loan

            if loan.status != LoanStatus.IN_PROGRESS:
                raise InvalidStateError(
                    "Repayments can only be recorded on loans in progress",
                    loan_id=loan.id,
                    status=loan.status.value,
                )

            now = utcnow()
            is_late, days_late = calculate_lateness(now, loan.due_date)
            repayment = Repayment(
                loan_request_id=loan.id,
                borrower_id=loan.borrower_id,
                lender_id=lender_id,
                amount=amount,
                payment_date=now,
                payment_method=method,
                transaction_reference=reference,
                remarks=remarks,
                status=RepaymentStatus.CONFIRMED,
                confirmed_by_lender=True,
                confirmed_at=now,
                is_late=is_late,
                days_late=days_late,
            )
            db.add(repayment)
            await db.flush()

            values = {"amount_repaid": LoanRequest.amount_repaid + amount}
            if remarks:
                values["remarks"] = remarks
            await _compare_and_set(db, loan.id, LoanStatus.IN_PROGRESS, **values)
            await db.refresh(loan)

            total_repayable = to_money(loan.total_repayable)
            remaining = max(ZERO, total_repayable - to_money(loan.amount_repaid))
            if remaining == ZERO:
                ensure_transition(loan.id, loan.status, LoanStatus.COMPLETED)
                await _compare_and_set(
                    db, loan.id, LoanStatus.IN_PROGRESS,
                    status=LoanStatus.COMPLETED,
                    completed_at=now,
                    remaining_amount=ZERO,
                )
                await _adjust_user(db, lender_id, available_balance=total_repayable)
                completed = True
            else:
                await _compare_and_set(db, loan.id, LoanStatus.IN_PROGRESS, remaining_amount=remaining)
    except IntegrityError:
        # Lost a race against a concurrent submission with the same reference
        if reference is None:
            raise
        existing = await _find_repayment(db, loan_id, reference)
        if existing is None:
            raise
        logger.info("Concurrent duplicate repayment reference %r on loan %s", reference, loan_id)
        loan = await _get_loan(db, loan_id)
        await db.refresh(loan)
        return existing, loan

    await db.refresh(loan)
    await db.refresh(repayment)
    logger.info(
        "Repayment %s of %s recorded on loan %s (remaining %s)",
        repayment.id, amount, loan.id, loan.remaining_amount,
    )

    if completed:
        logger.info("Loan %s completed; lender %s credited %s", loan.id, lender_id, loan.total_repayable)
        async with best_effort(db, "record_repayment.recompute_scores", loan_id=loan.id) as side:
            await recalculate_repayment_score(side, loan.borrower_id)
            await recalculate_trust_score(side, loan.borrower_id)

    async with best_effort(db, "record_repayment.side_effects", loan_id=loan.id) as side:
        title, message = notifier.payment_received(amount, loan.remaining_amount)
        await notifier.create_notification(
            side, user_id=loan.borrower_id, type=NotificationType.PAYMENT_RECEIVED,
            title=title, message=message, related_id=loan.id,
        )
        if completed:
            title, message = notifier.loan_completed(loan.amount)
            await notifier.create_notification(
                side, user_id=loan.borrower_id, type=NotificationType.LOAN_COMPLETED,
                title=title, message=message, related_id=loan.id,
            )
    return repayment, loan


async def cancel_loan_request(db: AsyncSession, borrower_id: int, loan_id: int) -> LoanRequest:
    async with atomic(db):
        loan = await _get_loan(db, loan_id)
        if loan.borrower_id != borrower_id:
            raise NotFoundError("Loan request", loan_id)
        _require_status(loan, LoanStatus.PENDING, LoanStatus.REJECTED)
        await _compare_and_set(
            db, loan.id, LoanStatus.PENDING,
            status=LoanStatus.REJECTED,
            remarks=CANCELLED_REMARK,
        )
    await db.refresh(loan)
    logger.info("Loan request %s cancelled by borrower", loan.id)
    return loan


async def rate_counterparty(
    db: AsyncSession,
    user_id: int,
    loan_id: int,
    rating: int,
    review: str | None = None,
) -> None:
    """Rate the other party of a completed loan, once per side."""
    rating = validate_rating(rating)
    async with atomic(db):
        loan = await _get_loan(db, loan_id)
        if loan.status != LoanStatus.COMPLETED:
            raise InvalidStateError(
                "Only completed loans can be rated", loan_id=loan.id, status=loan.status.value
            )

        if user_id == loan.borrower_id:
            rating_field, review_field, target_id = "lender_rating", "lender_review", loan.lender_id
        elif user_id == loan.lender_id:
            rating_field, review_field, target_id = "borrower_rating", "borrower_review", loan.borrower_id
        else:
            raise ForbiddenError("You are not a party to this loan", {"loan_id": loan.id})

        already_rated = AlreadyRatedError(
            "You have already rated this loan", {"loan_id": loan.id, "field": rating_field}
        )
        if getattr(loan, rating_field) is not None:
            raise already_rated
        result = await db.execute(
            update(LoanRequest)
            .where(
                LoanRequest.id == loan.id,
                getattr(LoanRequest, rating_field).is_(None),
            )
            .values({rating_field: rating, review_field: review})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise already_rated
        await apply_rating(db, target_id, rating)
    await db.refresh(loan)

    async with best_effort(db, "rate_counterparty.recalculate_trust_score", loan_id=loan.id) as side:
        await recalculate_trust_score(side, target_id)

    async with best_effort(db, "rate_counterparty.side_effects", loan_id=loan.id) as side:
        title, message = notifier.rating_received(rating)
        await notifier.create_notification(
            side, user_id=target_id, type=NotificationType.RATING_RECEIVED,
            title=title, message=message, related_id=loan.id,
        )


async def raise_dispute(
    db: AsyncSession, user_id: int, loan_id: int, reason: str | None = None
) -> LoanRequest:
    async with atomic(db):
        loan = await _get_loan(db, loan_id)
        if user_id not in (loan.borrower_id, loan.lender_id):
            raise ForbiddenError("You are not a party to this loan", {"loan_id": loan.id})
        previous = loan.status
        ensure_transition(loan.id, previous, LoanStatus.DISPUTED)
        values = {"status": LoanStatus.DISPUTED, "status_before_dispute": previous}
        if reason:
            values["remarks"] = reason
        await _compare_and_set(db, loan.id, previous, **values)
    await db.refresh(loan)
    logger.warning("Dispute raised on loan %s by user %s", loan.id, user_id)

    async with best_effort(db, "raise_dispute.side_effects", loan_id=loan.id) as side:
        raiser = await _get_user(side, user_id)
        counterparty_id = loan.lender_id if user_id == loan.borrower_id else loan.borrower_id
        title, message = notifier.dispute_raised(loan.id, raiser.full_name)
        await notifier.create_notification(
            side, user_id=counterparty_id, type=NotificationType.DISPUTE,
            title=title, message=message, related_id=loan.id,
        )
        await notifier.notify_admins(
            side, type=NotificationType.DISPUTE, title=title, message=message, related_id=loan.id,
        )
        await record_activity(
            side,
            user_id=user_id,
            action="RAISE_DISPUTE",
            description=reason,
            entity_id=loan.id,
            metadata={"previous_status": previous.value},
        )
    return loan


async def resolve_dispute(db: AsyncSession, admin_id: int, loan_id: int) -> LoanRequest:
    """Return a disputed loan to the status it had before the dispute."""
    async with atomic(db):
        admin = await _get_user(db, admin_id)
        _require_role(admin, UserRole.ADMIN, "resolve disputes")
        loan = await _get_loan(db, loan_id)
        if loan.status != LoanStatus.DISPUTED:
            raise InvalidStateError(
                "Loan request is not disputed", loan_id=loan.id, status=loan.status.value
            )
        restored = loan.status_before_dispute
        if restored is None:
            restored = LoanStatus.IN_PROGRESS if loan.fulfilled_at else LoanStatus.ACCEPTED
        ensure_transition(loan.id, loan.status, restored)
        await _compare_and_set(
            db, loan.id, LoanStatus.DISPUTED,
            status=restored,
            status_before_dispute=None,
        )
    await db.refresh(loan)
    logger.info("Dispute on loan %s resolved by admin %s; back to %s", loan.id, admin_id, restored.value)

    async with best_effort(db, "resolve_dispute.side_effects", loan_id=loan.id) as side:
        await record_activity(
            side,
            user_id=admin_id,
            action="RESOLVE_DISPUTE",
            entity_id=loan.id,
            metadata={"restored_status": restored.value},
        )
    return loan


async def mark_defaulted(
    db: AsyncSession, admin_id: int, loan_id: int, reason: str | None = None
) -> LoanRequest:
    async with atomic(db):
        admin = await _get_user(db, admin_id)
        _require_role(admin, UserRole.ADMIN, "mark loans as defaulted")
        loan = await _get_loan(db, loan_id)
        previous = loan.status
        ensure_transition(loan.id, previous, LoanStatus.DEFAULTED)
        values = {"status": LoanStatus.DEFAULTED, "status_before_dispute": None}
        if reason:
            values["remarks"] = reason
        await _compare_and_set(db, loan.id, previous, **values)
    await db.refresh(loan)
    logger.warning("Loan %s marked defaulted by admin %s", loan.id, admin_id)

    async with best_effort(db, "mark_defaulted.recompute_scores", loan_id=loan.id) as side:
        await recalculate_repayment_score(side, loan.borrower_id)
        await recalculate_trust_score(side, loan.borrower_id)

    async with best_effort(db, "mark_defaulted.side_effects", loan_id=loan.id) as side:
        await record_activity(
            side,
            user_id=admin_id,
            action="MARK_DEFAULTED",
            description=reason,
            entity_id=loan.id,
            metadata={"previous_status": previous.value},
        )
    return loan
