"""Tests for notification templates and the admin fan-out."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from peerlend.models.notification import Notification, NotificationType
from peerlend.models.user import UserRole
from peerlend.services import notifier

from conftest import create_user


class TestTemplates:

    def test_amounts_use_grouping_and_two_decimals(self):
        title, message = notifier.loan_request_created("Asha", Decimal("12500"))
        assert title == "New Loan Request"
        assert message == "Asha is requesting a loan of ₹12,500.00"

    def test_payment_received_reports_remaining(self):
        _, message = notifier.payment_received(Decimal("4000"), Decimal("6098.63"))
        assert "₹4,000.00" in message
        assert message.endswith("Remaining: ₹6,098.63")

    def test_dispute_names_the_loan(self):
        assert notifier.dispute_raised(7, "Ravi") == ("Dispute Raised", "Ravi raised a dispute on loan #7")


class TestWriters:

    @pytest.mark.asyncio
    async def test_notify_admins_skips_inactive(self, db, admin):
        await create_user(db, UserRole.ADMIN, is_active=False)
        await create_user(db, UserRole.LENDER)

        staged = await notifier.notify_admins(
            db, type=NotificationType.DISPUTE, title="t", message="m", related_id=3,
        )
        await db.commit()

        assert staged == 1
        rows = (await db.execute(select(Notification))).scalars().all()
        assert [(n.user_id, n.related_id, n.related_type) for n in rows] == [(admin.id, 3, "LoanRequest")]

    @pytest.mark.asyncio
    async def test_notify_admins_without_admins(self, db):
        assert await notifier.notify_admins(db, type=NotificationType.DISPUTE, title="t", message="m") == 0

    @pytest.mark.asyncio
    async def test_create_notification_is_unread(self, db, borrower):
        notification = await notifier.create_notification(
            db, user_id=borrower.id, type=NotificationType.PAYMENT_RECEIVED, title="t", message="m",
        )
        await db.commit()
        assert notification.is_read is False
