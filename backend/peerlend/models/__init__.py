"""SQLAlchemy models for the PeerLend platform."""

from peerlend.models.user import User, UserRole
from peerlend.models.loan import LoanRequest, LoanStatus
from peerlend.models.repayment import Repayment, PaymentMethod, RepaymentStatus
from peerlend.models.platform_setting import PlatformSetting, SettingValueType
from peerlend.models.notification import Notification, NotificationType
from peerlend.models.activity_log import ActivityLog
from peerlend.models.error_log import ErrorLog, ErrorSeverity

__all__ = [
    "User",
    "UserRole",
    "LoanRequest",
    "LoanStatus",
    "Repayment",
    "PaymentMethod",
    "RepaymentStatus",
    "PlatformSetting",
    "SettingValueType",
    "Notification",
    "NotificationType",
    "ActivityLog",
    "ErrorLog",
    "ErrorSeverity",
]
