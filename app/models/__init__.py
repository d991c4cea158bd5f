# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    user, leave_type, leave_balance, leave_request,
    default_balance, notification, audit_log
)

# Explicit class exports for cleaner imports
from .user import User, UserRole, UserSession
from .leave_type import LeaveType
from .leave_balance import LeaveBalance
from .leave_request import Leave, LeaveStatus
from .default_balance import DefaultBalance, DefaultBalancePointer
from .notification import Notification
from .audit_log import AuditLog

__all__ = [
    "User",
    "UserRole",
    "UserSession",
    "LeaveType",
    "LeaveBalance",
    "Leave",
    "LeaveStatus",
    "DefaultBalance",
    "DefaultBalancePointer",
    "Notification",
    "AuditLog",
]
