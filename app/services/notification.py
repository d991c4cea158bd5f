import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.models.notification import Notification, NotificationCategory
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)

class NotificationService:
    """
    Persists in-app notifications. Entries are flushed, the caller commits.
    Real-time push is not done here.
    """

    @staticmethod
    def create_notification(
        db: Session,
        user_id: int,
        title: str,
        message: str,
        type: str = "info",
        category: str = NotificationCategory.SYSTEM.value,
        related_id: Optional[int] = None,
        related_type: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            title=title[:100],
            message=message,
            type=type,
            category=category,
            related_id=related_id,
            related_type=related_type,
        )
        db.add(notification)
        db.flush()
        return notification

    @staticmethod
    def notify_many(
        db: Session,
        user_ids: Iterable[int],
        title: str,
        message: str,
        type: str = "info",
        category: str = NotificationCategory.SYSTEM.value,
        related_id: Optional[int] = None,
        related_type: Optional[str] = None,
    ) -> List[Notification]:
        created = [
            Notification(
                user_id=user_id,
                title=title[:100],
                message=message,
                type=type,
                category=category,
                related_id=related_id,
                related_type=related_type,
            )
            for user_id in user_ids
        ]
        db.add_all(created)
        db.flush()
        return created

    @staticmethod
    def notify_leave_submitted(db: Session, leave, employee: User) -> List[Notification]:
        """
        Tell the direct manager about a new request. Employees without a
        manager fan out to every active manager, HR and admin user.
        """
        if employee.manager_id:
            recipients = [employee.manager_id]
        else:
            recipients = [
                user_id for (user_id,) in db.query(User.id).filter(
                    User.role.in_([UserRole.MANAGER, UserRole.HR, UserRole.ADMIN]),
                    User.is_active.is_(True),
                    User.id != employee.id,
                ).all()
            ]
        return NotificationService.notify_many(
            db,
            recipients,
            title="New Leave Request",
            message=f"{employee.full_name} has submitted a leave request for {leave.number_of_days} day(s)",
            type="info",
            category=NotificationCategory.LEAVE_REQUEST.value,
            related_id=leave.id,
            related_type="leave",
        )

    @staticmethod
    def notify_leave_decision(db: Session, leave, approver: User, approved: bool) -> Notification:
        leave_type_name = leave.leave_type.name if leave.leave_type else "leave"
        if approved:
            title, type_, category = "Leave Approved", "success", NotificationCategory.LEAVE_APPROVAL.value
            message = f"Your {leave_type_name} request for {leave.number_of_days} day(s) has been approved by {approver.full_name}"
        else:
            title, type_, category = "Leave Rejected", "error", NotificationCategory.LEAVE_REJECTION.value
            message = f"Your {leave_type_name} request has been rejected by {approver.full_name}. Reason: {leave.rejection_reason}"
        return NotificationService.create_notification(
            db, leave.user_id, title, message, type_, category, related_id=leave.id, related_type="leave"
        )

    @staticmethod
    def notify_user(
        db: Session,
        user_id: int,
        title: str,
        message: str,
        type: str = "info",
    ):
        """
        Standardized system notification trigger.
        """
        return NotificationService.create_notification(db, user_id, title, message, type)
