"""
Leave Request Service Layer

Lifecycle of a leave request: pending -> approved | rejected | cancelled.
All three outcomes are terminal.

Architecture:
- Router -> Service (this module) -> Models
- Balance reads and debits go through app.services.leave_balance
- Notifications and audit entries are side effects; a failure there is
  logged and never undoes the transition
"""

import logging
import os
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from app.core.config import settings
from app.core.exceptions import (
    AccessDeniedError,
    InsufficientBalanceError,
    InvalidLeaveDatesError,
    InvalidLeaveTransitionError,
    NotFoundError,
    OverlappingLeaveError,
    PolicyViolationError,
)
from app.core.security import sanitize_input
from app.models.leave_request import ACTIVE_LEAVE_STATUSES, Leave, LeaveStatus
from app.models.leave_type import LeaveType
from app.models.user import User, UserRole
from app.services import leave_balance as ledger
from app.services.audit import AuditService
from app.services.financial_year import get_current_financial_year, get_financial_year_dates
from app.services.notification import NotificationService

logger = logging.getLogger(__name__)

HALF_DAY = Decimal("0.5")
MIN_REJECTION_REASON = 5
MAX_REJECTION_REASON = 500


def calculate_leave_days(start_date: date, end_date: date, is_half_day: bool = False) -> Decimal:
    """Inclusive calendar days, minus half a day for half-day requests."""
    days = Decimal((end_date - start_date).days + 1)
    if is_half_day:
        days -= HALF_DAY
    return days


def find_overlapping_request(
    db: Session,
    user_id: int,
    start_date: date,
    end_date: date,
    exclude_id: Optional[int] = None,
) -> Optional[Leave]:
    query = db.query(Leave).filter(
        Leave.user_id == user_id,
        Leave.status.in_(ACTIVE_LEAVE_STATUSES),
        Leave.start_date <= end_date,
        Leave.end_date >= start_date,
    )
    if exclude_id is not None:
        query = query.filter(Leave.id != exclude_id)
    return query.first()


def _load_leave(db: Session, leave_id: int) -> Leave:
    leave = (
        db.query(Leave)
        .options(joinedload(Leave.leave_type), joinedload(Leave.user), joinedload(Leave.approver))
        .filter(Leave.id == leave_id)
        .first()
    )
    if not leave:
        raise NotFoundError("Leave application not found", details={"leave_id": leave_id})
    return leave


def _leave_state(leave: Leave) -> Dict[str, Any]:
    return {
        "status": leave.status,
        "approved_by": leave.approved_by,
        "rejection_reason": leave.rejection_reason,
        "balance_debited": leave.balance_debited,
    }


def _require_pending(leave: Leave, verb: str):
    if leave.status != LeaveStatus.PENDING.value:
        raise InvalidLeaveTransitionError(
            f"Only pending leave applications can be {verb}",
            details={"leave_id": leave.id, "status": leave.status},
        )


def _require_approver(leave: Leave, approver: User):
    """Managers act on direct reports only; HR and admin act on anyone."""
    if approver.is_hr:
        return
    if approver.role == UserRole.MANAGER and leave.user and leave.user.manager_id == approver.id:
        return
    raise AccessDeniedError("You can only approve leave applications from your team members")


def _notify_safely(fn, *args):
    try:
        fn(*args)
    except Exception as e:
        logger.warning(f"Leave notification failed: {e}")


# --- Transitions ---

def submit_leave_request(db: Session, user: User, payload: Dict[str, Any], request=None) -> Leave:
    """
    Create a pending leave request for `user`.

    Args:
        db: Database session
        user: The requesting employee
        payload: leave_type_id, start_date, end_date, reason and the optional
            is_half_day, half_day_type, emergency_contact, handover_notes
        request: Optional HTTP request, for audit metadata

    Raises:
        NotFoundError: unknown or inactive leave type
        InvalidLeaveDatesError: start in the past or end before start
        InsufficientBalanceError: remaining days below the requested days
        OverlappingLeaveError: clashes with a pending or approved request
    """
    leave_type = db.query(LeaveType).filter(
        LeaveType.id == payload["leave_type_id"],
        LeaveType.is_active.is_(True),
    ).first()
    if not leave_type:
        raise NotFoundError("Invalid leave type selected", details={"leave_type_id": payload["leave_type_id"]})

    start_date: date = payload["start_date"]
    end_date: date = payload["end_date"]
    if start_date < date.today():
        raise InvalidLeaveDatesError("Start date cannot be in the past")
    if end_date < start_date:
        raise InvalidLeaveDatesError("End date cannot be before start date")

    is_half_day = bool(payload.get("is_half_day"))
    number_of_days = calculate_leave_days(start_date, end_date, is_half_day)

    # Advisory check only; nothing is reserved until the request is debited
    balance = ledger.ensure_balance(db, user.id, leave_type, get_current_financial_year())
    if balance is None or ledger.quantize_days(balance.remaining_days) < number_of_days:
        raise InsufficientBalanceError(details={
            "requested_days": float(number_of_days),
            "remaining_days": float(balance.remaining_days) if balance else 0.0,
        })

    clash = find_overlapping_request(db, user.id, start_date, end_date)
    if clash:
        raise OverlappingLeaveError(details={"conflicting_leave_id": clash.id})

    leave = Leave(
        user_id=user.id,
        leave_type_id=leave_type.id,
        start_date=start_date,
        end_date=end_date,
        number_of_days=number_of_days,
        reason=sanitize_input(payload["reason"]),
        is_half_day=is_half_day,
        half_day_type=payload.get("half_day_type") if is_half_day else None,
        emergency_contact=payload.get("emergency_contact"),
        handover_notes=sanitize_input(payload.get("handover_notes")),
        status=LeaveStatus.PENDING.value,
    )
    db.add(leave)
    db.flush()

    AuditService(db).log_data_modification(
        user, "leave", leave.id, "leave_submitted",
        before_state=None,
        after_state={"status": leave.status, "number_of_days": number_of_days, "leave_type_id": leave_type.id},
        request=request,
    )
    _notify_safely(NotificationService.notify_leave_submitted, db, leave, user)

    db.commit()
    db.refresh(leave)
    logger.info(f"Leave {leave.id} submitted by user {user.id} for {number_of_days} day(s)")
    return leave


def _decide(db: Session, leave: Leave, approver: User, approved: bool, reason: Optional[str]) -> Dict[str, Any]:
    before = _leave_state(leave)
    leave.status = LeaveStatus.APPROVED.value if approved else LeaveStatus.REJECTED.value
    leave.approved_by = approver.id
    leave.approved_at = datetime.now(timezone.utc)
    if not approved:
        leave.rejection_reason = reason
    return before


def approve_leave_request(db: Session, leave_id: int, approver: User, comments: Optional[str] = None, request=None) -> Leave:
    """Approve a pending request. The balance is not debited."""
    leave = _load_leave(db, leave_id)
    _require_pending(leave, "approved or rejected")
    _require_approver(leave, approver)

    before = _decide(db, leave, approver, True, None)
    if comments:
        leave.comments = comments
    AuditService(db).log_data_modification(
        approver, "leave", leave.id, "leave_approved", before, _leave_state(leave), request=request
    )
    _notify_safely(NotificationService.notify_leave_decision, db, leave, approver, True)

    db.commit()
    db.refresh(leave)
    logger.info(f"Leave {leave.id} approved by user {approver.id}")
    return leave


def approve_and_debit_leave_request(db: Session, leave_id: int, approver: User, comments: Optional[str] = None, request=None) -> Tuple[Leave, Any]:
    """
    Approve a pending request and record its days as used on the current
    financial-year balance in the same commit.

    Returns:
        (leave, balance) after the commit.
    """
    leave = _load_leave(db, leave_id)
    _require_pending(leave, "approved or rejected")
    _require_approver(leave, approver)

    balance = ledger.ensure_balance(db, leave.user_id, leave.leave_type, get_current_financial_year())
    if balance is None:
        raise PolicyViolationError("No leave balance available to debit")
    balance_before = ledger.serialize_balance(balance)

    before = _decide(db, leave, approver, True, None)
    if comments:
        leave.comments = comments
    ledger.debit_balance(db, balance, leave.number_of_days, actor_id=approver.id)
    leave.balance_debited = True

    audit = AuditService(db)
    audit.log_data_modification(
        approver, "leave", leave.id, "leave_approved_and_debited", before, _leave_state(leave), request=request
    )
    audit.log_data_modification(
        approver, "leave_balance", balance.id, "balance_debited",
        balance_before, ledger.serialize_balance(balance),
        details={"leave_id": leave.id, "days": leave.number_of_days},
        request=request,
    )
    _notify_safely(NotificationService.notify_leave_decision, db, leave, approver, True)

    db.commit()
    db.refresh(leave)
    db.refresh(balance)
    logger.info(f"Leave {leave.id} approved and debited {leave.number_of_days} day(s) by user {approver.id}")
    return leave, balance


def reject_leave_request(db: Session, leave_id: int, approver: User, reason: Optional[str], request=None) -> Leave:
    reason = sanitize_input((reason or "").strip())
    if not MIN_REJECTION_REASON <= len(reason) <= MAX_REJECTION_REASON:
        raise PolicyViolationError(
            f"Rejection reason must be between {MIN_REJECTION_REASON} and {MAX_REJECTION_REASON} characters",
            error_code="REJECTION_REASON_REQUIRED",
        )

    leave = _load_leave(db, leave_id)
    _require_pending(leave, "approved or rejected")
    _require_approver(leave, approver)

    before = _decide(db, leave, approver, False, reason)
    AuditService(db).log_data_modification(
        approver, "leave", leave.id, "leave_rejected", before, _leave_state(leave), request=request
    )
    _notify_safely(NotificationService.notify_leave_decision, db, leave, approver, False)

    db.commit()
    db.refresh(leave)
    logger.info(f"Leave {leave.id} rejected by user {approver.id}")
    return leave


def cancel_leave_request(db: Session, leave_id: int, user: User, request=None) -> Leave:
    leave = _load_leave(db, leave_id)
    if leave.user_id != user.id:
        raise AccessDeniedError("You can only cancel your own leave applications")
    _require_pending(leave, "cancelled")

    before = _leave_state(leave)
    leave.status = LeaveStatus.CANCELLED.value
    AuditService(db).log_data_modification(
        user, "leave", leave.id, "leave_cancelled", before, _leave_state(leave), request=request
    )

    db.commit()
    db.refresh(leave)
    logger.info(f"Leave {leave.id} cancelled by user {user.id}")
    return leave


# --- Queries ---

def _team_ids(db: Session, manager: User) -> List[int]:
    return [user_id for (user_id,) in db.query(User.id).filter(User.manager_id == manager.id).all()]


def _paginate(query, page: int, limit: int) -> Tuple[int, List[Leave]]:
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return total, rows


def list_my_leaves(
    db: Session,
    user: User,
    status: Optional[str] = None,
    year: Optional[int] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[int, List[Leave]]:
    """Own requests, newest first. `year` is a financial year on start_date."""
    query = db.query(Leave).options(joinedload(Leave.leave_type)).filter(Leave.user_id == user.id)
    if status:
        query = query.filter(Leave.status == status)
    if year:
        fy_start, fy_end = get_financial_year_dates(year)
        query = query.filter(Leave.start_date >= fy_start, Leave.start_date <= fy_end)
    return _paginate(query.order_by(Leave.created_at.desc(), Leave.id.desc()), page, limit)


def list_pending_approvals(db: Session, approver: User, page: int = 1, limit: int = 10) -> Tuple[int, List[Leave]]:
    """Pending requests, oldest first. Managers only see their direct reports."""
    query = (
        db.query(Leave)
        .options(joinedload(Leave.leave_type), joinedload(Leave.user))
        .filter(Leave.status == LeaveStatus.PENDING.value)
    )
    if not approver.is_hr:
        query = query.filter(Leave.user_id.in_(_team_ids(db, approver)))
    return _paginate(query.order_by(Leave.created_at.asc(), Leave.id.asc()), page, limit)


def list_all_leaves(
    db: Session,
    viewer: User,
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    department: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[int, List[Leave]]:
    query = db.query(Leave).options(joinedload(Leave.leave_type), joinedload(Leave.user))
    if status:
        query = query.filter(Leave.status == status)
    if user_id is not None:
        query = query.filter(Leave.user_id == user_id)
    if not viewer.is_hr:
        query = query.filter(Leave.user_id.in_(_team_ids(db, viewer)))
    if department:
        query = query.join(Leave.user).filter(User.department == department)
    return _paginate(query.order_by(Leave.created_at.desc(), Leave.id.desc()), page, limit)


def get_leave_for_viewer(db: Session, leave_id: int, viewer: User) -> Leave:
    leave = _load_leave(db, leave_id)
    privileged = viewer.role in (UserRole.MANAGER, UserRole.HR, UserRole.ADMIN)
    if leave.user_id != viewer.id and not privileged and leave.approved_by != viewer.id:
        raise AccessDeniedError("You do not have permission to view this leave application")
    return leave


# --- Attachments ---

def attach_file(db: Session, leave_id: int, user: User, filename: str, content: bytes) -> Leave:
    """
    Store a supporting document for the owner's request under the upload
    directory and record its path.
    """
    leave = _load_leave(db, leave_id)
    if leave.user_id != user.id:
        raise AccessDeniedError("You can only attach documents to your own leave applications")

    file_ext = os.path.splitext(filename or "")[1].lower()
    if file_ext not in settings.allowed_attachment_extensions:
        raise PolicyViolationError(
            f"File type {file_ext or '(none)'} not allowed",
            error_code="INVALID_FILE_TYPE",
            details={"allowed": settings.allowed_attachment_extensions},
        )
    if len(content) > settings.max_file_size:
        raise PolicyViolationError(
            f"File exceeds the maximum size of {settings.max_file_size} bytes",
            error_code="FILE_TOO_LARGE",
        )

    leave_dir = os.path.join(settings.upload_path, "leaves")
    os.makedirs(leave_dir, exist_ok=True)
    file_path = os.path.join(leave_dir, f"leave-{leave.id}-{uuid.uuid4().hex}{file_ext}")
    with open(file_path, "wb") as f:
        f.write(content)

    leave.attachment_path = file_path
    AuditService(db).log_data_modification(
        user, "leave", leave.id, "leave_attachment_added", None, {"attachment_path": file_path}
    )
    db.commit()
    db.refresh(leave)
    logger.info(f"Attachment stored for leave {leave.id}: {file_path}")
    return leave


def serialize_leave(leave: Leave) -> Dict[str, Any]:
    """Flat representation used by list endpoints and exports."""
    return {
        "id": leave.id,
        "user_id": leave.user_id,
        "employee_name": leave.user.full_name if leave.user else None,
        "department": leave.user.department if leave.user else None,
        "leave_type_id": leave.leave_type_id,
        "leave_type_name": leave.leave_type.name if leave.leave_type else None,
        "start_date": leave.start_date,
        "end_date": leave.end_date,
        "number_of_days": float(leave.number_of_days),
        "status": leave.status,
        "reason": leave.reason,
        "is_half_day": leave.is_half_day,
        "half_day_type": leave.half_day_type,
        "approved_by": leave.approved_by,
        "approved_at": leave.approved_at,
        "rejection_reason": leave.rejection_reason,
        "balance_debited": leave.balance_debited,
        "created_at": leave.created_at,
    }
