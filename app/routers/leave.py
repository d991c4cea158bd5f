from fastapi import APIRouter, Depends, File, Query, Request, UploadFile, status
from sqlalchemy.orm import Session
from typing import List, Optional

from app.core.exceptions import PolicyViolationError
from app.core.schemas import Pagination
from app.database import get_db
from app.models.leave_request import LeaveStatus
from app.models.leave_type import LeaveType
from app.models.user import User
from app.routers.auth_deps import get_current_user, require_manager
from app.schemas.leave import (
    LeaveApproveAndDebit, LeaveDecision, LeaveRequestCreate, LeaveResponse, LeaveTypeResponse,
)
from app.services import leave_service
from app.services.leave_balance import serialize_balance

router = APIRouter(
    prefix="/leaves",
    tags=["leaves"]
)

approver_user = require_manager()


def _page(total: int, leaves, page: int, limit: int) -> dict:
    return {
        "leaves": [LeaveResponse.model_validate(leave) for leave in leaves],
        "pagination": Pagination.build(page, limit, total),
    }


# Static paths first so they are not captured by /{leave_id}

@router.get("/types", response_model=List[LeaveTypeResponse])
def get_leave_types(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return db.query(LeaveType).filter(LeaveType.is_active.is_(True)).order_by(LeaveType.name).all()


@router.post("", response_model=LeaveResponse, status_code=status.HTTP_201_CREATED)
def submit_leave(
    payload: LeaveRequestCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    data = payload.model_dump()
    if payload.half_day_type is not None:
        data["half_day_type"] = payload.half_day_type.value
    return leave_service.submit_leave_request(db, current_user, data, request=request)


@router.get("")
def list_leaves(
    status_filter: Optional[LeaveStatus] = Query(default=None, alias="status"),
    year: Optional[int] = Query(default=None, ge=2020, le=2030),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Alias of /my-leaves."""
    return my_leaves(status_filter, year, page, limit, db, current_user)


@router.get("/my-leaves")
def my_leaves(
    status_filter: Optional[LeaveStatus] = Query(default=None, alias="status"),
    year: Optional[int] = Query(default=None, ge=2020, le=2030),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    total, leaves = leave_service.list_my_leaves(
        db, current_user, status_filter.value if status_filter else None, year, page, limit
    )
    return _page(total, leaves, page, limit)


@router.get("/pending/approvals")
def pending_approvals(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
    db: Session = Depends(get_db),
    current_user: User = Depends(approver_user)
):
    total, leaves = leave_service.list_pending_approvals(db, current_user, page, limit)
    return _page(total, leaves, page, limit)


@router.get("/all")
def all_leaves(
    status_filter: Optional[LeaveStatus] = Query(default=None, alias="status"),
    user_id: Optional[int] = None,
    department: Optional[str] = Query(default=None, min_length=1),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
    db: Session = Depends(get_db),
    current_user: User = Depends(approver_user)
):
    total, leaves = leave_service.list_all_leaves(
        db, current_user,
        status=status_filter.value if status_filter else None,
        user_id=user_id,
        department=department,
        page=page,
        limit=limit,
    )
    return _page(total, leaves, page, limit)


@router.get("/{leave_id}", response_model=LeaveResponse)
def get_leave(
    leave_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return leave_service.get_leave_for_viewer(db, leave_id, current_user)


@router.put("/{leave_id}/cancel", response_model=LeaveResponse)
def cancel_leave(
    leave_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return leave_service.cancel_leave_request(db, leave_id, current_user, request=request)


@router.put("/{leave_id}/approve", response_model=LeaveResponse)
def decide_leave(
    leave_id: int,
    decision: LeaveDecision,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(approver_user)
):
    """Approve or reject. Approval here never touches the balance."""
    if decision.action == "approve":
        return leave_service.approve_leave_request(
            db, leave_id, current_user, comments=decision.comments, request=request
        )
    if not decision.rejection_reason:
        raise PolicyViolationError("Rejection reason is required", error_code="REJECTION_REASON_REQUIRED")
    return leave_service.reject_leave_request(db, leave_id, current_user, decision.rejection_reason, request=request)


@router.put("/{leave_id}/approve-and-debit")
def approve_and_debit_leave(
    leave_id: int,
    request: Request,
    payload: Optional[LeaveApproveAndDebit] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(approver_user)
):
    leave, balance = leave_service.approve_and_debit_leave_request(
        db, leave_id, current_user,
        comments=payload.comments if payload else None,
        request=request,
    )
    return {
        "leave": LeaveResponse.model_validate(leave),
        "balance": serialize_balance(balance),
    }


@router.post("/{leave_id}/attachment", response_model=LeaveResponse)
async def upload_attachment(
    leave_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    content = await file.read()
    return leave_service.attach_file(db, leave_id, current_user, file.filename, content)
