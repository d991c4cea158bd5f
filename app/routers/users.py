from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from typing import List, Optional

from app.core.schemas import Pagination
from app.database import get_db
from app.models.leave_request import Leave, LeaveStatus
from app.models.user import User, UserRole
from app.routers.auth_deps import get_current_user, require_hr, require_manager
from app.schemas.auth import UserResponse
from app.schemas.user import UserAdminUpdate
from app.services.audit import AuditService
from app.services.financial_year import get_financial_year_dates, resolve_financial_year
from app.services.leave_balance import get_employee_balances, serialize_balance

router = APIRouter(prefix="/users", tags=["users"])


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _require_self_or_hr(current_user: User, user_id: int):
    if current_user.id != user_id and not current_user.is_hr:
        raise HTTPException(status_code=403, detail="Access denied")


@router.get("")
def list_users(
    role: Optional[UserRole] = None,
    department: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_hr())
):
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if department:
        query = query.filter(User.department == department)
    if is_active is not None:
        query = query.filter(User.is_active.is_(is_active))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
            User.email.ilike(pattern),
            User.employee_code.ilike(pattern),
        ))

    total = query.count()
    users = query.order_by(User.last_name, User.first_name).offset((page - 1) * limit).limit(limit).all()
    return {
        "users": [UserResponse.model_validate(u) for u in users],
        "pagination": Pagination.build(page, limit, total),
    }


@router.get("/me/balance")
def my_balance(
    year: Optional[int] = Query(default=None, ge=2020, le=2030),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    year = resolve_financial_year(year)
    return {
        "year": year,
        "balances": [serialize_balance(b) for b in get_employee_balances(db, current_user.id, year)],
    }


@router.get("/team/members", response_model=List[UserResponse])
def team_members(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_manager())
):
    return (
        db.query(User)
        .filter(User.manager_id == current_user.id, User.is_active.is_(True))
        .order_by(User.last_name, User.first_name)
        .all()
    )


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _require_self_or_hr(current_user, user_id)
    return _get_user_or_404(db, user_id)


@router.put("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    update_data: UserAdminUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_hr())
):
    user = _get_user_or_404(db, user_id)
    changes = update_data.model_dump(exclude_unset=True)

    if "email" in changes and changes["email"] != user.email:
        if db.query(User).filter(User.email == changes["email"]).first():
            raise HTTPException(status_code=400, detail="Email already in use")
    if changes.get("manager_id") is not None:
        if changes["manager_id"] == user.id:
            raise HTTPException(status_code=400, detail="A user cannot manage themselves")
        _get_user_or_404(db, changes["manager_id"])
    if "role" in changes and changes["role"] == UserRole.ADMIN and current_user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Only admins can grant the admin role")

    before = {field: getattr(user, field) for field in changes}
    for field, value in changes.items():
        setattr(user, field, value)

    AuditService(db).log_data_modification(current_user, "user", user.id, "update_user", before, changes, request=request)
    db.commit()
    db.refresh(user)
    return user


@router.get("/{user_id}/balance")
def user_balance(
    user_id: int,
    year: Optional[int] = Query(default=None, ge=2020, le=2030),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _require_self_or_hr(current_user, user_id)
    user = _get_user_or_404(db, user_id)
    year = resolve_financial_year(year)
    return {
        "user": UserResponse.model_validate(user),
        "year": year,
        "balances": [serialize_balance(b) for b in get_employee_balances(db, user.id, year)],
    }


@router.get("/{user_id}/statistics")
def user_statistics(
    user_id: int,
    year: Optional[int] = Query(default=None, ge=2020, le=2030),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_hr())
):
    """Request counts and day totals per status for one financial year."""
    user = _get_user_or_404(db, user_id)
    year = resolve_financial_year(year)
    fy_start, fy_end = get_financial_year_dates(year)

    rows = (
        db.query(Leave.status, func.count(Leave.id), func.coalesce(func.sum(Leave.number_of_days), 0))
        .filter(Leave.user_id == user.id, Leave.start_date >= fy_start, Leave.start_date <= fy_end)
        .group_by(Leave.status)
        .all()
    )
    by_status = {s.value: {"count": 0, "days": 0.0} for s in LeaveStatus}
    for status_value, count, days in rows:
        by_status[status_value] = {"count": count, "days": float(days)}

    return {
        "user_id": user.id,
        "year": year,
        "total_requests": sum(item["count"] for item in by_status.values()),
        "by_status": by_status,
        "balances": [serialize_balance(b) for b in get_employee_balances(db, user.id, year)],
    }
