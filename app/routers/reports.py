"""
Leave reporting for HR/admin and team views for managers.

`year` parameters are financial years. With a `month`, the month is the one
falling inside that financial year (April-December of Y, January-March of Y+1).
"""
import io
from calendar import monthrange
from datetime import date
from typing import Literal, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from app.core.config import settings
from app.core.schemas import Pagination
from app.database import get_db
from app.models.leave_balance import LeaveBalance
from app.models.leave_request import Leave, LeaveStatus
from app.models.leave_type import LeaveType
from app.models.user import User, UserRole
from app.routers.auth_deps import require_hr, require_role
from app.schemas.auth import UserResponse
from app.services import export_service
from app.services.audit import AuditService
from app.services.financial_year import get_financial_year_dates, resolve_financial_year
from app.services.leave_balance import serialize_balance
from app.services.leave_service import serialize_leave

router = APIRouter(prefix="/reports", tags=["reports"])


def _period(year: Optional[int], month: Optional[int]) -> Tuple[int, date, date]:
    year = resolve_financial_year(year)
    if month is None:
        start, end = get_financial_year_dates(year)
        return year, start, end
    calendar_year = year if month >= settings.financial_year_start_month else year + 1
    return year, date(calendar_year, month, 1), date(calendar_year, month, monthrange(calendar_year, month)[1])


@router.get("/dashboard")
def dashboard(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    department: Optional[str] = Query(default=None, min_length=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_hr())
):
    filters = []
    if start_date and end_date:
        filters.append(Leave.start_date.between(start_date, end_date))
    if department:
        filters.append(User.department == department)

    def aggregate(*group_columns):
        query = (
            db.query(*group_columns, func.count(Leave.id), func.coalesce(func.sum(Leave.number_of_days), 0))
            .select_from(Leave)
            .join(User, Leave.user_id == User.id)
            .join(LeaveType, Leave.leave_type_id == LeaveType.id)
        )
        return query.filter(*filters).group_by(*group_columns).all()

    return {
        "leave_stats": [
            {"status": s, "count": c, "total_days": float(d)}
            for s, c, d in aggregate(Leave.status)
        ],
        "leave_type_stats": [
            {"leave_type_id": i, "name": n, "color": col, "count": c, "total_days": float(d)}
            for i, n, col, c, d in aggregate(LeaveType.id, LeaveType.name, LeaveType.color)
        ],
        "department_stats": [
            {"department": dep, "count": c, "total_days": float(d)}
            for dep, c, d in aggregate(User.department)
        ],
        "pending_count": db.query(Leave).filter(Leave.status == LeaveStatus.PENDING.value).count(),
        "total_employees": db.query(User).filter(User.is_active.is_(True)).count(),
    }


@router.get("/leave-report")
def leave_report(
    request: Request,
    start_date: date,
    end_date: date,
    department: Optional[str] = Query(default=None, min_length=1),
    status: Optional[LeaveStatus] = None,
    format: Literal["json", "csv", "xlsx"] = "json",
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_hr())
):
    if end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date must not be before start_date")

    query = (
        db.query(Leave)
        .options(joinedload(Leave.leave_type), joinedload(Leave.user))
        .join(User, Leave.user_id == User.id)
        .filter(Leave.start_date.between(start_date, end_date))
    )
    if status:
        query = query.filter(Leave.status == status.value)
    if department:
        query = query.filter(User.department == department)
    query = query.order_by(Leave.start_date.desc(), Leave.id.desc())

    if format != "json":
        rows = [serialize_leave(leave) for leave in query.all()]
        AuditService(db).log_data_access(current_user, "leave", action=f"leave_report_export_{format}", request=request)
        db.commit()
        content, media_type, extension = export_service.render(
            rows, export_service.LEAVE_REPORT_COLUMNS, format, "Leave Report"
        )
        filename = export_service.export_filename("leave-report", extension)
        return StreamingResponse(
            io.BytesIO(content),
            media_type=media_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    total = query.count()
    leaves = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "leaves": [serialize_leave(leave) for leave in leaves],
        "pagination": Pagination.build(page, limit, total),
    }


@router.get("/employee-summary")
def employee_summary(
    year: Optional[int] = Query(default=None, ge=2020, le=2030),
    department: Optional[str] = Query(default=None, min_length=1),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_hr())
):
    year = resolve_financial_year(year)
    query = db.query(User).filter(User.is_active.is_(True))
    if department:
        query = query.filter(User.department == department)

    total = query.count()
    users = query.order_by(User.first_name, User.last_name).offset((page - 1) * limit).limit(limit).all()

    balances = (
        db.query(LeaveBalance)
        .options(joinedload(LeaveBalance.leave_type))
        .filter(
            LeaveBalance.year == year,
            LeaveBalance.is_active.is_(True),
            LeaveBalance.user_id.in_([u.id for u in users]),
        )
        .order_by(LeaveBalance.leave_type_id)
        .all()
    )
    by_user = {}
    for balance in balances:
        by_user.setdefault(balance.user_id, []).append(serialize_balance(balance))

    return {
        "year": year,
        "users": [
            {"user": UserResponse.model_validate(u), "balances": by_user.get(u.id, [])}
            for u in users
        ],
        "pagination": Pagination.build(page, limit, total),
    }


@router.get("/department-report")
def department_report(
    year: Optional[int] = Query(default=None, ge=2020, le=2030),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_hr())
):
    year, start, end = _period(year, month)
    rows = (
        db.query(
            User.department,
            Leave.status,
            func.count(Leave.id),
            func.coalesce(func.sum(Leave.number_of_days), 0),
            func.coalesce(func.avg(Leave.number_of_days), 0),
        )
        .select_from(Leave)
        .join(User, Leave.user_id == User.id)
        .filter(Leave.start_date.between(start, end))
        .group_by(User.department, Leave.status)
        .order_by(User.department, Leave.status)
        .all()
    )
    return {
        "year": year,
        "month": month,
        "start_date": start,
        "end_date": end,
        "department_stats": [
            {
                "department": dep,
                "status": status,
                "total_requests": count,
                "total_days": float(total_days),
                "average_days": round(float(avg_days), 2),
            }
            for dep, status, count, total_days, avg_days in rows
        ],
    }


@router.get("/team-report")
def team_report(
    year: Optional[int] = Query(default=None, ge=2020, le=2030),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role([UserRole.MANAGER]))
):
    year, start, end = _period(year, month)
    team = (
        db.query(User)
        .filter(User.manager_id == current_user.id, User.is_active.is_(True))
        .order_by(User.first_name, User.last_name)
        .all()
    )
    team_ids = [member.id for member in team]

    leaves = (
        db.query(Leave)
        .options(joinedload(Leave.leave_type), joinedload(Leave.user))
        .filter(Leave.user_id.in_(team_ids), Leave.start_date.between(start, end))
        .order_by(Leave.start_date.asc())
        .all()
    )
    balances = (
        db.query(LeaveBalance)
        .options(joinedload(LeaveBalance.leave_type))
        .filter(LeaveBalance.user_id.in_(team_ids), LeaveBalance.year == year, LeaveBalance.is_active.is_(True))
        .order_by(LeaveBalance.user_id, LeaveBalance.leave_type_id)
        .all()
    )
    return {
        "year": year,
        "month": month,
        "team_members": [UserResponse.model_validate(member) for member in team],
        "team_leaves": [serialize_leave(leave) for leave in leaves],
        "team_balances": [serialize_balance(balance) for balance in balances],
    }
