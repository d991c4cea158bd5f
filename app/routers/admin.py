from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session, joinedload
from typing import List, Optional

from app.database import get_db
from app.models.leave_balance import LeaveBalance
from app.models.leave_type import LeaveType
from app.models.user import User
from app.routers.auth_deps import require_admin
from app.schemas.auth import UserResponse
from app.schemas.balance import (
    BalanceAdjustment, BulkBalanceRequest, DefaultBalanceResponse, DefaultBalanceUpdate,
    LeaveBalanceResponse, RolloverRequest, RolloverResult,
)
from app.schemas.leave import LeaveTypeCreate, LeaveTypeResponse
from app.services import balance_policy
from app.services import leave_balance as ledger
from app.services.audit import AuditService
from app.services.financial_year import (
    financial_year_label, get_current_financial_year, get_financial_year_dates, resolve_financial_year,
)

# One callable so FastAPI resolves the admin once per request
admin_user = require_admin()

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(admin_user)]
)


def _get_employee_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="Employee not found")
    return user


# --- Balances ---

@router.get("/employees/leave-balances")
def all_employee_balances(
    year: Optional[int] = Query(default=None, ge=2020, le=2030),
    db: Session = Depends(get_db)
):
    """Every active employee with their balances for the year (default: current)."""
    year = resolve_financial_year(year)
    employees = db.query(User).filter(User.is_active.is_(True)).order_by(User.last_name, User.first_name).all()
    balances = (
        db.query(LeaveBalance)
        .options(joinedload(LeaveBalance.leave_type))
        .filter(LeaveBalance.year == year, LeaveBalance.is_active.is_(True))
        .order_by(LeaveBalance.user_id, LeaveBalance.leave_type_id)
        .all()
    )
    by_user = {}
    for balance in balances:
        by_user.setdefault(balance.user_id, []).append(ledger.serialize_balance(balance))

    return {
        "year": year,
        "employees": [
            {"user": UserResponse.model_validate(e), "balances": by_user.get(e.id, [])}
            for e in employees
        ],
    }


@router.get("/employees/{user_id}/leave-balance")
def employee_balance(
    user_id: int,
    year: Optional[int] = Query(default=None, ge=2020, le=2030),
    db: Session = Depends(get_db)
):
    user = _get_employee_or_404(db, user_id)
    year = resolve_financial_year(year)
    return {
        "user": UserResponse.model_validate(user),
        "year": year,
        "balances": [ledger.serialize_balance(b) for b in ledger.get_employee_balances(db, user.id, year)],
    }


@router.put("/employees/{user_id}/leave-balance", response_model=LeaveBalanceResponse)
def adjust_employee_balance(
    user_id: int,
    adjustment: BalanceAdjustment,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(admin_user)
):
    updates = adjustment.model_dump(exclude_unset=True, exclude={"leave_type_id"})
    existing = ledger.get_employee_balances(db, user_id)
    before = next((ledger.serialize_balance(b) for b in existing if b.leave_type_id == adjustment.leave_type_id), None)

    balance = ledger.adjust_employee_balance(db, admin.id, user_id, adjustment.leave_type_id, updates)
    after = ledger.serialize_balance(balance)

    AuditService(db).log_data_modification(
        admin, "leave_balance", balance.id, "balance_adjusted", before, after,
        details={"user_id": user_id, "leave_type_id": adjustment.leave_type_id, "fields": sorted(updates)},
        request=request,
    )
    db.commit()
    return after


@router.post("/employees/bulk-update-leave-balances")
def bulk_update_balances(
    payload: BulkBalanceRequest,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(admin_user)
):
    items = [item.model_dump(exclude_unset=True) for item in payload.updates]
    results = ledger.bulk_adjust_balances(db, admin.id, items)
    succeeded = sum(1 for r in results if r["success"])

    AuditService(db).log_action(
        action="bulk_balance_update",
        entity_type="leave_balance",
        user_id=admin.id,
        user_role=admin.role,
        details={"requested": len(results), "succeeded": succeeded},
        request=request,
    )
    db.commit()
    return {
        "success": True,
        "message": f"Updated {succeeded} of {len(results)} balances",
        "results": results,
    }


@router.post("/employees/{user_id}/initialize-balances", status_code=status.HTTP_201_CREATED)
def initialize_balances(
    user_id: int,
    request: Request,
    year: Optional[int] = Query(default=None, ge=2020, le=2030),
    db: Session = Depends(get_db),
    admin: User = Depends(admin_user)
):
    balances = ledger.initialize_employee_balances(db, user_id, year)
    AuditService(db).log_data_modification(
        admin, "leave_balance", None, "balances_initialized", None,
        {"user_id": user_id, "year": resolve_financial_year(year), "rows": len(balances)},
        request=request,
    )
    db.commit()
    return {
        "success": True,
        "balances": [ledger.serialize_balance(b) for b in balances],
    }


# --- Financial year ---

@router.post("/financial-year-rollover", response_model=RolloverResult)
def financial_year_rollover(
    payload: RolloverRequest,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(admin_user)
):
    """
    Open a new financial year for every active employee. Uses the current
    default balance policy when one has been saved.
    """
    current_policy = balance_policy.get_current_policy(db)
    policy = None
    if current_policy is not None:
        policy = {field: getattr(current_policy, field) for field in balance_policy.POLICY_FIELDS}

    result = ledger.process_financial_year_rollover(db, payload.new_year, policy)

    audit = AuditService(db)
    audit.log_operational_event(
        "financial_year_rollover",
        "completed" if not result["errors"] else "completed_with_errors",
        {
            "new_year": payload.new_year,
            "triggered_by": admin.id,
            "policy_version": current_policy.version if current_policy else None,
            "processed_count": result["processed_count"],
            "created_count": result["created_count"],
            "skipped_count": result["skipped_count"],
            "error_count": len(result["errors"]),
        },
    )
    db.commit()
    return result


@router.get("/financial-year-info")
def financial_year_info():
    year = get_current_financial_year()
    start, end = get_financial_year_dates(year)
    next_start, next_end = get_financial_year_dates(year + 1)
    return {
        "current_financial_year": year,
        "label": financial_year_label(year),
        "start_date": start,
        "end_date": end,
        "next_financial_year": {
            "year": year + 1,
            "label": financial_year_label(year + 1),
            "start_date": next_start,
            "end_date": next_end,
        },
    }


# --- Leave types ---

@router.get("/leave-types", response_model=List[LeaveTypeResponse])
def list_leave_types(db: Session = Depends(get_db)):
    return db.query(LeaveType).filter(LeaveType.is_active.is_(True)).order_by(LeaveType.id).all()


@router.post("/leave-types", response_model=LeaveTypeResponse, status_code=status.HTTP_201_CREATED)
def create_leave_type(
    payload: LeaveTypeCreate,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(admin_user)
):
    if db.query(LeaveType).filter(LeaveType.name == payload.name).first():
        raise HTTPException(status_code=400, detail="A leave type with this name already exists")

    leave_type = LeaveType(**payload.model_dump())
    db.add(leave_type)
    db.flush()
    AuditService(db).log_data_modification(
        admin, "leave_type", leave_type.id, "leave_type_created", None, payload.model_dump(), request=request
    )
    db.commit()
    db.refresh(leave_type)
    return leave_type


@router.put("/leave-types/{leave_type_id}/deactivate", response_model=LeaveTypeResponse)
def deactivate_leave_type(
    leave_type_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(admin_user)
):
    leave_type = db.query(LeaveType).filter(LeaveType.id == leave_type_id).first()
    if not leave_type:
        raise HTTPException(status_code=404, detail="Leave type not found")

    leave_type.is_active = False
    AuditService(db).log_data_modification(
        admin, "leave_type", leave_type.id, "leave_type_deactivated",
        {"is_active": True}, {"is_active": False}, request=request,
    )
    db.commit()
    db.refresh(leave_type)
    return leave_type


# --- Default balance policy ---

@router.get("/default-balance", response_model=DefaultBalanceResponse)
def get_default_balance(db: Session = Depends(get_db)):
    current = balance_policy.get_current_policy(db)
    if current is None:
        return DefaultBalanceResponse(**balance_policy.FALLBACK_POLICY)
    return current


@router.post("/default-balance", response_model=DefaultBalanceResponse, status_code=status.HTTP_201_CREATED)
def save_default_balance(
    payload: DefaultBalanceUpdate,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(admin_user)
):
    previous = balance_policy.get_effective_policy(db)
    values = payload.model_dump(exclude={"notes"})
    policy = balance_policy.save_policy(db, admin.id, values, notes=payload.notes)

    AuditService(db).log_data_modification(
        admin, "default_balance", policy.id, "default_balance_saved", previous, values,
        details={"version": policy.version}, request=request,
    )
    db.commit()
    return policy


@router.get("/default-balance/history", response_model=List[DefaultBalanceResponse])
def default_balance_history(
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db)
):
    return balance_policy.list_policy_history(db, limit)
