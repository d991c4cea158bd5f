"""
Leave Balance Ledger

Business logic for per-employee, per-leave-type, per-financial-year
entitlements, including the financial-year rollover engine.

Rules:
- remaining_days = total_days - used_days + carried_over_days after every write
- At most one row per (user_id, leave_type_id, year); new rows go through an
  atomic insert-if-absent so repeated or concurrent calls never duplicate
- Rollover carry-over is min(previous remaining, previous max carry-over)
  and is NOT floored at zero
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional

import logging

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from app.core.config import settings
from app.core.exceptions import AppException, NotFoundError, PolicyViolationError
from app.models.leave_balance import LeaveBalance
from app.models.leave_type import LeaveType
from app.models.user import User
from app.services.financial_year import financial_year_label, resolve_financial_year

logger = logging.getLogger(__name__)

ADJUSTABLE_FIELDS = ("total_days", "used_days", "carried_over_days", "max_carry_over", "notes")
DEFAULT_ADJUSTMENT_NOTE = "Admin adjustment"


def quantize_days(value) -> Decimal:
    """Round a day quantity to half-day (one fractional digit) precision."""
    if value is None:
        return Decimal("0.0")
    return Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def default_max_carry_over(leave_type: LeaveType) -> Decimal:
    return quantize_days(settings.annual_max_carry_over) if leave_type.is_annual else Decimal("0.0")


def policy_days_for(leave_type: LeaveType, policy: Optional[Mapping[str, Any]]) -> Optional[Decimal]:
    """
    Map a leave type onto the policy's name class (annual / sick / personal).
    Returns None when there is no policy or the type is in none of the classes.
    """
    if not policy:
        return None
    name = leave_type.name.lower()
    for keyword, key in (("annual", "annual_leave"), ("sick", "sick_leave"), ("personal", "personal_leave")):
        if keyword in name and policy.get(key) is not None:
            return quantize_days(policy[key])
    return None


def _insert_balance_if_absent(db: Session, values: Dict[str, Any]) -> bool:
    """
    Atomically insert a balance row unless one already exists for the
    (user_id, leave_type_id, year) tuple.

    Returns:
        True if this call created the row, False if it was already there.
    """
    dialect = db.get_bind().dialect.name
    conflict_keys = ["user_id", "leave_type_id", "year"]

    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    else:
        dialect_insert = None

    if dialect_insert is not None:
        stmt = dialect_insert(LeaveBalance).values(**values).on_conflict_do_nothing(index_elements=conflict_keys)
        result = db.execute(stmt)
        return result.rowcount == 1

    # Other backends: let the unique constraint decide inside a savepoint
    try:
        with db.begin_nested():
            db.execute(insert(LeaveBalance).values(**values))
        return True
    except IntegrityError:
        return False


def _balance_values(user_id: int, leave_type: LeaveType, year: int, **overrides) -> Dict[str, Any]:
    total = quantize_days(overrides.get("total_days", leave_type.default_days))
    used = quantize_days(overrides.get("used_days", 0))
    carried = quantize_days(overrides.get("carried_over_days", 0))
    return {
        "user_id": user_id,
        "leave_type_id": leave_type.id,
        "year": year,
        "total_days": total,
        "used_days": used,
        "carried_over_days": carried,
        "remaining_days": total - used + carried,
        "max_carry_over": quantize_days(overrides.get("max_carry_over", default_max_carry_over(leave_type))),
        "is_active": True,
        "last_updated_by": overrides.get("last_updated_by"),
        "notes": overrides.get("notes"),
    }


def _find_balance(db: Session, user_id: int, leave_type_id: int, year: int) -> Optional[LeaveBalance]:
    return db.query(LeaveBalance).filter(
        LeaveBalance.user_id == user_id,
        LeaveBalance.leave_type_id == leave_type_id,
        LeaveBalance.year == year,
        LeaveBalance.is_active.is_(True),
    ).first()


def _get_employee(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("Employee not found", details={"user_id": user_id})
    return user


def serialize_balance(balance: LeaveBalance) -> Dict[str, Any]:
    leave_type = balance.leave_type
    return {
        "id": balance.id,
        "user_id": balance.user_id,
        "leave_type_id": balance.leave_type_id,
        "leave_type_name": leave_type.name if leave_type else None,
        "leave_type_color": leave_type.color if leave_type else None,
        "year": balance.year,
        "total_days": float(balance.total_days),
        "used_days": float(balance.used_days),
        "remaining_days": float(balance.remaining_days),
        "carried_over_days": float(balance.carried_over_days),
        "max_carry_over": float(balance.max_carry_over),
        "notes": balance.notes,
    }


# --- Reads ---

def get_employee_balances(db: Session, user_id: int, year: Optional[int] = None) -> List[LeaveBalance]:
    """
    All active balance rows for an employee in a financial year (default: current).
    Ordered by leave type. Never creates rows.
    """
    year = resolve_financial_year(year)
    return (
        db.query(LeaveBalance)
        .options(joinedload(LeaveBalance.leave_type))
        .filter(
            LeaveBalance.user_id == user_id,
            LeaveBalance.year == year,
            LeaveBalance.is_active.is_(True),
        )
        .order_by(LeaveBalance.leave_type_id)
        .all()
    )


# --- Writes ---

def initialize_employee_balances(db: Session, user_id: int, year: Optional[int] = None) -> List[LeaveBalance]:
    """
    Create one balance row per active leave type for the given year.

    Safe to call repeatedly: rows that already exist are left untouched.

    Args:
        db: Database session
        user_id: Employee to initialize
        year: Financial year label (defaults to the current one)

    Returns:
        The employee's balance rows for that year.
    """
    _get_employee(db, user_id)
    year = resolve_financial_year(year)

    created = 0
    for leave_type in db.query(LeaveType).filter(LeaveType.is_active.is_(True)).order_by(LeaveType.id).all():
        if _insert_balance_if_absent(db, _balance_values(user_id, leave_type, year)):
            created += 1
    db.commit()

    logger.info(f"Initialized leave balances for user {user_id}, FY {year}: {created} created")
    return get_employee_balances(db, user_id, year)


def ensure_balance(db: Session, user_id: int, leave_type: LeaveType, year: Optional[int] = None) -> LeaveBalance:
    """
    Return the balance row for (user, leave type, year), creating it from the
    leave type's defaults on first touch. The creation is flushed, not committed.
    """
    year = resolve_financial_year(year)
    balance = _find_balance(db, user_id, leave_type.id, year)
    if balance is None:
        _insert_balance_if_absent(db, _balance_values(user_id, leave_type, year))
        balance = _find_balance(db, user_id, leave_type.id, year)
    return balance


def _check_carry_over_cap(balance: Optional[LeaveBalance], updates: Mapping[str, Any]) -> None:
    """Admin-set carry-over may not exceed the row's max_carry_over."""
    carried = updates.get("carried_over_days")
    cap = updates.get("max_carry_over")
    if carried is None and cap is None:
        return
    if carried is None:
        carried = balance.carried_over_days if balance is not None else 0
    if cap is None:
        cap = balance.max_carry_over if balance is not None else settings.annual_max_carry_over
    if quantize_days(carried) > quantize_days(cap):
        raise PolicyViolationError(
            "Carried-over days cannot exceed the maximum carry-over",
            error_code="CARRY_OVER_EXCEEDED",
            details={"carried_over_days": float(quantize_days(carried)), "max_carry_over": float(quantize_days(cap))},
        )


def adjust_employee_balance(
    db: Session,
    admin_id: int,
    user_id: int,
    leave_type_id: int,
    updates: Mapping[str, Any],
) -> LeaveBalance:
    """
    Admin adjustment of the current-year balance.

    Only keys present in `updates` are applied. A missing row is created from
    the leave type's default plus the supplied overrides.
    """
    _get_employee(db, user_id)
    leave_type = db.query(LeaveType).filter(LeaveType.id == leave_type_id).first()
    if not leave_type:
        raise NotFoundError("Leave type not found", details={"leave_type_id": leave_type_id})

    unknown = set(updates) - set(ADJUSTABLE_FIELDS)
    if unknown:
        raise AppException(f"Unsupported balance fields: {', '.join(sorted(unknown))}", error_code="VALIDATION_ERROR")

    year = resolve_financial_year()
    balance = _find_balance(db, user_id, leave_type_id, year)
    _check_carry_over_cap(balance, updates)

    if balance is None:
        overrides = {k: v for k, v in updates.items() if v is not None}
        overrides.setdefault("max_carry_over", settings.annual_max_carry_over)
        overrides.setdefault("notes", DEFAULT_ADJUSTMENT_NOTE)
        overrides["last_updated_by"] = admin_id
        if not _insert_balance_if_absent(db, _balance_values(user_id, leave_type, year, **overrides)):
            # Created concurrently; fall through to the update path
            logger.info(f"Balance for user {user_id}, type {leave_type_id}, FY {year} appeared during adjustment")
        balance = _find_balance(db, user_id, leave_type_id, year)

    for field, value in updates.items():
        if field == "notes":
            balance.notes = value
        elif value is not None:
            setattr(balance, field, quantize_days(value))

    balance.recalculate_remaining()
    balance.last_updated_by = admin_id
    db.commit()
    db.refresh(balance)

    logger.info(
        f"Balance adjusted by admin {admin_id} for user {user_id}, type {leave_type_id}: "
        f"remaining={balance.remaining_days}"
    )
    return balance


def bulk_adjust_balances(db: Session, admin_id: int, updates: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """
    Apply adjust_employee_balance to each item independently.
    Earlier items stay committed when a later one fails.
    """
    results = []
    for item in updates:
        item = dict(item)
        user_id = item.pop("user_id", None)
        leave_type_id = item.pop("leave_type_id", None)
        try:
            balance = adjust_employee_balance(db, admin_id, user_id, leave_type_id, item)
            results.append({
                "success": True,
                "user_id": user_id,
                "leave_type_id": leave_type_id,
                "balance": serialize_balance(balance),
            })
        except AppException as e:
            db.rollback()
            results.append({"success": False, "user_id": user_id, "leave_type_id": leave_type_id, "error": e.message})
        except Exception as e:
            db.rollback()
            logger.error(f"Bulk balance update failed for user {user_id}: {e}", exc_info=True)
            results.append({"success": False, "user_id": user_id, "leave_type_id": leave_type_id, "error": str(e)})
    return results


def debit_balance(db: Session, balance: LeaveBalance, days, actor_id: Optional[int] = None) -> LeaveBalance:
    """Record `days` as used. Flushed, not committed."""
    balance.used_days = quantize_days(balance.used_days) + quantize_days(days)
    balance.recalculate_remaining()
    if actor_id is not None:
        balance.last_updated_by = actor_id
    db.flush()
    return balance


# --- Rollover ---

def process_financial_year_rollover(
    db: Session,
    new_year: int,
    policy: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Open financial year `new_year` for every active employee and leave type.

    Existing new-year rows are skipped, so re-running the rollover is a no-op
    per tuple. Each employee is committed on its own; a failing employee is
    rolled back and reported in `errors` without stopping the batch.

    Args:
        db: Database session
        new_year: Financial year label to open
        policy: Optional overrides with annual_leave, sick_leave,
            personal_leave and max_carry_over

    Returns:
        Dict with success, processed_count, skipped_count, created_count,
        errors and message.
    """
    previous_year = new_year - 1

    # Enumeration failures propagate to the caller
    employees = db.query(User).filter(User.is_active.is_(True)).order_by(User.id).all()
    leave_types = db.query(LeaveType).filter(LeaveType.is_active.is_(True)).order_by(LeaveType.id).all()
    employee_refs = [(employee.id, employee.employee_code) for employee in employees]

    policy_max_carry = None
    if policy and policy.get("max_carry_over") is not None:
        policy_max_carry = quantize_days(policy["max_carry_over"])

    processed_count = 0
    skipped_count = 0
    created_count = 0
    errors: List[Dict[str, Any]] = []
    note = f"Auto-generated for {financial_year_label(new_year)}"

    for employee_id, employee_code in employee_refs:
        employee_created = 0
        employee_skipped = 0
        try:
            for leave_type in leave_types:
                if _find_balance(db, employee_id, leave_type.id, new_year) is not None:
                    employee_skipped += 1
                    continue

                previous = _find_balance(db, employee_id, leave_type.id, previous_year)
                if previous is not None:
                    carried = min(quantize_days(previous.remaining_days), quantize_days(previous.max_carry_over))
                else:
                    carried = Decimal("0.0")

                total = policy_days_for(leave_type, policy)
                if total is None:
                    total = quantize_days(leave_type.default_days)
                max_carry = policy_max_carry if policy_max_carry is not None else default_max_carry_over(leave_type)

                created = _insert_balance_if_absent(db, _balance_values(
                    employee_id,
                    leave_type,
                    new_year,
                    total_days=total,
                    used_days=0,
                    carried_over_days=carried,
                    max_carry_over=max_carry,
                    notes=note,
                ))
                if created:
                    employee_created += 1
                else:
                    employee_skipped += 1

            db.commit()
            processed_count += 1
            created_count += employee_created
            skipped_count += employee_skipped
        except Exception as e:
            db.rollback()
            logger.error(f"Rollover to FY {new_year} failed for employee {employee_code}: {e}", exc_info=True)
            errors.append({"employee_id": employee_id, "employee_code": employee_code, "error": str(e)})

    logger.info(
        f"Financial year rollover to {new_year}: processed={processed_count} "
        f"created={created_count} skipped={skipped_count} errors={len(errors)}"
    )
    return {
        "success": True,
        "processed_count": processed_count,
        "skipped_count": skipped_count,
        "created_count": created_count,
        "errors": errors,
        "message": f"Financial year rollover completed. Processed {processed_count} employees.",
    }
