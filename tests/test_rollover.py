import pytest
from decimal import Decimal
from app.models.leave_balance import LeaveBalance
from app.models.user import UserRole
from app.services import leave_balance as ledger

PREVIOUS = 2024
NEW = 2025

def _set_previous(db_session, user, leave_type, **values):
    balance = ledger.ensure_balance(db_session, user.id, leave_type, PREVIOUS)
    for field, value in values.items():
        setattr(balance, field, Decimal(str(value)))
    balance.recalculate_remaining()
    db_session.commit()
    return balance

def _new_balance(db_session, user, leave_type):
    return ledger._find_balance(db_session, user.id, leave_type.id, NEW)

def test_carry_over_is_capped(db_session, employee_user, leave_types):
    """Remaining 6 with a cap of 5 carries 5 into a 15 day year."""
    annual = leave_types["Annual Leave"]
    _set_previous(db_session, employee_user, annual, used_days=9)

    result = ledger.process_financial_year_rollover(db_session, NEW)

    assert result["success"] is True
    balance = _new_balance(db_session, employee_user, annual)
    assert balance.carried_over_days == Decimal("5.0")
    assert balance.total_days == Decimal("15.0")
    assert balance.used_days == 0
    assert balance.remaining_days == Decimal("20.0")
    assert balance.notes == "Auto-generated for FY 2025-2026"

def test_carry_over_below_cap(db_session, employee_user, leave_types):
    annual = leave_types["Annual Leave"]
    _set_previous(db_session, employee_user, annual, used_days=12.5)

    ledger.process_financial_year_rollover(db_session, NEW)
    assert _new_balance(db_session, employee_user, annual).carried_over_days == Decimal("2.5")

def test_non_annual_types_carry_nothing(db_session, employee_user, leave_types):
    sick = leave_types["Sick Leave"]
    _set_previous(db_session, employee_user, sick, used_days=2)

    ledger.process_financial_year_rollover(db_session, NEW)
    balance = _new_balance(db_session, employee_user, sick)
    assert balance.carried_over_days == 0
    assert balance.max_carry_over == 0
    assert balance.remaining_days == Decimal("10.0")

def test_negative_remaining_is_carried(db_session, employee_user, leave_types):
    annual = leave_types["Annual Leave"]
    _set_previous(db_session, employee_user, annual, used_days=17)

    ledger.process_financial_year_rollover(db_session, NEW)
    balance = _new_balance(db_session, employee_user, annual)
    assert balance.carried_over_days == Decimal("-2.0")
    assert balance.remaining_days == Decimal("13.0")

def test_no_previous_row_carries_zero(db_session, employee_user, leave_types):
    annual = leave_types["Annual Leave"]
    ledger.process_financial_year_rollover(db_session, NEW)

    balance = _new_balance(db_session, employee_user, annual)
    assert balance.carried_over_days == 0
    assert balance.remaining_days == Decimal("15.0")

def test_creates_row_per_active_employee_and_type(db_session, employee_user, manager_user, leave_types):
    result = ledger.process_financial_year_rollover(db_session, NEW)

    assert result["processed_count"] == 2
    assert result["created_count"] == 2 * len(leave_types)
    assert result["skipped_count"] == 0
    assert result["errors"] == []
    assert result["message"] == "Financial year rollover completed. Processed 2 employees."

def test_rerun_is_a_no_op(db_session, employee_user, leave_types):
    annual = leave_types["Annual Leave"]
    _set_previous(db_session, employee_user, annual, used_days=9)
    ledger.process_financial_year_rollover(db_session, NEW)

    # Spending days in the new year must survive a second run
    balance = _new_balance(db_session, employee_user, annual)
    ledger.debit_balance(db_session, balance, 3)
    db_session.commit()

    result = ledger.process_financial_year_rollover(db_session, NEW)

    assert result["created_count"] == 0
    assert result["skipped_count"] == 2 * len(leave_types)
    count = db_session.query(LeaveBalance).filter(LeaveBalance.year == NEW).count()
    assert count == 2 * len(leave_types)
    assert _new_balance(db_session, employee_user, annual).remaining_days == Decimal("17.0")

def test_inactive_employees_are_excluded(db_session, make_user, leave_types):
    former = make_user(UserRole.EMPLOYEE, is_active=False)

    result = ledger.process_financial_year_rollover(db_session, NEW)

    assert result["processed_count"] == 0
    assert _new_balance(db_session, former, leave_types["Annual Leave"]) is None

def test_inactive_leave_types_are_excluded(db_session, employee_user, leave_types):
    leave_types["Bereavement Leave"].is_active = False
    db_session.commit()

    ledger.process_financial_year_rollover(db_session, NEW)
    assert _new_balance(db_session, employee_user, leave_types["Bereavement Leave"]) is None
    assert _new_balance(db_session, employee_user, leave_types["Sick Leave"]) is not None

def test_policy_overrides_totals_and_carry_cap(db_session, employee_user, leave_types):
    annual = leave_types["Annual Leave"]
    _set_previous(db_session, employee_user, annual, used_days=5)
    policy = {"annual_leave": 22, "sick_leave": 8, "personal_leave": 4, "max_carry_over": 3}

    ledger.process_financial_year_rollover(db_session, NEW, policy=policy)

    annual_balance = _new_balance(db_session, employee_user, annual)
    # Previous row's own cap of 5 applies to this carry; the policy cap applies to the new row
    assert annual_balance.carried_over_days == Decimal("5.0")
    assert annual_balance.total_days == Decimal("22.0")
    assert annual_balance.max_carry_over == Decimal("3.0")
    assert annual_balance.remaining_days == Decimal("27.0")

    sick_balance = _new_balance(db_session, employee_user, leave_types["Sick Leave"])
    assert sick_balance.total_days == Decimal("8.0")
    assert sick_balance.max_carry_over == Decimal("3.0")

    # Outside the policy's name classes the leave type default applies
    bereavement = _new_balance(db_session, employee_user, leave_types["Bereavement Leave"])
    assert bereavement.total_days == Decimal("3.0")

def test_failing_employee_is_isolated(db_session, employee_user, manager_user, leave_types, monkeypatch):
    real_insert = ledger._insert_balance_if_absent

    def flaky_insert(db, values):
        if values["user_id"] == employee_user.id:
            raise RuntimeError("disk full")
        return real_insert(db, values)

    monkeypatch.setattr(ledger, "_insert_balance_if_absent", flaky_insert)

    result = ledger.process_financial_year_rollover(db_session, NEW)

    assert result["success"] is True
    assert result["processed_count"] == 1
    assert result["errors"] == [{
        "employee_id": employee_user.id,
        "employee_code": employee_user.employee_code,
        "error": "disk full",
    }]
    assert _new_balance(db_session, manager_user, leave_types["Annual Leave"]) is not None
    assert _new_balance(db_session, employee_user, leave_types["Annual Leave"]) is None

def test_row_created_concurrently_counts_as_skipped(db_session, employee_user, leave_types, monkeypatch):
    first = ledger.process_financial_year_rollover(db_session, NEW)
    rows_before = db_session.query(LeaveBalance).filter(LeaveBalance.year == NEW).count()

    # The existence check misses, so the insert-if-absent meets the existing row
    real_find = ledger._find_balance

    def stale_find(db, user_id, leave_type_id, year):
        return None if year == NEW else real_find(db, user_id, leave_type_id, year)

    monkeypatch.setattr(ledger, "_find_balance", stale_find)
    second = ledger.process_financial_year_rollover(db_session, NEW)

    assert second["errors"] == []
    assert second["created_count"] == 0
    assert second["skipped_count"] == first["created_count"]
    assert second["processed_count"] == first["processed_count"]
    assert db_session.query(LeaveBalance).filter(LeaveBalance.year == NEW).count() == rows_before
