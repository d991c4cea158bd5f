import logging
from datetime import date
from app.core.config import settings
from app.database import SessionLocal
from app.models.leave_type import LeaveType
from app.models.user import User, UserRole
from app.services import auth as auth_service
from app.services.leave_balance import initialize_employee_balances

logger = logging.getLogger(__name__)

# name, default days, monthly pro-rata, description, color
DEFAULT_LEAVE_TYPES = [
    ("Annual Leave", 15.0, 1.25, "Yearly paid vacation entitlement", "#007bff"),
    ("Sick Leave", 10.0, 0.83, "Paid leave for illness or medical appointments", "#dc3545"),
    ("Bereavement Leave", 3.0, 0.25, "Leave following the death of a family member", "#6c757d"),
    ("Leave Without Pay", 0.0, 0.0, "Unpaid leave (LWOP)", "#ffc107"),
]


def seed_leave_types(db) -> int:
    """Create the standard leave types when the catalog is empty."""
    if db.query(LeaveType).count():
        return 0
    for name, days, pro_rata, description, color in DEFAULT_LEAVE_TYPES:
        db.add(LeaveType(
            name=name,
            description=description,
            default_days=days,
            monthly_pro_rata=pro_rata,
            max_carry_forward=0,
            color=color,
            requires_approval=True,
            is_active=True,
        ))
    db.flush()
    return len(DEFAULT_LEAVE_TYPES)


def seed_default_admin(db):
    """Create the bootstrap admin when no admin exists yet."""
    if db.query(User).filter(User.role == UserRole.ADMIN).first():
        return None
    admin = User(
        employee_code="ADMIN001",
        first_name="System",
        last_name="Administrator",
        email=settings.default_admin_email,
        hashed_password=auth_service.get_password_hash(settings.default_admin_password),
        role=UserRole.ADMIN,
        department="Administration",
        position="System Administrator",
        hire_date=date.today(),
        is_active=True,
    )
    db.add(admin)
    db.flush()
    return admin


def init_system_data():
    """
    Checks if the system needs initialization.
    Seeds the leave type catalog and a default admin on an empty database.
    """
    db = SessionLocal()
    try:
        created_types = seed_leave_types(db)
        if created_types:
            logger.info(f"✓ Seeded {created_types} leave types")

        admin = seed_default_admin(db)
        db.commit()

        if admin is not None:
            initialize_employee_balances(db, admin.id)
            logger.info(f"✓ Created default Admin: {admin.email} (change the password immediately)")
        else:
            logger.info("System initialization check: admin account present.")
    except Exception as e:
        db.rollback()
        logger.error(f"Error during system initialization check: {str(e)}", exc_info=True)
    finally:
        db.close()
