"""
Default balance policy store.

Every save appends a new DefaultBalance version and moves the single
pointer row to it in the same commit. History is never rewritten.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.default_balance import DefaultBalance, DefaultBalancePointer
from app.services.leave_balance import quantize_days

logger = logging.getLogger(__name__)

POINTER_ID = 1
POLICY_FIELDS = ("annual_leave", "sick_leave", "personal_leave", "max_carry_over")
FALLBACK_POLICY = {
    "annual_leave": 20.0,
    "sick_leave": 10.0,
    "personal_leave": 5.0,
    "max_carry_over": 5.0,
}


def policy_to_dict(policy: DefaultBalance) -> Dict[str, Any]:
    return {
        "id": policy.id,
        "version": policy.version,
        "annual_leave": float(policy.annual_leave),
        "sick_leave": float(policy.sick_leave),
        "personal_leave": float(policy.personal_leave),
        "max_carry_over": float(policy.max_carry_over),
        "updated_by": policy.updated_by,
        "notes": policy.notes,
        "created_at": policy.created_at,
    }


def get_current_policy(db: Session) -> Optional[DefaultBalance]:
    pointer = db.query(DefaultBalancePointer).filter(DefaultBalancePointer.id == POINTER_ID).first()
    return pointer.current if pointer else None


def get_effective_policy(db: Session) -> Dict[str, float]:
    """Current policy values, or the built-in fallback when none was ever saved."""
    current = get_current_policy(db)
    if current is None:
        return dict(FALLBACK_POLICY)
    return {field: float(getattr(current, field)) for field in POLICY_FIELDS}


def save_policy(db: Session, admin_id: Optional[int], values: Mapping[str, Any], notes: Optional[str] = None) -> DefaultBalance:
    latest_version = db.query(func.max(DefaultBalance.version)).scalar() or 0

    policy = DefaultBalance(
        version=latest_version + 1,
        updated_by=admin_id,
        notes=notes,
        **{field: quantize_days(values[field]) for field in POLICY_FIELDS},
    )
    db.add(policy)
    db.flush()

    pointer = db.query(DefaultBalancePointer).filter(DefaultBalancePointer.id == POINTER_ID).first()
    if pointer is None:
        db.add(DefaultBalancePointer(id=POINTER_ID, current_id=policy.id))
    else:
        pointer.current_id = policy.id
    db.commit()
    db.refresh(policy)

    logger.info(f"Default balance policy v{policy.version} saved by user {admin_id}")
    return policy


def list_policy_history(db: Session, limit: int = 50) -> List[DefaultBalance]:
    return db.query(DefaultBalance).order_by(DefaultBalance.version.desc()).limit(limit).all()
