from sqlalchemy import Column, Integer, Numeric, Boolean, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base

class LeaveBalance(Base):
    """
    Per-employee, per-leave-type, per-financial-year entitlement.

    `year` is the financial year label: 2024 means 1 Apr 2024 - 31 Mar 2025.
    remaining_days is kept equal to total_days - used_days + carried_over_days.
    """
    __tablename__ = "leave_balances"
    __table_args__ = (
        UniqueConstraint("user_id", "leave_type_id", "year", name="uq_leave_balance_user_type_year"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id"), nullable=False, index=True)
    year = Column(Integer, nullable=False, index=True)

    total_days = Column(Numeric(4, 1), nullable=False, default=0)
    used_days = Column(Numeric(4, 1), nullable=False, default=0)
    remaining_days = Column(Numeric(4, 1), nullable=False, default=0)
    carried_over_days = Column(Numeric(4, 1), nullable=False, default=0)
    max_carry_over = Column(Numeric(4, 1), nullable=False, default=5)

    is_active = Column(Boolean, default=True, nullable=False)
    last_updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", foreign_keys=[user_id], back_populates="leave_balances")
    leave_type = relationship("LeaveType", back_populates="balances")

    def recalculate_remaining(self):
        self.remaining_days = self.total_days - self.used_days + self.carried_over_days
