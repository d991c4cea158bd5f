from sqlalchemy import Column, Integer, String, Numeric, Boolean, Text, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base

class LeaveType(Base):
    """Reference data. Deactivated with is_active, never deleted."""
    __tablename__ = "leave_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, index=True, nullable=False)
    description = Column(Text, nullable=True)
    default_days = Column(Numeric(4, 1), nullable=False, default=0)  # annual entitlement
    monthly_pro_rata = Column(Numeric(4, 2), nullable=True)  # accrual per month of service
    max_carry_forward = Column(Numeric(4, 1), nullable=False, default=0)
    color = Column(String(20), nullable=True, default="#007bff")
    requires_approval = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    balances = relationship("LeaveBalance", back_populates="leave_type")

    @property
    def is_annual(self) -> bool:
        return "annual" in self.name.lower()
