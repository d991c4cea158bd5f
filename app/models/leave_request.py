from sqlalchemy import Column, Integer, String, Date, Numeric, Boolean, Text, ForeignKey, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.database import Base
import enum

class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

# Requests in these states hold their dates; overlap checks only look at them
ACTIVE_LEAVE_STATUSES = (LeaveStatus.PENDING.value, LeaveStatus.APPROVED.value)
TERMINAL_LEAVE_STATUSES = frozenset({
    LeaveStatus.APPROVED.value,
    LeaveStatus.REJECTED.value,
    LeaveStatus.CANCELLED.value,
})

class HalfDayType(str, enum.Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"

class Leave(Base):
    __tablename__ = "leaves"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    leave_type_id = Column(Integer, ForeignKey("leave_types.id"), nullable=False)
    start_date = Column(Date, nullable=False, index=True)
    end_date = Column(Date, nullable=False, index=True)
    number_of_days = Column(Numeric(4, 1), nullable=False)
    reason = Column(Text, nullable=False)
    comments = Column(Text, nullable=True)
    status = Column(String(20), default=LeaveStatus.PENDING.value, nullable=False, index=True)  # String for SQLite simplicity

    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    balance_debited = Column(Boolean, default=False, nullable=False)

    is_half_day = Column(Boolean, default=False, nullable=False)
    half_day_type = Column(String(20), nullable=True)  # display only
    emergency_contact = Column(String(100), nullable=True)
    handover_notes = Column(Text, nullable=True)
    attachment_path = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", foreign_keys=[user_id], back_populates="leave_requests")
    approver = relationship("User", foreign_keys=[approved_by])
    leave_type = relationship("LeaveType")
