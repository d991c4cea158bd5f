from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import Literal, Optional

from app.models.leave_request import HalfDayType, LeaveStatus


class LeaveTypeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    default_days: float
    monthly_pro_rata: Optional[float] = None
    max_carry_forward: float
    color: Optional[str] = None
    requires_approval: bool
    is_active: bool


class LeaveTypeCreate(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    description: Optional[str] = None
    default_days: float = Field(ge=0)
    monthly_pro_rata: Optional[float] = Field(default=None, ge=0)
    max_carry_forward: float = Field(default=0, ge=0)
    color: Optional[str] = "#007bff"
    requires_approval: bool = True


class LeaveRequestCreate(BaseModel):
    leave_type_id: int
    start_date: date
    end_date: date
    reason: str = Field(min_length=10, max_length=500)
    is_half_day: bool = False
    half_day_type: Optional[HalfDayType] = None
    emergency_contact: Optional[str] = Field(default=None, min_length=5, max_length=100)
    handover_notes: Optional[str] = Field(default=None, max_length=1000)


class LeaveDecision(BaseModel):
    action: Literal["approve", "reject"]
    rejection_reason: Optional[str] = None
    comments: Optional[str] = Field(default=None, max_length=1000)


class LeaveApproveAndDebit(BaseModel):
    comments: Optional[str] = Field(default=None, max_length=1000)


class LeaveUserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: str
    department: str
    position: str


class LeaveTypeSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    color: Optional[str] = None


class LeaveResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    leave_type_id: int
    start_date: date
    end_date: date
    number_of_days: float
    reason: str
    comments: Optional[str] = None
    status: LeaveStatus
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    balance_debited: bool
    is_half_day: bool
    half_day_type: Optional[str] = None
    emergency_contact: Optional[str] = None
    handover_notes: Optional[str] = None
    attachment_path: Optional[str] = None
    created_at: Optional[datetime] = None
    leave_type: Optional[LeaveTypeSummary] = None
    user: Optional[LeaveUserSummary] = None
