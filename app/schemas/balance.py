from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.core.config import settings


class LeaveBalanceResponse(BaseModel):
    id: int
    user_id: int
    leave_type_id: int
    leave_type_name: Optional[str] = None
    leave_type_color: Optional[str] = None
    year: int
    total_days: float
    used_days: float
    remaining_days: float
    carried_over_days: float
    max_carry_over: float
    notes: Optional[str] = None


class BalanceAdjustment(BaseModel):
    """Only the fields actually sent are applied."""
    leave_type_id: int
    total_days: Optional[float] = Field(default=None, ge=0)
    used_days: Optional[float] = Field(default=None, ge=0)
    carried_over_days: Optional[float] = Field(default=None, ge=0)
    max_carry_over: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)


class BulkBalanceAdjustment(BalanceAdjustment):
    user_id: int


class BulkBalanceRequest(BaseModel):
    updates: List[BulkBalanceAdjustment] = Field(min_length=1)


class RolloverRequest(BaseModel):
    new_year: int = Field(ge=settings.rollover_min_year, le=settings.rollover_max_year)


class RolloverResult(BaseModel):
    success: bool
    processed_count: int
    skipped_count: int
    created_count: int
    errors: List[Dict[str, Any]]
    message: str


class DefaultBalanceUpdate(BaseModel):
    annual_leave: float = Field(ge=0)
    sick_leave: float = Field(ge=0)
    personal_leave: float = Field(ge=0)
    max_carry_over: float = Field(ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)


class DefaultBalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    version: Optional[int] = None
    annual_leave: float
    sick_leave: float
    personal_leave: float
    max_carry_over: float
    updated_by: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
