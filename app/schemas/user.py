from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional

from app.models.user import UserRole


class UserAdminUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    role: Optional[UserRole] = None
    department: Optional[str] = Field(default=None, min_length=1, max_length=100)
    position: Optional[str] = Field(default=None, min_length=1, max_length=100)
    manager_id: Optional[int] = None
    is_active: Optional[bool] = None

    # Omit a field to leave it unchanged; only manager_id may be cleared with null
    @field_validator("first_name", "last_name", "email", "role", "department", "position", "is_active")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("Field cannot be null")
        return value
