from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    message: str
    type: str
    category: str
    is_read: bool
    read_at: Optional[datetime] = None
    related_id: Optional[int] = None
    related_type: Optional[str] = None
    created_at: Optional[datetime] = None
