from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class PrincipalRead(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    role: str
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class StatusUpdate(BaseModel):
    status: str
