from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ChildCreate(BaseModel):
    display_name: str = Field(min_length=1)
    pin: Optional[str] = None


class ChildRead(BaseModel):
    id: int
    owner_parent_id: int
    display_name: str
    created_at: datetime

    class Config:
        from_attributes = True


class ChildLogin(BaseModel):
    child_id: int
    pin: str


class PinUpdate(BaseModel):
    pin: str = Field(min_length=4)


class GrantRead(BaseModel):
    principal_id: int
    child_id: int
    invitation_id: Optional[int] = None
    role: str
    permissions: List[str]
    granted_at: datetime

    class Config:
        from_attributes = True
