"""Schemas for inviting other adults to share child profiles."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from questboard.models import InvitationStatus


class InvitationCreate(BaseModel):
    invitee_email: EmailStr
    target_child_ids: List[int] = Field(min_length=1)
    role: str = "parent"
    ttl_days: Optional[int] = Field(default=None, ge=0)


class InvitationRead(BaseModel):
    id: int
    inviter_parent_id: int
    invitee_email: str
    target_child_ids: List[int]
    role: str
    status: InvitationStatus
    expires_at: datetime
    created_at: datetime
    accepted_by: Optional[int] = None
    accepted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvitationCreated(InvitationRead):
    """Returned once to the inviter; the token is what gets shared."""

    token: str
