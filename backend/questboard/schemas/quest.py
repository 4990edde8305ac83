from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from questboard.models import QuestState, Recurrence


class QuestBase(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    reward_points: int = Field(default=0, ge=0)
    recurrence: Recurrence = Recurrence.ONCE


class QuestCreate(QuestBase):
    pass


class QuestRead(QuestBase):
    id: int
    child_id: int
    active: bool
    created_by: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class QuestUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    reward_points: Optional[int] = Field(default=None, ge=0)
    recurrence: Optional[Recurrence] = None
    active: Optional[bool] = None


class InstanceRead(BaseModel):
    id: int
    quest_id: int
    child_id: int
    period: str
    state: QuestState
    claimed_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewer_id: Optional[int] = None

    class Config:
        from_attributes = True


class ReviewRequest(BaseModel):
    decision: str = Field(pattern="^(approve|reject)$")
