from datetime import datetime

from pydantic import BaseModel, Field


class RewardCreate(BaseModel):
    title: str = Field(min_length=1)
    cost: int = Field(gt=0)


class RewardRead(BaseModel):
    id: int
    child_id: int
    title: str
    cost: int
    active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class RedemptionRead(BaseModel):
    id: str
    reward_id: int
    child_id: int
    cost: int
    redeemed_at: datetime

    class Config:
        from_attributes = True
