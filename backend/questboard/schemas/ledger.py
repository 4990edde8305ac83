from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from questboard.models import SourceType


class LedgerEntryRead(BaseModel):
    id: str
    child_id: int
    amount: int
    source_type: SourceType
    source_id: str
    memo: Optional[str] = None
    actor_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerResponse(BaseModel):
    balance: int
    entries: List[LedgerEntryRead]


class AdjustmentCreate(BaseModel):
    amount: int
    memo: Optional[str] = None


class CorrectionCreate(BaseModel):
    memo: Optional[str] = None
