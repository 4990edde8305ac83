from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from questboard import ledger
from questboard.auth import ensure_view_access, get_current_identity, require_role
from questboard.database import get_session
from questboard.models import ChildProfile, Principal
from questboard.schemas import (
    AdjustmentCreate,
    CorrectionCreate,
    LedgerEntryRead,
    LedgerResponse,
)

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.get("/{child_id}", response_model=LedgerResponse)
async def read_ledger(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Principal | ChildProfile] = Depends(get_current_identity),
):
    await ensure_view_access(db, identity, child_id)
    entries = await ledger.list_entries(db, child_id)
    balance = await ledger.balance(db, child_id)
    return LedgerResponse(
        balance=balance,
        entries=[LedgerEntryRead.model_validate(e) for e in entries],
    )


@router.post("/{child_id}/adjust", response_model=LedgerEntryRead)
async def adjust_points(
    child_id: int,
    data: AdjustmentCreate,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await ledger.adjust(
        db, current_principal.id, child_id, data.amount, memo=data.memo
    )


@router.post("/entries/{entry_id}/correct", response_model=LedgerEntryRead)
async def correct_entry(
    entry_id: str,
    data: CorrectionCreate,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await ledger.correct_entry(db, current_principal.id, entry_id, memo=data.memo)
