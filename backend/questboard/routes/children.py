"""Routes for child profiles, PIN login and shared access."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from questboard import identity
from questboard.auth import (
    create_access_token,
    get_current_child,
    require_role,
    CHILD_SUBJECT_PREFIX,
)
from questboard.database import get_session
from questboard.errors import QuestboardError
from questboard.models import ChildProfile, Principal
from questboard.schemas import ChildCreate, ChildRead, ChildLogin, PinUpdate, GrantRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/children", tags=["children"])


@router.post("/", response_model=ChildRead)
async def add_child(
    data: ChildCreate,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await identity.create_child_profile(
        db, current_principal.id, data.display_name, pin=data.pin
    )


@router.get("/", response_model=list[ChildRead])
async def list_children(
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await identity.list_children(db, current_principal.id)


@router.get("/me", response_model=ChildRead)
async def read_current_child(child: ChildProfile = Depends(get_current_child)):
    return child


@router.post("/login")
async def child_login(
    credentials: ChildLogin,
    db: AsyncSession = Depends(get_session),
):
    """Issue a token for a child using their PIN."""
    try:
        child = await identity.verify_child_pin(db, credentials.child_id, credentials.pin)
    except QuestboardError:
        raise HTTPException(status_code=401, detail="Invalid PIN")
    token = create_access_token(data={"sub": f"{CHILD_SUBJECT_PREFIX}{child.id}"})
    return {"access_token": token, "token_type": "bearer"}


@router.put("/{child_id}/pin", response_model=ChildRead)
async def update_pin(
    child_id: int,
    data: PinUpdate,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    child = await identity.set_child_pin(db, current_principal.id, child_id, data.pin)
    logger.info("PIN for child %s updated by %s", child_id, current_principal.id)
    return child


@router.get("/{child_id}/grants", response_model=list[GrantRead])
async def list_shared_access(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    return await identity.list_grants(db, current_principal.id, child_id)


@router.delete(
    "/{child_id}/grants/{principal_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def remove_shared_access(
    child_id: int,
    principal_id: int,
    db: AsyncSession = Depends(get_session),
    current_principal: Principal = Depends(require_role("parent", "admin")),
):
    await identity.remove_grant(db, current_principal.id, child_id, principal_id)
