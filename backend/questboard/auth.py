# questboard/auth.py
"""Bearer-token identity for the HTTP layer.

Tokens are issued by the external identity provider (or by the child PIN
login) and signed with ``SECRET_KEY``.  The ``sub`` claim is either the
principal's email or ``child:<profile id>``.
"""

import os
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.database import get_session
from questboard.models import ChildProfile, Principal
from questboard import acl, crud, identity

SECRET_KEY = os.getenv("SECRET_KEY", "super-secret-key")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

bearer_scheme = HTTPBearer(auto_error=False)

CHILD_SUBJECT_PREFIX = "child:"


def create_access_token(data: dict, expires_delta: timedelta | None = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "code": "auth_invalid_credentials",
            "message": "Could not validate credentials",
        },
    )


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_session),
) -> tuple[str, Principal | ChildProfile]:
    """Return ("principal", Principal) or ("child", ChildProfile)."""
    if credentials is None:
        raise _credentials_exception()
    try:
        payload = jwt.decode(
            credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM]
        )
        sub: str = payload.get("sub")
        if not sub:
            raise _credentials_exception()
        if sub.startswith(CHILD_SUBJECT_PREFIX):
            child_id = int(sub[len(CHILD_SUBJECT_PREFIX):])
            child = await crud.get_child(db, child_id)
            if child is None:
                raise _credentials_exception()
            return "child", child
    except (JWTError, ValueError):
        raise _credentials_exception()

    # First successful authentication creates the principal record.
    principal = await identity.ensure_principal(db, sub, name=payload.get("name"))
    if principal.status != acl.STATUS_ACTIVE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "auth_account_inactive",
                "message": f"Account is {principal.status}",
            },
        )
    return "principal", principal


async def get_current_principal(
    identity_: tuple[str, Principal | ChildProfile] = Depends(get_current_identity),
) -> Principal:
    kind, obj = identity_
    if kind != "principal":
        raise HTTPException(status_code=403, detail="Not a parent token")
    return obj


async def get_current_child(
    identity_: tuple[str, Principal | ChildProfile] = Depends(get_current_identity),
) -> ChildProfile:
    kind, obj = identity_
    if kind != "child":
        raise HTTPException(status_code=403, detail="Not a child token")
    return obj


def require_role(*roles: str):
    """Dependency factory to require a principal role."""

    async def role_dependency(
        current_principal: Principal = Depends(get_current_principal),
    ):
        if current_principal.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_principal

    return role_dependency


async def ensure_view_access(
    db: AsyncSession, identity_: tuple[str, Principal | ChildProfile], child_id: int
) -> None:
    """Children may read their own profile; adults need view access."""
    kind, obj = identity_
    if kind == "child":
        if obj.id != child_id:
            raise HTTPException(status_code=403, detail="Not authorized")
        return
    await identity.require_access(db, obj.id, child_id, acl.PERM_VIEW_CHILD)
