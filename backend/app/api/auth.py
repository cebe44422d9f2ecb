"""Bearer-token actors: who is calling and in which role."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.logging_config import get_logger
from app.core.permissions import Actor, ActorRole
from app.services.auth_service import decode_token

router = APIRouter(prefix="/auth", tags=["auth"])
security = HTTPBearer(auto_error=False)
logger = get_logger(__name__)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Actor]:
    has_header = credentials is not None and credentials.scheme.lower() == "bearer"
    if not has_header:
        return None
    payload = decode_token(credentials.credentials)
    if not payload or "sub" not in payload:
        logger.warning("Bearer token rejected (invalid or expired)")
        return None
    return Actor(
        id=str(payload["sub"]),
        role=payload.get("role", ""),
        name=payload.get("name", ""),
    )


def require_roles(allowed_roles: List[ActorRole]):
    async def _check(
        current_user: Optional[Actor] = Depends(get_current_user),
    ) -> Actor:
        if not current_user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Bearer"},
            )
        try:
            role_enum = ActorRole(current_user.role)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown role")
        if role_enum not in allowed_roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient rights")
        return current_user
    return _check


RequireAnyAuth = require_roles([ActorRole.VENDOR, ActorRole.CUSTOMER])
RequireCustomer = require_roles([ActorRole.CUSTOMER])
RequireVendor = require_roles([ActorRole.VENDOR])


@router.get("/me", response_model=Actor)
async def me(current_user: Actor = Depends(RequireAnyAuth)):
    return current_user
