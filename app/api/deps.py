from typing import Annotated, Any, Optional
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.security import decode_access_token
from app.core.permissions import AuthContext


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()


def _claim_uuid(claims: dict[str, Any], name: str) -> Optional[uuid.UUID]:
    value = claims.get(name)
    if value in (None, ""):
        return None
    return uuid.UUID(str(value))


async def get_auth_context(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> AuthContext:
    """
    Dependency that turns the bearer token into the caller's AuthContext.

    The token is issued elsewhere; here it is only verified. Required
    claims: sub, role, organization_id. branch_id may be absent for
    organization-wide roles.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    claims = decode_access_token(credentials.credentials)
    if claims is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    try:
        caller_id = _claim_uuid(claims, "sub")
        organization_id = _claim_uuid(claims, "organization_id")
        branch_id = _claim_uuid(claims, "branch_id")
    except ValueError:
        logger.warning(f"Malformed identifier in token claims for sub={claims.get('sub')}")
        raise credentials_exception

    role = claims.get("role")
    if caller_id is None or organization_id is None or not role:
        logger.warning(f"Token missing required claims for sub={claims.get('sub')}")
        raise credentials_exception

    return AuthContext(
        caller_id=caller_id,
        role=role,
        branch_id=branch_id,
        organization_id=organization_id,
    )


# Type aliases for cleaner dependency injection
Auth = Annotated[AuthContext, Depends(get_auth_context)]
DB = Annotated[AsyncSession, Depends(get_db)]
