from datetime import datetime, timedelta, timezone
from typing import Optional, Any
import uuid

from jose import JWTError, jwt

from app.config import settings


def create_access_token(
    subject: str | uuid.UUID,
    role: str,
    organization_id: str | uuid.UUID,
    branch_id: Optional[str | uuid.UUID] = None,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[dict[str, Any]] = None
) -> str:
    """
    Create a JWT access token carrying the caller's engine scope.

    Token issuance belongs to the auth service; this helper exists for
    operational scripts and tests that need a token the engine accepts.

    Args:
        subject: Caller ID
        role: Role code (e.g. 'admin', 'branch_manager')
        organization_id: Caller's organization
        branch_id: Caller's effective branch
        expires_delta: Optional custom expiration time
        additional_claims: Optional additional claims to include

    Returns:
        Encoded JWT token string
    """
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))

    to_encode = {
        "sub": str(subject),
        "role": role,
        "organization_id": str(organization_id),
        "branch_id": str(branch_id) if branch_id else None,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "jti": str(uuid.uuid4()),
        "type": "access",
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_access_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and verify an access token.

    Returns:
        Claims dict if valid access token, None otherwise
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None

    if payload.get("type") != "access":
        return None
    return payload
