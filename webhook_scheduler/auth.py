"""
Owner resolution for API requests.

Sign-in happens at an external identity provider; this service only verifies
the bearer token it issued (shared secret, HS256) and reads the owner id from
`sub` and the plan from an optional `tier` claim.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from webhook_scheduler.config import settings
from webhook_scheduler.schemas.auth import Owner, TokenData

DEFAULT_TOKEN_EXPIRY = timedelta(hours=1)

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(owner_id: str, tier: str = "free", expires_delta: Optional[timedelta] = None) -> str:
    """Issue a token the API accepts. Used by operator scripts and tests."""
    expire = datetime.now(timezone.utc) + (expires_delta or DEFAULT_TOKEN_EXPIRY)
    to_encode = {"sub": owner_id, "tier": tier, "exp": expire}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def get_current_owner(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> Owner:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        payload = jwt.decode(credentials.credentials, settings.secret_key, algorithms=[settings.algorithm])
        token_data = TokenData(sub=payload.get("sub"), tier=payload.get("tier"))
    except JWTError:
        raise credentials_exception
    if not token_data.sub:
        raise credentials_exception
    tier = token_data.tier if token_data.tier in ("free", "paid") else "free"
    return Owner(id=token_data.sub, tier=tier)


def verify_trigger_token(x_trigger_token: Annotated[Optional[str], Header()] = None) -> None:
    """Guard for the external tick trigger. An empty configured token disables the endpoint."""
    expected = settings.dispatcher_trigger_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trigger endpoint disabled")
    if not x_trigger_token or not secrets.compare_digest(x_trigger_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid trigger token")
