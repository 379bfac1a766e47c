"""Authentication middleware - JWT verification and caller extraction.

Sessions are issued by the login layer in front of this service; here we
only verify the bearer token and read the user id from its `sub` claim.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from config import get_settings

settings = get_settings()
security = HTTPBearer()


def decode_user_id(token: str) -> Optional[str]:
    """Return the user id of a valid access token, else None."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None

    if payload.get("type") not in ("access", None):
        return None
    return payload.get("sub")


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> str:
    """Extract and validate the current user id from the bearer token."""
    user_id = decode_user_id(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
