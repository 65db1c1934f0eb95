"""Request dependencies: database session and authenticated principal."""
from typing import Iterator, Optional

import jwt
from fastapi import Cookie, Header, HTTPException, status
from sqlmodel import Session

from examforge.config import settings
from examforge.database import get_session


def get_db() -> Iterator[Session]:
    """Yield a database session for the request."""
    yield from get_session()


def _extract_token(authorization: Optional[str], cookie_token: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return cookie_token


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    auth_token: Optional[str] = Cookie(default=None, alias=settings.AUTH_COOKIE_NAME),
) -> str:
    """
    Resolve the authenticated user ID from a bearer token or auth cookie.

    Returns:
        The token's `sub` claim

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    token = _extract_token(authorization, auth_token)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return str(user_id)

