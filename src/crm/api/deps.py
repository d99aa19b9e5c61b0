"""FastAPI dependency injection for database sessions and authentication.

These dependencies are used in endpoint function signatures to inject a
database session and the authenticated user.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.core.database import get_session
from src.crm.core.security import verify_token
from src.crm.schemas.auth import CurrentUser


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session."""
    async for session in get_session():
        yield session


async def get_current_user(request: Request) -> CurrentUser:
    """Extract and validate the current user from the Bearer JWT.

    The token is trusted as issued by /auth/login; the user row is not
    reloaded on every request.

    Raises:
        HTTPException(401): If no valid token is provided.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(auth_header[7:], token_type="access")
    return CurrentUser(
        id=payload["sub"],
        email=payload.get("email"),
        role=payload.get("role") or "user",
    )
