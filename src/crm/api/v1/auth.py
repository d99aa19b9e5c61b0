"""Authentication API endpoint.

Exchanges email and password for a Bearer access token. Users are managed
elsewhere; this endpoint only reads the users table.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.api.deps import get_db
from src.crm.core.security import create_access_token, verify_password
from src.crm.models.directory import UserModel
from src.crm.schemas.auth import LoginRequest, TokenResponse, UserResponse

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)) -> TokenResponse:
    """Authenticate a user and return a JWT access token.

    Unknown email and wrong password both yield the same 401.
    """
    result = await db.execute(select(UserModel).where(UserModel.email == body.email))
    user = result.scalar_one_or_none()

    if user is None or not verify_password(body.password, user.password_hash):
        logger.info("auth.login_failed", email=body.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    token_data = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role,
    }
    logger.info("auth.login", user_id=str(user.id))

    return TokenResponse(
        access_token=create_access_token(token_data),
        user=UserResponse(
            id=str(user.id),
            email=user.email,
            role=user.role,
            first_name=user.first_name,
        ),
    )
