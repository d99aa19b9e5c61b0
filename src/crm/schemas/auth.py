"""Pydantic schemas for authentication API endpoints."""

from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    """Request schema for user login."""

    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")


class UserResponse(BaseModel):
    """Public fields of the authenticated user."""

    id: str
    email: str
    role: str
    first_name: str | None = None


class TokenResponse(BaseModel):
    """Response schema for a successful login."""

    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class CurrentUser(BaseModel):
    """Identity carried by a validated access token."""

    id: str
    email: str | None = None
    role: str = "user"
