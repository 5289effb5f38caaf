"""
Authentication Schemas

Pydantic models for auth request/response validation.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserLoginRequest(BaseModel):
    """Password login request."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=100)


class FederatedLoginRequest(BaseModel):
    """Identity asserted by a trusted OAuth gateway."""

    provider: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)


class UserResponse(BaseModel):
    """User data response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    auth_provider: Optional[str]
    is_active: bool
    created_at: datetime
    last_login_at: Optional[datetime]


class AuthResponse(BaseModel):
    """Access token with the roles and permissions it carries."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    roles: List[str]
    permissions: List[str]
    user: UserResponse
