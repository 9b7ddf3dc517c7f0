"""
Account and token schemas.

E-mail addresses are lower-cased on the way in: invites look users up by
e-mail, and that lookup must not depend on how the address was typed.
"""

from pydantic import BaseModel, EmailStr, Field, field_validator
from datetime import datetime
from typing import Optional


class UserRegister(BaseModel):
    email: EmailStr = Field(..., description="User email address")
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$", description="Unique username")
    # bcrypt only looks at the first 72 bytes
    password: str = Field(..., min_length=6, max_length=72, description="Password (6-72 characters)")
    display_name: Optional[str] = Field(default=None, max_length=150, description="Name shown in chats")

    @field_validator("email", mode="after")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("display_name")
    @classmethod
    def blank_display_name(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            value = value.strip()
        return value or None


class UserLogin(BaseModel):
    """Login with either username or e-mail in `username`."""
    username: str = Field(..., min_length=1, description="Username or email")
    password: str = Field(..., description="Password")


class TokenResponse(BaseModel):
    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    user_id: int
    username: str
    email: str


class UserResponse(BaseModel):
    """The caller's own account (GET /auth/me)."""
    id: int
    email: str
    username: str
    display_name: Optional[str] = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class UserSummary(BaseModel):
    """Public identity of a user, as shown to other trip members."""
    id: int
    username: str
    display_name: Optional[str] = None

    class Config:
        from_attributes = True
