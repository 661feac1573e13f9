"""
Authentication-related Pydantic schemas.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, ConfigDict, model_validator

from ..models.user import UserRole


class UserRegistration(BaseModel):
    """Schema for user registration."""
    email: EmailStr
    password: str = Field(..., min_length=8, description="Password must be at least 8 characters")
    display_name: str = Field(..., min_length=1, max_length=255)
    photo_url: Optional[str] = None
    bio: Optional[str] = None


class UserLogin(BaseModel):
    """Schema for user login."""
    email: EmailStr
    password: str


class UserProfile(BaseModel):
    """Schema for user profile information."""
    id: UUID
    email: str
    display_name: str
    photo_url: Optional[str] = None
    bio: Optional[str] = None
    role: UserRole
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserProfileUpdate(BaseModel):
    """
    Partial profile update.

    Omitted fields keep their value. ``photo_url`` and ``bio`` may be cleared
    with an explicit null; ``display_name`` may not.
    """
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    photo_url: Optional[str] = None
    bio: Optional[str] = None

    @model_validator(mode="after")
    def required_fields_not_null(self):
        if "display_name" in self.model_fields_set and self.display_name is None:
            raise ValueError("display_name cannot be null")
        return self


class PasswordChange(BaseModel):
    """Schema for changing password."""
    current_password: str
    new_password: str = Field(..., min_length=8, description="Password must be at least 8 characters")


class TokenResponse(BaseModel):
    """Schema for token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserProfile
