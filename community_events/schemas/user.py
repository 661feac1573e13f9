"""
User administration schemas.
"""

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .auth import UserProfile, UserProfileUpdate
from ..models.user import UserRole


class UserSummary(BaseModel):
    """Minimal public projection of a user, as shown in attendee lists."""
    id: UUID
    display_name: str
    photo_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class UserAdminUpdate(UserProfileUpdate):
    """Profile update that may also carry a role or activation change (admin only)."""
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


class UserListResponse(BaseModel):
    users: List[UserProfile]
    total: int
    limit: int = Field(..., description="Page size used for this listing")
    offset: int
