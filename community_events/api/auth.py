"""
Authentication API endpoints.
"""

from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, status

from ..config import Settings, get_settings
from ..models.user import User
from ..schemas.auth import (
    PasswordChange,
    TokenResponse,
    UserLogin,
    UserProfile,
    UserProfileUpdate,
    UserRegistration,
)
from ..schemas.common import MessageResponse
from ..services.user_service import UserService
from ..utils.auth import create_access_token
from ..utils.dependencies import get_current_user, get_user_service
from ..utils.exceptions import AuthenticationError


router = APIRouter(prefix="/auth", tags=["authentication"])


def issue_token(user: User, settings: Settings) -> TokenResponse:
    """Create an access token response for ``user``."""
    access_token = create_access_token(
        data={"sub": str(user.id), "email": user.email, "role": user.role.value},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )

    return TokenResponse(
        access_token=access_token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserProfile.model_validate(user)
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register_user(
    user_data: UserRegistration,
    user_service: UserService = Depends(get_user_service),
    settings: Settings = Depends(get_settings)
) -> Any:
    """
    Create a local account and log it in.

    Fails with 409 when the email is already registered.
    """
    user = await user_service.create_user(user_data)
    return issue_token(user, settings)


@router.post("/login", response_model=TokenResponse)
async def login_user(
    login_data: UserLogin,
    user_service: UserService = Depends(get_user_service),
    settings: Settings = Depends(get_settings)
) -> Any:
    """Exchange email and password for an access token."""
    user = await user_service.authenticate_user(login_data.email, login_data.password)
    if not user:
        raise AuthenticationError("Incorrect email or password")

    await user_service.touch_last_login(user)
    return issue_token(user, settings)


@router.get("/me", response_model=UserProfile)
async def get_current_user_profile(current_user: User = Depends(get_current_user)) -> Any:
    return current_user


@router.put("/me", response_model=UserProfile)
async def update_current_user_profile(
    profile_data: UserProfileUpdate,
    current_user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service)
) -> Any:
    """Update the caller's display name, photo or bio."""
    return await user_service.update_user(current_user.id, profile_data)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    password_data: PasswordChange,
    current_user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service)
) -> Any:
    await user_service.change_password(current_user.id, password_data)
    return MessageResponse(message="Password changed successfully")
