"""API endpoints for the Community Events API."""

from fastapi import APIRouter
from .auth import router as auth_router
from .users import router as users_router
from .events import router as events_router
from .attendees import router as attendees_router

# Create main API router
api_router = APIRouter(prefix="/api/v1")

api_router.include_router(auth_router)
api_router.include_router(users_router)
api_router.include_router(events_router)
api_router.include_router(attendees_router)

__all__ = ["api_router"]
