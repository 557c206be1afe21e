"""
Hamme — Profile API

The authenticated user's own profile: read, date of birth, picture URL
and free-text fields.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user
from app.database import get_db
from app.models.user import User
from app.schemas.user import (
    DateOfBirthUpdate,
    ProfilePictureUpdate,
    ProfileResponse,
    ProfileUpdate,
    UserResponse,
)
from app.services.profile_service import ProfileService

logger = structlog.get_logger("hamme.api.profile")

router = APIRouter()

_profile_service: ProfileService | None = None


def _get_profile_service() -> ProfileService:
    global _profile_service
    if _profile_service is None:
        _profile_service = ProfileService()
    return _profile_service


# ──────────────────────────────────────────────────────────────────────────────
# GET /: Own profile
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/",
    response_model=ProfileResponse,
    summary="Get the caller's profile",
)
async def get_profile(
    current_user: User = Depends(get_current_user),
) -> ProfileResponse:
    return ProfileResponse(user=UserResponse.model_validate(current_user))


# ──────────────────────────────────────────────────────────────────────────────
# PATCH /dob: Set date of birth (derives age)
# ──────────────────────────────────────────────────────────────────────────────

@router.patch(
    "/dob",
    response_model=ProfileResponse,
    summary="Set date of birth",
)
async def update_date_of_birth(
    payload: DateOfBirthUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    user = await _get_profile_service().set_date_of_birth(
        current_user, payload.date_of_birth, db,
    )
    return ProfileResponse(
        message="Date of birth updated",
        user=UserResponse.model_validate(user),
    )


# ──────────────────────────────────────────────────────────────────────────────
# PATCH /profile-picture: Point at a hosted image
# ──────────────────────────────────────────────────────────────────────────────

@router.patch(
    "/profile-picture",
    response_model=ProfileResponse,
    summary="Set profile picture URL",
)
async def update_profile_picture(
    payload: ProfilePictureUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    user = await _get_profile_service().set_profile_picture(
        current_user, payload.profile_picture, db,
    )
    return ProfileResponse(
        message="Profile picture updated",
        user=UserResponse.model_validate(user),
    )


# ──────────────────────────────────────────────────────────────────────────────
# PATCH /: Name, bio, location
# ──────────────────────────────────────────────────────────────────────────────

@router.patch(
    "/",
    response_model=ProfileResponse,
    summary="Update profile fields",
)
async def update_profile(
    payload: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    user = await _get_profile_service().update_fields(
        current_user,
        db,
        name=payload.name,
        bio=payload.bio,
        location=payload.location,
    )
    return ProfileResponse(
        message="Profile updated",
        user=UserResponse.model_validate(user),
    )
