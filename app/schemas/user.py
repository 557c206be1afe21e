from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import Field

from app.schemas.base import CamelModel


class UserResponse(CamelModel):
    id: UUID
    email: str
    name: str
    date_of_birth: Optional[date] = None
    age: Optional[int] = None
    profile_picture: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    photos: Optional[list[str]] = None
    is_active: bool
    last_active: Optional[datetime] = None
    created_at: datetime


class ProfileResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
    user: UserResponse


class DateOfBirthUpdate(CamelModel):
    date_of_birth: date


class ProfilePictureUpdate(CamelModel):
    profile_picture: str = Field(min_length=1)


class ProfileUpdate(CamelModel):
    name: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
