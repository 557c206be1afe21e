"""
Hamme — Profile management.

Owns the user-editable fields of an account (display name, bio, location,
profile picture, date of birth) and the public projection other users see
before voting.  Age is always derived from the date of birth and stored
alongside it.
"""

from __future__ import annotations

from datetime import date
from typing import Any
from urllib.parse import urlparse

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.exceptions import ValidationError
from app.models.user import User
from app.services.expiry_policy import utcnow

logger = structlog.get_logger("hamme.profile_service")


def compute_age(date_of_birth: date, today: date) -> int:
    """Whole years elapsed since ``date_of_birth`` as of ``today``."""
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def public_profile(user: User, today: date | None = None) -> dict[str, Any]:
    """The fields any authenticated or anonymous viewer may see.

    ``age`` falls back to one derived from the date of birth when unset.
    """
    age = user.age
    if age is None and user.date_of_birth is not None:
        age = compute_age(user.date_of_birth, today or utcnow().date())
    return {
        "id": user.id,
        "name": user.name,
        "age": age,
        "profile_picture": user.profile_picture,
        "bio": user.bio,
    }


class ProfileService:
    """Validated updates to a user's own profile.

    Every mutating method flushes but does not commit; the request-scoped
    session from ``get_db`` commits once the handler returns.
    """

    MAX_BIO_LENGTH: int = 500
    MAX_LOCATION_LENGTH: int = 120

    def __init__(self, min_age: int | None = None, max_age: int | None = None) -> None:
        settings = get_settings()
        self.min_age = settings.MIN_AGE if min_age is None else min_age
        self.max_age = settings.MAX_AGE if max_age is None else max_age

    async def set_date_of_birth(
        self,
        user: User,
        date_of_birth: date,
        db_session: AsyncSession,
        today: date | None = None,
    ) -> User:
        today = today or utcnow().date()
        log = logger.bind(user_id=str(user.id))

        if date_of_birth > today:
            raise ValidationError("Date of birth cannot be in the future")

        age = compute_age(date_of_birth, today)
        if age < self.min_age:
            log.info("dob_rejected", reason="too_young", age=age)
            raise ValidationError(f"You must be at least {self.min_age} years old")
        if age > self.max_age:
            log.info("dob_rejected", reason="too_old", age=age)
            raise ValidationError("Please enter a valid date of birth")

        user.date_of_birth = date_of_birth
        user.age = age
        await db_session.flush()

        log.info("dob_updated", age=age)
        return user

    async def set_profile_picture(
        self,
        user: User,
        url: str,
        db_session: AsyncSession,
    ) -> User:
        """Point the profile picture at an externally hosted image URL."""
        url = url.strip()
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("Profile picture must be an http(s) URL")

        user.profile_picture = url
        photos = list(user.photos or [])
        if url not in photos:
            photos.insert(0, url)
        user.photos = photos
        await db_session.flush()

        logger.info("profile_picture_updated", user_id=str(user.id))
        return user

    async def update_fields(
        self,
        user: User,
        db_session: AsyncSession,
        name: str | None = None,
        bio: str | None = None,
        location: str | None = None,
    ) -> User:
        log = logger.bind(user_id=str(user.id))
        changed: list[str] = []

        if name is not None:
            name = name.strip()
            if not 2 <= len(name) <= 50:
                raise ValidationError("Name must be between 2 and 50 characters")
            user.name = name
            changed.append("name")

        if bio is not None:
            if len(bio) > self.MAX_BIO_LENGTH:
                raise ValidationError(
                    f"Bio must be at most {self.MAX_BIO_LENGTH} characters"
                )
            user.bio = bio
            changed.append("bio")

        if location is not None:
            location = location.strip()
            if len(location) > self.MAX_LOCATION_LENGTH:
                raise ValidationError(
                    f"Location must be at most {self.MAX_LOCATION_LENGTH} characters"
                )
            user.location = location
            changed.append("location")

        if changed:
            await db_session.flush()
        log.info("profile_updated", fields=changed)
        return user
