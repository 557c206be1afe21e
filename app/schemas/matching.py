from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from app.schemas.base import CamelModel


class ChoiceRequest(CamelModel):
    # Validated by MatchingService.submit_choice.
    target_user_id: Any = None
    choice: Any = None


class MatchResult(CamelModel):
    matched: Literal[True] = True
    match_type: str
    match_id: UUID


class ChoiceResponse(CamelModel):
    success: bool = True
    message: str
    match: Optional[MatchResult] = None


class PublicUser(CamelModel):
    id: UUID
    name: str
    age: Optional[int] = None
    profile_picture: Optional[str] = None
    bio: Optional[str] = None


class PendingProfile(CamelModel):
    user: PublicUser
    choice: str
    viewed_at: datetime


class PendingResponse(CamelModel):
    success: bool = True
    profiles: list[PendingProfile] = []


class MatchItem(CamelModel):
    match_id: UUID
    user: PublicUser
    match_type: str
    created_at: datetime
    expires_at: datetime


class MatchesResponse(CamelModel):
    success: bool = True
    matches: list[MatchItem] = []


class ExistingVote(CamelModel):
    choice: str
    voted_at: datetime
    expires_at: datetime


class PublicProfileResponse(CamelModel):
    success: bool = True
    user: PublicUser
    existing_vote: Optional[ExistingVote] = None
