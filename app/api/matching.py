"""
Hamme — Matching API

Endpoints for submitting a choice about another user, listing pending
inbound interest, listing active matches and viewing a public profile.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_optional_user
from app.database import get_db
from app.exceptions import UserNotFoundError
from app.models.user import User
from app.schemas.matching import (
    ChoiceRequest,
    ChoiceResponse,
    ExistingVote,
    MatchesResponse,
    MatchItem,
    MatchResult,
    PendingProfile,
    PendingResponse,
    PublicProfileResponse,
    PublicUser,
)
from app.services.matching_service import MatchingService
from app.services.profile_service import public_profile

logger = structlog.get_logger("hamme.api.matching")

router = APIRouter()

# ── Service singleton ─────────────────────────────────────────────────────────

_matching_service: MatchingService | None = None


def _get_matching_service() -> MatchingService:
    global _matching_service
    if _matching_service is None:
        _matching_service = MatchingService()
    return _matching_service


# ──────────────────────────────────────────────────────────────────────────────
# POST /choice: Record a date / friends / reject choice
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/choice",
    response_model=ChoiceResponse,
    status_code=status.HTTP_200_OK,
    summary="Submit a choice about another user",
)
async def submit_choice(
    payload: ChoiceRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ChoiceResponse:
    """Upsert the caller's vote and report whether it completed a match.

    Only an identical reciprocal choice (``date``/``date`` or
    ``friends``/``friends``) creates a match.
    """
    log = logger.bind(user_id=str(current_user.id), target=str(payload.target_user_id))
    log.info("submit_choice_start", choice=payload.choice)

    result = await _get_matching_service().submit_choice(
        viewer_id=current_user.id,
        target_user_id=payload.target_user_id,
        choice=payload.choice,
        db_session=db,
    )

    if result is None:
        log.info("submit_choice_complete", matched=False)
        return ChoiceResponse(message="Choice recorded")

    log.info("submit_choice_complete", matched=True, match_id=str(result["match_id"]))
    return ChoiceResponse(
        message="It's a match!",
        match=MatchResult(
            match_type=result["match_type"],
            match_id=result["match_id"],
        ),
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /pending: Users interested in the caller, not yet answered
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/pending",
    response_model=PendingResponse,
    summary="List pending inbound choices",
)
async def list_pending(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PendingResponse:
    entries = await _get_matching_service().list_pending(current_user.id, db)
    return PendingResponse(
        profiles=[
            PendingProfile(
                user=PublicUser.model_validate(public_profile(entry["user"])),
                choice=entry["choice"],
                viewed_at=entry["viewed_at"],
            )
            for entry in entries
        ]
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /matches: Active (non-expired) matches
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/matches",
    response_model=MatchesResponse,
    summary="List active matches",
)
async def list_matches(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MatchesResponse:
    """Sweep the caller's stale matches to ``expired`` and return the rest."""
    items = await _get_matching_service().list_active_matches(current_user.id, db)
    return MatchesResponse(
        matches=[
            MatchItem(
                match_id=item["match_id"],
                user=PublicUser.model_validate(public_profile(item["user"])),
                match_type=item["match_type"],
                created_at=item["created_at"],
                expires_at=item["expires_at"],
            )
            for item in items
        ]
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /public/{user_id}: Public profile plus the caller's live vote
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/public/{user_id}",
    response_model=PublicProfileResponse,
    summary="Get a user's public profile",
)
async def get_public_profile(
    user_id: uuid.UUID,
    viewer: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
) -> PublicProfileResponse:
    """Anonymous callers always get ``existingVote: null``."""
    target = await db.get(User, user_id)
    if target is None:
        raise UserNotFoundError(user_id)

    existing_vote = None
    if viewer is not None and viewer.id != target.id:
        vote = await _get_matching_service().get_existing_vote(viewer.id, target.id, db)
        if vote is not None:
            existing_vote = ExistingVote.model_validate(vote)

    return PublicProfileResponse(
        user=PublicUser.model_validate(public_profile(target)),
        existing_vote=existing_vote,
    )
