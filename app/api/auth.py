"""
Hamme — Auth API

Email/password registration and login issuing bearer tokens.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_auth_service
from app.database import get_db
from app.schemas.auth import AuthResponse, LoginRequest, MessageResponse, RegisterRequest
from app.schemas.user import UserResponse

logger = structlog.get_logger("hamme.api.auth")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST /register: Create an account
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account",
)
async def register(
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> AuthResponse:
    user, token = await get_auth_service().register(
        email=payload.email,
        password=payload.password,
        name=payload.name,
        db_session=db,
    )
    return AuthResponse(
        message="User registered successfully",
        token=token,
        user=UserResponse.model_validate(user),
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST /login: Exchange credentials for a token
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Log in with email and password",
)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> AuthResponse:
    user, token = await get_auth_service().login(
        email=payload.email,
        password=payload.password,
        db_session=db,
    )
    return AuthResponse(
        message="Login successful",
        token=token,
        user=UserResponse.model_validate(user),
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST /logout: Tokens are stateless; the client discards its copy
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Log out",
)
async def logout() -> MessageResponse:
    return MessageResponse(message="Logged out successfully")
